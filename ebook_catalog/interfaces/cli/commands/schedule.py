from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

import typer
from rich.console import Console

from ebook_catalog.app.bootstrap import CatalogRuntime, build_catalog_runtime
from ebook_catalog.shared.settings import Settings
from ebook_catalog.sync.scheduler import SyncScheduler


async def _run_scheduler(
    runtime: CatalogRuntime, languages: Sequence[str], interval_seconds: float, once: bool
) -> dict[str, bool]:
    scheduler = SyncScheduler(
        orchestrator=runtime.orchestrator,
        languages=languages,
        interval_seconds=interval_seconds,
    )
    try:
        if once:
            results = await scheduler.run_once()
            return {lang: result is not None for lang, result in results.items()}
        await scheduler.run_forever()
        return {}
    finally:
        await scheduler.stop()
        await runtime.aclose()


def run_schedule_command(
    *,
    settings: Settings,
    console: Console,
    languages: Sequence[str],
    interval_minutes: float | None,
    once: bool,
    runtime_factory: Callable[..., CatalogRuntime] = build_catalog_runtime,
) -> None:
    if not languages:
        console.print("[red]No valid languages to schedule.[/red]")
        raise typer.Exit(code=1)

    interval_seconds = (
        interval_minutes * 60.0 if interval_minutes is not None else settings.auto_sync_interval_seconds
    )
    runtime = runtime_factory(settings=settings, with_scheduler=False)
    console.print(
        f"[bold]Scheduling catalog sync[/bold] for {', '.join(languages)} every {interval_seconds / 60.0:.0f} min"
    )
    try:
        outcome = asyncio.run(_run_scheduler(runtime, languages, interval_seconds, once))
    except KeyboardInterrupt:
        console.print("[yellow]Scheduler stopped.[/yellow]")
        return

    failed = [lang for lang, ok in outcome.items() if not ok]
    for lang, ok in outcome.items():
        console.print(f"{lang}: {'[green]ok[/green]' if ok else '[red]failed[/red]'}")
    if failed:
        raise typer.Exit(code=1)
