from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

import typer
from rich.console import Console
from rich.table import Table

from ebook_catalog.app.bootstrap import CatalogRuntime, build_catalog_runtime
from ebook_catalog.shared.settings import APP_LEARNING_LANGS, Settings, normalize_lang
from ebook_catalog.sync.service import SyncResult

logger = logging.getLogger(__name__)


def resolve_languages(
    *,
    settings: Settings,
    lang: str | None,
    langs: str | None,
    all_langs: bool,
) -> list[str]:
    if all_langs:
        raw: Sequence[str] = APP_LEARNING_LANGS
    elif langs:
        raw = langs.split(",")
    elif lang:
        raw = [lang]
    else:
        raw = settings.sync_langs

    out: list[str] = []
    for value in raw:
        code = normalize_lang(value)
        if code and code not in out:
            out.append(code)
    return out


async def _sync_languages(runtime: CatalogRuntime, languages: Sequence[str]) -> dict[str, SyncResult | Exception]:
    results: dict[str, SyncResult | Exception] = {}
    try:
        for language in languages:
            try:
                results[language] = await runtime.orchestrator.sync(language)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Sync for %s failed: %s", language, exc)
                results[language] = exc
    finally:
        await runtime.aclose()
    return results


def run_sync_command(
    *,
    settings: Settings,
    console: Console,
    lang: str | None,
    langs: str | None,
    all_langs: bool,
    runtime_factory: Callable[..., CatalogRuntime] = build_catalog_runtime,
) -> None:
    languages = resolve_languages(settings=settings, lang=lang, langs=langs, all_langs=all_langs)
    if not languages:
        console.print("[red]No valid languages to sync.[/red]")
        raise typer.Exit(code=1)

    runtime = runtime_factory(settings=settings, with_scheduler=False)
    console.print(f"[bold]Syncing catalog:[/bold] {', '.join(languages)}")
    results = asyncio.run(_sync_languages(runtime, languages))

    table = Table(title="Catalog sync")
    table.add_column("Lang")
    table.add_column("Upserted", justify="right")
    table.add_column("Merged", justify="right")
    table.add_column("Fetched")
    failed = 0
    for language in languages:
        outcome = results[language]
        if isinstance(outcome, Exception):
            failed += 1
            table.add_row(language, "-", "-", f"[red]error: {outcome}[/red]")
            continue
        fetched = ", ".join(f"{name}={count}" for name, count in sorted(outcome.fetched.items()))
        table.add_row(language, str(outcome.upserted), str(outcome.merged), fetched)
    console.print(table)

    if failed:
        console.print(f"[red]{failed} of {len(languages)} language sync(s) failed.[/red]")
        raise typer.Exit(code=1)
