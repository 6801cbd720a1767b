from __future__ import annotations

import logging

import typer
from rich.console import Console

from ebook_catalog.app.bootstrap import build_catalog_runtime
from ebook_catalog.interfaces.cli.commands.schedule import run_schedule_command
from ebook_catalog.interfaces.cli.commands.serve import run_serve_command
from ebook_catalog.interfaces.cli.commands.status import run_status_command
from ebook_catalog.interfaces.cli.commands.sync import resolve_languages, run_sync_command
from ebook_catalog.shared.settings import get_settings
from ebook_catalog.storage.sqlite import SQLiteStore

logger = logging.getLogger(__name__)

app = typer.Typer(help="Public-domain ebook catalog sync and query service")
console = Console()


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(levelname)s: %(message)s")


@app.command()
def sync(
    lang: str | None = typer.Option(None, "--lang", help="Sync a single language."),
    langs: str | None = typer.Option(None, "--langs", help="Comma-separated languages to sync."),
    all_langs: bool = typer.Option(False, "--all", help="Sync every supported app language."),
) -> None:
    """Fetch, merge and persist the catalog for one or more languages."""
    run_sync_command(
        settings=get_settings(),
        console=console,
        lang=lang,
        langs=langs,
        all_langs=all_langs,
        runtime_factory=build_catalog_runtime,
    )


@app.command()
def status() -> None:
    """Show the persisted catalog size and last sync state per language."""
    run_status_command(settings=get_settings(), console=console, sqlite_store_cls=SQLiteStore)


@app.command()
def schedule(
    langs: str | None = typer.Option(None, "--langs", help="Comma-separated languages (default: configured)."),
    interval_minutes: float | None = typer.Option(None, "--interval-minutes", help="Minutes between runs."),
    once: bool = typer.Option(False, "--once", help="Run a single pass and exit."),
) -> None:
    """Run the periodic catalog sync in the foreground."""
    settings = get_settings()
    run_schedule_command(
        settings=settings,
        console=console,
        languages=resolve_languages(settings=settings, lang=None, langs=langs, all_langs=False),
        interval_minutes=interval_minutes,
        once=once,
        runtime_factory=build_catalog_runtime,
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind host."),
    port: int = typer.Option(8000, help="Bind port."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes."),
) -> None:
    """Start the HTTP API server."""
    run_serve_command(console=console, host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
