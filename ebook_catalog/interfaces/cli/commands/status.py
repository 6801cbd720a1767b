from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from ebook_catalog.query.models import iso_timestamp
from ebook_catalog.shared.settings import Settings
from ebook_catalog.storage.sqlite import SQLiteStore


def run_status_command(
    *,
    settings: Settings,
    console: Console,
    sqlite_store_cls: type[SQLiteStore] = SQLiteStore,
) -> None:
    if not settings.sqlite_path.exists():
        console.print(f"[red]SQLite database not found: {settings.sqlite_path}[/red]")
        raise typer.Exit(code=1)

    sqlite_store = sqlite_store_cls(settings.sqlite_path)
    try:
        sqlite_store.create_schema()
        states = {state.lang: state for state in sqlite_store.list_sync_states()}
        languages = list(dict.fromkeys([*settings.sync_langs, *sorted(states)]))

        table = Table(title="Catalog status")
        table.add_column("Lang")
        table.add_column("Status")
        table.add_column("Items", justify="right")
        table.add_column("Categories", justify="right")
        table.add_column("Last completed")
        table.add_column("Last upserted", justify="right")
        table.add_column("Last error")
        for lang in languages:
            state = states.get(lang)
            table.add_row(
                lang,
                state.status if state else "idle",
                str(sqlite_store.count_items(lang)),
                str(len(sqlite_store.list_category_counts(lang))),
                (iso_timestamp(state.last_completed_at) if state else None) or "-",
                str(state.last_items_upserted) if state else "0",
                (state.last_error or "")[:80] if state else "",
            )
    finally:
        sqlite_store.close()

    console.print(f"SQLite: {settings.sqlite_path}")
    console.print(table)
