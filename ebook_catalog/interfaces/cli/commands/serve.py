from __future__ import annotations

import uvicorn
from rich.console import Console


def run_serve_command(*, console: Console, host: str, port: int, reload: bool) -> None:
    console.print(f"[bold]Serving ebook-catalog API[/bold] on http://{host}:{port}/api/ebooks")
    uvicorn.run("ebook_catalog.interfaces.api.app:create_app", host=host, port=port, reload=reload, factory=True)
