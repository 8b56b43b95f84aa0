"""sitebot serve — run the widget HTTP API with uvicorn."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn
from rich.console import Console

from sitebot.cli.common import DbOption, load_cli_config
from sitebot.server.app import create_app

console = Console()


def serve_cmd(
    host: Annotated[str | None, typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Bind port.")] = None,
    db: DbOption = None,
) -> None:
    """Serve the chat widget and workspace API."""
    cfg = load_cli_config()
    if db is not None:
        cfg.database.path = str(db)
    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port

    console.print(
        f"[bold]sitebot[/] serving [dim]{Path(cfg.database.path).resolve()}[/] "
        f"on http://{bind_host}:{bind_port}"
    )
    uvicorn.run(create_app(cfg), host=bind_host, port=bind_port, log_level="info")
