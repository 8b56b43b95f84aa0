"""Helpers shared by the sitebot commands: config, database, services."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from sitebot.cli.errors import err_config, err_no_api_key, err_no_db
from sitebot.config import ConfigError, SitebotConfig, load_config
from sitebot.rag.llm_client import validate_api_key
from sitebot.services import Services, build_services, open_db

console = Console()

DEFAULT_WORKSPACE = "default"

DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the sitebot database. Defaults to database.path."),
]
WorkspaceOption = Annotated[
    str,
    typer.Option("--workspace", "-w", help="Workspace the command operates on."),
]


def load_cli_config() -> SitebotConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def resolve_db(db: Path | None, cfg: SitebotConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        provider = model.split("/")[0] if "/" in model else "openai"
        console.print(err_no_api_key(provider))
        raise typer.Exit(1)


@contextmanager
def open_services(db: Path | None) -> Iterator[Services]:
    """Open the configured database and yield wired services; always closes."""
    cfg = load_cli_config()
    db_path = resolve_db(db, cfg)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    services = build_services(open_db(db_path), cfg)
    try:
        yield services
    finally:
        services.close()
