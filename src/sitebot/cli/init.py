"""sitebot init — project scaffold.

Creates:
  sitebot.yaml   — project config with the default models and limits
  .sitebot.db    — empty database with schema
  .gitignore     — .sitebot.db entries appended when the file already exists

Optionally creates a first chatbot (``--chatbot NAME``) so that sources can be
added right away.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from sitebot.chatbots import create_chatbot
from sitebot.cli.common import DEFAULT_WORKSPACE, WorkspaceOption, console
from sitebot.config import SitebotConfig, write_project_config
from sitebot.db.repository import Repository
from sitebot.services import open_db

_DEFAULT_PROJECT_DIR = Path(".")
_CONFIG_NAME = "sitebot.yaml"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    chatbot: Annotated[
        str | None,
        typer.Option("--chatbot", help="Also create a chatbot with this name."),
    ] = None,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
) -> None:
    """Initialize a sitebot project: config file and database."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    cfg = SitebotConfig()
    db_path = project_dir / cfg.database.path

    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Creating sitebot project in {project_dir} …[/]\n")

    cfg_path = project_dir / _CONFIG_NAME
    if cfg_path.exists():
        console.print(f"  [dim]·[/] {_CONFIG_NAME} (kept)")
    else:
        write_project_config(cfg_path, cfg)
        console.print(f"  [green]✓[/] {_CONFIG_NAME}")

    conn = open_db(db_path)
    try:
        console.print(f"  [green]✓[/] {cfg.database.path}")
        if chatbot:
            bot = create_chatbot(Repository(conn), workspace, chatbot)
            console.print(f"  [green]✓[/] chatbot '{bot.name}' ({bot.id})")
    finally:
        conn.close()

    _update_gitignore(project_dir, cfg.database.path)

    console.print("\n[bold green]✓ sitebot project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=<your key>")
    console.print("  2. sitebot chatbot create <name>                 (if not created above)")
    console.print("  3. sitebot source add-url <chatbot-id> <url>     (train the chatbot)")
    console.print("  4. sitebot chat <chatbot-id>                     (try it out)")
    console.print("  5. sitebot serve                                 (widget HTTP API)")


def _update_gitignore(project_dir: Path, db_name: str) -> None:
    """Add sitebot entries to .gitignore if it already exists."""
    gitignore = project_dir / ".gitignore"
    entries = [db_name, f"{db_name}-wal", f"{db_name}-shm"]

    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8").splitlines()
        to_add = [e for e in entries if e not in existing]
        if to_add:
            with gitignore.open("a", encoding="utf-8") as f:
                f.write("\n# sitebot\n")
                for entry in to_add:
                    f.write(f"{entry}\n")
            console.print("  [green]✓[/] .gitignore (updated with sitebot entries)")
