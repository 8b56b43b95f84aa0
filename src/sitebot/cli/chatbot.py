"""sitebot chatbot CLI commands.

Commands:
  sitebot chatbot create <name>   — create a DRAFT chatbot
  sitebot chatbot list            — all chatbots of the workspace
  sitebot chatbot show <id>       — settings plus training status
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sitebot.chatbots import create_chatbot, require_chatbot
from sitebot.cli.common import DEFAULT_WORKSPACE, DbOption, WorkspaceOption, open_services
from sitebot.cli.errors import err_chatbot_not_found, err_invalid_input
from sitebot.errors import NotFoundError, SourceInputError
from sitebot.rag.responder import DEFAULT_WELCOME_MESSAGE

console = Console()

chatbot_app = typer.Typer(
    name="chatbot",
    help="Manage chatbots (create, list, show).",
    add_completion=False,
)

_STATUS_STYLE = {
    "DRAFT": "[dim]DRAFT[/]",
    "TRAINING": "[yellow]TRAINING[/]",
    "ACTIVE": "[green]ACTIVE[/]",
    "PAUSED": "[yellow]PAUSED[/]",
}


@chatbot_app.command("create")
def chatbot_create_cmd(
    name: Annotated[str, typer.Argument(help="Display name of the chatbot.")],
    system_prompt: Annotated[
        str | None,
        typer.Option("--system-prompt", help="Persona that replaces the default system prompt."),
    ] = None,
    welcome: Annotated[
        str | None,
        typer.Option("--welcome", help="Widget welcome message."),
    ] = None,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Create a new chatbot in DRAFT status."""
    with open_services(db) as svc:
        try:
            bot = create_chatbot(svc.repo, workspace, name, system_prompt, welcome)
        except SourceInputError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1)

    console.print(f"[green]✓[/] Created chatbot [bold]{bot.name}[/]")
    console.print(f"  id:        {bot.id}")
    console.print(f"  public id: {bot.public_id}")
    console.print("\n  Next:  sitebot source add-url " + bot.id + " <url>")


@chatbot_app.command("list")
def chatbot_list_cmd(
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """List the chatbots of a workspace."""
    with open_services(db) as svc:
        bots = svc.repo.list_chatbots(workspace)

    if not bots:
        console.print(f"[yellow]No chatbots in workspace '{workspace}'.[/]")
        console.print("  Run:  sitebot chatbot create <name>")
        raise typer.Exit(0)

    table = Table(title="Chatbots", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Public ID")
    table.add_column("Status")
    table.add_column("Last trained", style="dim")

    for bot in bots:
        table.add_row(
            bot.id,
            bot.name,
            bot.public_id,
            _STATUS_STYLE.get(bot.status.value, bot.status.value),
            (bot.last_trained_at or "")[:16],
        )
    console.print(table)


@chatbot_app.command("show")
def chatbot_show_cmd(
    chatbot_id: Annotated[str, typer.Argument(help="Chatbot id.")],
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Show a chatbot's settings and the training state of its sources."""
    with open_services(db) as svc:
        try:
            bot = require_chatbot(svc.repo, chatbot_id, workspace)
            status = svc.pipeline.training_status(chatbot_id, workspace)
        except NotFoundError:
            console.print(err_chatbot_not_found(chatbot_id, workspace))
            raise typer.Exit(1)

    lines = [
        f"Name:       [bold]{bot.name}[/]",
        f"Public ID:  {bot.public_id}",
        f"Status:     {_STATUS_STYLE.get(status.status, status.status)}  ({status.progress}%)",
        f"Welcome:    {bot.welcome_message or DEFAULT_WELCOME_MESSAGE}",
    ]
    if bot.system_prompt:
        lines.append(f"Prompt:     [dim]{bot.system_prompt}[/]")
    lines.append(
        f"Sources:    [bold]{status.processed_sources}/{status.total_sources}[/] ready  |  "
        f"Chunks: [bold]{status.total_chunks:,}[/]"
    )
    console.print(Panel("\n".join(lines), title=f"[bold]{bot.id}[/]", expand=False))
