"""sitebot source — data source lifecycle.

Commands:
  sitebot source add-url  <chatbot-id> <url>            — crawl a web page
  sitebot source add-text <chatbot-id> --title --content — index pasted text
  sitebot source add-file <chatbot-id> <path>            — index a .pdf/.txt/.md file
  sitebot source list     <chatbot-id>                   — linked sources
  sitebot source status   <chatbot-id>                   — training progress
  sitebot source resync   <source-id>                    — re-crawl a website source
  sitebot source remove   <source-id>                    — delete source and chunks
  sitebot source include / exclude <chatbot-id> <source-id>

Ingestion runs synchronously: the command returns once the source is READY
or ERROR.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from sitebot.chatbots import require_chatbot
from sitebot.cli.common import (
    DEFAULT_WORKSPACE,
    DbOption,
    WorkspaceOption,
    load_cli_config,
    open_services,
    require_api_key,
)
from sitebot.cli.errors import (
    err_chatbot_not_found,
    err_ingest_failed,
    err_invalid_input,
    err_source_not_found,
    err_ssrf_blocked,
)
from sitebot.db.models import DataSource, DataSourceStatus
from sitebot.errors import NotFoundError, SourceInputError
from sitebot.ingest.web import SsrfError
from sitebot.services import Services

console = Console()

source_app = typer.Typer(
    name="source",
    help="Manage a chatbot's data sources (add, list, resync, remove).",
    add_completion=False,
)

_STATUS_STYLE = {
    "PENDING": "[dim]PENDING[/]",
    "PROCESSING": "[yellow]PROCESSING[/]",
    "READY": "[green]READY[/]",
    "ERROR": "[red]ERROR[/]",
}

ChatbotArg = Annotated[str, typer.Argument(help="Chatbot id.")]
SourceArg = Annotated[str, typer.Argument(help="Data source id.")]


# ---------------------------------------------------------------------------
# Adding sources
# ---------------------------------------------------------------------------


@source_app.command("add-url")
def source_add_url_cmd(
    chatbot_id: ChatbotArg,
    url: Annotated[str, typer.Argument(help="http(s) URL of the page to crawl.")],
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Crawl one web page into a new WEBSITE source."""
    require_api_key(load_cli_config().embedding.model)
    with open_services(db) as svc:
        _require_bot(svc, chatbot_id, workspace)
        try:
            with console.status(f"Crawling {url} …"):
                source = svc.pipeline.add_website_source(chatbot_id, url)
        except SsrfError:
            console.print(err_ssrf_blocked(url))
            raise typer.Exit(1)
        except SourceInputError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1)
    _report(source)


@source_app.command("add-text")
def source_add_text_cmd(
    chatbot_id: ChatbotArg,
    content: Annotated[str, typer.Option("--content", "-c", help="Text to index.")],
    title: Annotated[str, typer.Option("--title", "-t", help="Source name.")] = "Text snippet",
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Index pasted text as a new TEXT source."""
    require_api_key(load_cli_config().embedding.model)
    with open_services(db) as svc:
        _require_bot(svc, chatbot_id, workspace)
        try:
            source = svc.pipeline.add_text_source(chatbot_id, title, content)
        except SourceInputError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1)
    _report(source)


@source_app.command("add-file")
def source_add_file_cmd(
    chatbot_id: ChatbotArg,
    path: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="PDF, .txt or .md file."),
    ],
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Index a local file as a new FILE source."""
    require_api_key(load_cli_config().embedding.model)
    with open_services(db) as svc:
        _require_bot(svc, chatbot_id, workspace)
        try:
            with console.status(f"Processing {path.name} …"):
                source = svc.pipeline.add_file_source(chatbot_id, path.read_bytes(), path.name)
        except SourceInputError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1)
    _report(source)


# ---------------------------------------------------------------------------
# Inspecting sources
# ---------------------------------------------------------------------------


@source_app.command("list")
def source_list_cmd(
    chatbot_id: ChatbotArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """List the sources linked to a chatbot."""
    with open_services(db) as svc:
        _require_bot(svc, chatbot_id, workspace)
        linked = svc.repo.list_linked_sources(chatbot_id)

    if not linked:
        console.print("[yellow]No sources linked to this chatbot.[/]")
        console.print(f"  Run:  sitebot source add-url {chatbot_id} <url>")
        raise typer.Exit(0)

    table = Table(title="Data Sources", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Type")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Included")

    for ls in linked:
        table.add_row(
            ls.source.id,
            ls.source.type.value,
            ls.source.name,
            _STATUS_STYLE.get(ls.source.status.value, ls.source.status.value),
            str(ls.chunk_count),
            "yes" if ls.included else "[dim]no[/]",
        )
    console.print(table)


@source_app.command("status")
def source_status_cmd(
    chatbot_id: ChatbotArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Show training progress for a chatbot."""
    with open_services(db) as svc:
        try:
            status = svc.pipeline.training_status(chatbot_id, workspace)
        except NotFoundError:
            console.print(err_chatbot_not_found(chatbot_id, workspace))
            raise typer.Exit(1)

    console.print(
        f"[bold]{status.name}[/]  {status.status}  "
        f"[bold]{status.progress}%[/]  "
        f"({status.processed_sources}/{status.total_sources} sources, "
        f"{status.total_chunks:,} chunks)"
    )
    for src in status.data_sources:
        line = f"  {_STATUS_STYLE.get(src.status, src.status)}  {src.name}  [dim]{src.chunks_count} chunks[/]"
        if src.error_message:
            line += f"  [red]{src.error_message}[/]"
        console.print(line)


# ---------------------------------------------------------------------------
# Changing sources
# ---------------------------------------------------------------------------


@source_app.command("resync")
def source_resync_cmd(
    source_id: SourceArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Re-crawl a WEBSITE source and replace its chunks."""
    require_api_key(load_cli_config().embedding.model)
    with open_services(db) as svc:
        existing = _require_source(svc, source_id, workspace)
        try:
            with console.status(f"Re-crawling {existing.name} …"):
                source = svc.pipeline.resync_source(source_id)
        except SsrfError:
            console.print(err_ssrf_blocked(existing.config.get("url", existing.name)))
            raise typer.Exit(1)
        except SourceInputError as exc:
            console.print(err_invalid_input(str(exc)))
            raise typer.Exit(1)
    _report(source)


@source_app.command("remove")
def source_remove_cmd(
    source_id: SourceArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete a data source together with its chunks."""
    with open_services(db) as svc:
        source = _require_source(svc, source_id, workspace)
        chunk_count = svc.store.count(source_id)

        console.print(f"\nRemove source: [bold]{source.name}[/]")
        console.print(f"  Type: {source.type.value}  |  Chunks: {chunk_count}")
        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        svc.pipeline.delete_source(source_id)

    console.print(f"[green]✓[/] Removed '{source.name}' ({chunk_count} chunks).")


@source_app.command("include")
def source_include_cmd(
    chatbot_id: ChatbotArg,
    source_id: SourceArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Put a linked source back into the chatbot's retrieval scope."""
    _set_included(chatbot_id, source_id, True, workspace, db)


@source_app.command("exclude")
def source_exclude_cmd(
    chatbot_id: ChatbotArg,
    source_id: SourceArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Keep a linked source but leave it out of retrieval."""
    _set_included(chatbot_id, source_id, False, workspace, db)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_included(
    chatbot_id: str, source_id: str, included: bool, workspace: str, db: Path | None
) -> None:
    with open_services(db) as svc:
        _require_bot(svc, chatbot_id, workspace)
        try:
            svc.pipeline.set_source_included(chatbot_id, source_id, included)
        except NotFoundError:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)
    state = "included in" if included else "excluded from"
    console.print(f"[green]✓[/] Source {source_id} {state} retrieval.")


def _require_bot(svc: Services, chatbot_id: str, workspace: str) -> None:
    try:
        require_chatbot(svc.repo, chatbot_id, workspace)
    except NotFoundError:
        console.print(err_chatbot_not_found(chatbot_id, workspace))
        raise typer.Exit(1)


def _require_source(svc: Services, source_id: str, workspace: str) -> DataSource:
    source = svc.repo.get_data_source(source_id)
    if source is None or source.workspace_id != workspace:
        console.print(err_source_not_found(source_id))
        raise typer.Exit(1)
    return source


def _report(source: DataSource) -> None:
    if source.status == DataSourceStatus.ERROR:
        console.print(err_ingest_failed(source.name, source.error_message))
        raise typer.Exit(1)
    chunks = source.metadata.get("chunkCount", 0)
    console.print(f"[green]✓[/] {source.name}  [dim]{source.id}[/]")
    console.print(f"  Status: {source.status.value}  |  Chunks: {chunks}")
    if not chunks:
        console.print("  [yellow]⚠[/]  No text could be extracted from this source.")
