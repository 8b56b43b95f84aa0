"""sitebot webhooks CLI commands.

Commands:
  sitebot webhooks events                 — catalogue of event types
  sitebot webhooks add <url> -e EVENT ... — register an endpoint (prints the secret once)
  sitebot webhooks list                   — endpoints with masked secrets
  sitebot webhooks remove <id>            — delete endpoint and its history
  sitebot webhooks rotate-secret <id>     — issue a new signing secret
  sitebot webhooks test <id>              — send a test delivery
  sitebot webhooks history <id>           — recent deliveries
  sitebot webhooks retry                  — re-deliver due FAILED events
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from sitebot.cli.common import DEFAULT_WORKSPACE, DbOption, WorkspaceOption, open_services
from sitebot.cli.errors import err_invalid_input, err_webhook_not_found
from sitebot.errors import NotFoundError
from sitebot.webhooks.endpoints import (
    create_endpoint,
    delete_endpoint,
    delivery_history,
    list_endpoints,
    regenerate_secret,
)
from sitebot.webhooks.events import EVENT_DESCRIPTIONS, WebhookPayloadError
from sitebot.webhooks.retry import retry_failed_events

console = Console()

webhooks_app = typer.Typer(
    name="webhooks",
    help="Manage webhook endpoints and deliveries.",
    add_completion=False,
)

EndpointArg = Annotated[str, typer.Argument(help="Webhook endpoint id.")]

_EVENT_STATUS_STYLE = {
    "PENDING": "[dim]PENDING[/]",
    "SENT": "[green]SENT[/]",
    "FAILED": "[red]FAILED[/]",
}


@webhooks_app.command("events")
def webhooks_events_cmd() -> None:
    """List the event types an endpoint can subscribe to."""
    table = Table(title="Webhook Events", show_header=True, header_style="bold")
    table.add_column("Type", style="bold")
    table.add_column("Name")
    table.add_column("Description", style="dim")
    for etype, (name, description) in EVENT_DESCRIPTIONS.items():
        table.add_row(etype.value, name, description)
    console.print(table)


@webhooks_app.command("add")
def webhooks_add_cmd(
    url: Annotated[str, typer.Argument(help="http(s) URL receiving the POSTs.")],
    events: Annotated[
        list[str] | None,
        typer.Option("--event", "-e", help="Event type to subscribe to (repeatable)."),
    ] = None,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Free-form label.")
    ] = None,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Register a webhook endpoint."""
    with open_services(db) as svc:
        try:
            endpoint = create_endpoint(svc.repo, workspace, url, events or [], description)
        except WebhookPayloadError as exc:
            console.print(err_invalid_input(str(exc)))
            console.print("  Run:  sitebot webhooks events  for valid event types.")
            raise typer.Exit(1)

    console.print(f"[green]✓[/] Endpoint registered  [dim]{endpoint.id}[/]")
    console.print(f"  URL:    {endpoint.url}")
    console.print(f"  Events: {', '.join(endpoint.events)}")
    console.print(f"  Secret: [bold]{endpoint.secret}[/]")
    console.print("  [yellow]⚠[/]  Store the secret now; it is not shown again.")


@webhooks_app.command("list")
def webhooks_list_cmd(
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """List the workspace's webhook endpoints."""
    with open_services(db) as svc:
        endpoints = list_endpoints(svc.repo, workspace)

    if not endpoints:
        console.print(f"[yellow]No webhook endpoints in workspace '{workspace}'.[/]")
        console.print("  Run:  sitebot webhooks add <url> --event TRAINING_COMPLETE")
        raise typer.Exit(0)

    table = Table(title="Webhook Endpoints", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("URL", style="bold")
    table.add_column("Events")
    table.add_column("Secret", style="dim")
    table.add_column("Active")
    for ep in endpoints:
        table.add_row(
            ep.id,
            ep.url,
            "\n".join(ep.events),
            ep.secret,
            "[green]yes[/]" if ep.active else "[dim]no[/]",
        )
    console.print(table)


@webhooks_app.command("remove")
def webhooks_remove_cmd(
    endpoint_id: EndpointArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Delete an endpoint and its delivery history."""
    if not yes and not typer.confirm(f"Delete webhook endpoint {endpoint_id}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
    with open_services(db) as svc:
        try:
            delete_endpoint(svc.repo, workspace, endpoint_id)
        except NotFoundError:
            console.print(err_webhook_not_found(endpoint_id))
            raise typer.Exit(1)
    console.print(f"[green]✓[/] Removed endpoint {endpoint_id}.")


@webhooks_app.command("rotate-secret")
def webhooks_rotate_secret_cmd(
    endpoint_id: EndpointArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Replace an endpoint's signing secret."""
    with open_services(db) as svc:
        try:
            secret = regenerate_secret(svc.repo, workspace, endpoint_id)
        except NotFoundError:
            console.print(err_webhook_not_found(endpoint_id))
            raise typer.Exit(1)
    console.print(f"[green]✓[/] New secret: [bold]{secret}[/]")


@webhooks_app.command("test")
def webhooks_test_cmd(
    endpoint_id: EndpointArg,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Send a TRAINING_COMPLETE test delivery to an endpoint."""
    with open_services(db) as svc:
        try:
            with console.status("Sending test webhook …"):
                outcome = svc.dispatcher.send_test(endpoint_id, workspace)
        except NotFoundError:
            console.print(err_webhook_not_found(endpoint_id))
            raise typer.Exit(1)

    if outcome.success:
        console.print(
            f"[green]✓[/] Delivered (HTTP {outcome.status_code}, {outcome.response_time_ms} ms)"
        )
        return
    console.print(f"[red]✗[/] Delivery failed: {outcome.error}")
    raise typer.Exit(1)


@webhooks_app.command("history")
def webhooks_history_cmd(
    endpoint_id: EndpointArg,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Deliveries to show.")] = 10,
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Show the most recent deliveries of an endpoint."""
    with open_services(db) as svc:
        try:
            events = delivery_history(svc.repo, workspace, endpoint_id, limit=limit)
        except NotFoundError:
            console.print(err_webhook_not_found(endpoint_id))
            raise typer.Exit(1)

    if not events:
        console.print("[dim]No deliveries yet.[/]")
        raise typer.Exit(0)

    table = Table(title="Deliveries", show_header=True, header_style="bold")
    table.add_column("Created", style="dim")
    table.add_column("Type", style="bold")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="dim")
    for ev in events:
        table.add_row(
            (ev.created_at or "")[:19],
            ev.type,
            _EVENT_STATUS_STYLE.get(ev.status.value, ev.status.value),
            str(ev.attempts),
            ev.last_error or "",
        )
    console.print(table)


@webhooks_app.command("retry")
def webhooks_retry_cmd(db: DbOption = None) -> None:
    """Re-deliver FAILED events whose backoff has elapsed."""
    with open_services(db) as svc:
        summary = retry_failed_events(svc.repo, svc.dispatcher)

    if not (summary.attempted or summary.skipped):
        console.print("[dim]No deliveries due for retry.[/]")
        return
    console.print(
        f"Retried [bold]{summary.attempted}[/]: "
        f"[green]{summary.succeeded} delivered[/], "
        f"[red]{summary.failed} failed[/], "
        f"{summary.skipped} skipped (inactive endpoint)"
    )
