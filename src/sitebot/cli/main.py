"""sitebot CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from sitebot.cli.chat import chat_cmd
from sitebot.cli.chatbot import chatbot_app
from sitebot.cli.init import init_cmd
from sitebot.cli.serve import serve_cmd
from sitebot.cli.source import source_app
from sitebot.cli.webhooks import webhooks_app


def _installed_version() -> str:
    try:
        return importlib.metadata.version("sitebot")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sitebot {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="sitebot",
    help=(
        "sitebot — website chatbots over your own content.\n\n"
        "  sitebot source add-url  Train a chatbot on a web page.\n"
        "  sitebot chat            Talk to it in the terminal.\n"
        "  sitebot serve           Expose the widget API over HTTP."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """sitebot — website chatbots over your own content."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


app.command("init")(init_cmd)
app.command("chat")(chat_cmd)
app.command("serve")(serve_cmd)
app.add_typer(chatbot_app, name="chatbot")
app.add_typer(source_app, name="source")
app.add_typer(webhooks_app, name="webhooks")


@app.command("version")
def version_cmd() -> None:
    """Show the installed sitebot version."""
    typer.echo(f"sitebot {_installed_version()}")


if __name__ == "__main__":
    app()
