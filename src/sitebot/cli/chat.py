"""sitebot chat — interactive, streamed session with an active chatbot.

Each line typed is one visitor turn; the answer is printed as it streams.
An empty line, ``exit`` or ``quit`` ends the session and resolves the
conversation. ``--message`` asks a single question and exits.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from sitebot.chatbots import require_chatbot
from sitebot.cli.common import (
    DEFAULT_WORKSPACE,
    DbOption,
    WorkspaceOption,
    load_cli_config,
    open_services,
    require_api_key,
)
from sitebot.cli.errors import err_chatbot_inactive, err_chatbot_not_found
from sitebot.db.models import ChatbotStatus
from sitebot.errors import NotFoundError
from sitebot.rag.responder import ChatRequest, ChatResponder, ChatTurn, DEFAULT_WELCOME_MESSAGE

console = Console()

_QUIT_WORDS = frozenset({"exit", "quit", ":q"})


def chat_cmd(
    chatbot_id: Annotated[str, typer.Argument(help="Chatbot id.")],
    message: Annotated[
        str | None,
        typer.Option("--message", "-m", help="Ask one question and exit."),
    ] = None,
    visitor: Annotated[
        str,
        typer.Option("--visitor", help="Visitor id recorded on the conversation."),
    ] = "cli",
    workspace: WorkspaceOption = DEFAULT_WORKSPACE,
    db: DbOption = None,
) -> None:
    """Chat with a trained chatbot in the terminal."""
    cfg = load_cli_config()
    require_api_key(cfg.generation.model)

    with open_services(db) as svc:
        try:
            bot = require_chatbot(svc.repo, chatbot_id, workspace)
        except NotFoundError:
            console.print(err_chatbot_not_found(chatbot_id, workspace))
            raise typer.Exit(1)
        if bot.status != ChatbotStatus.ACTIVE:
            console.print(err_chatbot_inactive(bot.name))
            raise typer.Exit(1)

        session = _Session(svc.responder, bot.public_id, visitor)
        if message is not None:
            session.ask(message)
            return

        console.print(f"[bold]{bot.name}[/]: {bot.welcome_message or DEFAULT_WELCOME_MESSAGE}")
        console.print("[dim](empty line or 'exit' to quit)[/]\n")
        try:
            while True:
                question = typer.prompt("You", default="", show_default=False).strip()
                if not question or question.lower() in _QUIT_WORDS:
                    break
                session.ask(question)
        except (EOFError, KeyboardInterrupt, typer.Abort):
            console.print()
        finally:
            session.end()


class _Session:
    """Client-side history for one conversation."""

    def __init__(self, responder: ChatResponder, public_id: str, visitor_id: str) -> None:
        self._responder = responder
        self._public_id = public_id
        self._visitor_id = visitor_id
        self.history: list[ChatTurn] = []
        self.conversation_id: str | None = None

    def ask(self, question: str) -> str:
        self.history.append(ChatTurn(role="user", content=question))
        reply = self._responder.respond(
            ChatRequest(
                chatbot_public_id=self._public_id,
                messages=list(self.history),
                visitor_id=self._visitor_id,
                conversation_id=self.conversation_id,
            )
        )
        self.conversation_id = reply.conversation_id

        parts: list[str] = []
        console.print("[bold cyan]Bot[/]: ", end="")
        for delta in reply.stream:
            parts.append(delta)
            console.print(delta, end="", markup=False, highlight=False)
        console.print("\n")

        answer = "".join(parts)
        self.history.append(ChatTurn(role="assistant", content=answer))
        return answer

    def end(self) -> None:
        if self.conversation_id is not None:
            self._responder.end_conversation(self.conversation_id)
