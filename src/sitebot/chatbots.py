"""Chatbot lifecycle helpers shared by the CLI and the HTTP binding."""

from __future__ import annotations

import secrets
import uuid

from sitebot.db.models import Chatbot, ChatbotStatus
from sitebot.db.repository import Repository
from sitebot.errors import NotFoundError, SourceInputError


def create_chatbot(
    repo: Repository,
    workspace_id: str,
    name: str,
    system_prompt: str | None = None,
    welcome_message: str | None = None,
) -> Chatbot:
    """Create a DRAFT chatbot with a random public id for the widget."""
    if not name.strip():
        raise SourceInputError("Chatbot name must not be empty.")
    chatbot = Chatbot(
        id=str(uuid.uuid4()),
        public_id=f"cb_{secrets.token_urlsafe(12)}",
        workspace_id=workspace_id,
        name=name.strip(),
        system_prompt=system_prompt or None,
        welcome_message=welcome_message or None,
        status=ChatbotStatus.DRAFT,
    )
    repo.add_chatbot(chatbot)
    return repo.get_chatbot(chatbot.id) or chatbot


def require_chatbot(
    repo: Repository, chatbot_id: str, workspace_id: str | None = None
) -> Chatbot:
    """Return the chatbot or raise NotFoundError (also for another workspace's bot)."""
    chatbot = repo.get_chatbot(chatbot_id)
    if chatbot is None or (workspace_id is not None and chatbot.workspace_id != workspace_id):
        raise NotFoundError(f"Chatbot '{chatbot_id}' not found.")
    return chatbot
