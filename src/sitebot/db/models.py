"""Domain models for the sitebot database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DataSourceType(str, Enum):
    WEBSITE = "WEBSITE"
    FILE = "FILE"
    TEXT = "TEXT"


class DataSourceStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


class ChatbotStatus(str, Enum):
    DRAFT = "DRAFT"
    TRAINING = "TRAINING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class WebhookEventStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


@dataclass
class Chatbot:
    id: str
    public_id: str
    workspace_id: str
    name: str
    system_prompt: str | None = None
    welcome_message: str | None = None
    status: ChatbotStatus = ChatbotStatus.DRAFT
    last_trained_at: str | None = None
    created_at: str | None = None


@dataclass
class DataSource:
    """A named content origin owned by a workspace.

    ``config`` holds origin settings (url, fileName, ...); ``metadata`` holds
    results of processing (chunkCount, pageCount, ...).
    """

    id: str
    workspace_id: str
    type: DataSourceType
    name: str
    status: DataSourceStatus = DataSourceStatus.PENDING
    config: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    error_message: str | None = None
    last_synced_at: str | None = None
    created_at: str | None = None


@dataclass
class LinkedSource:
    """A data source as seen through one chatbot's link table."""

    source: DataSource
    included: bool = True
    chunk_count: int = 0


@dataclass
class Conversation:
    id: str
    chatbot_id: str
    visitor_id: str
    status: ConversationStatus = ConversationStatus.ACTIVE
    lead_email: str | None = None
    lead_name: str | None = None
    lead_phone: str | None = None
    lead_company: str | None = None
    started_at: str | None = None
    ended_at: str | None = None


@dataclass
class Message:
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: str | None = None


@dataclass
class WebhookEndpoint:
    id: str
    workspace_id: str
    url: str
    events: list[str]
    secret: str
    description: str | None = None
    active: bool = True
    created_at: str | None = None

    @property
    def masked_secret(self) -> str:
        return f"***{self.secret[-4:]}"


@dataclass
class WebhookEvent:
    id: str
    endpoint_id: str
    type: str
    payload: dict
    status: WebhookEventStatus = WebhookEventStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    sent_at: str | None = None
    next_attempt_at: str | None = None
    created_at: str | None = None
