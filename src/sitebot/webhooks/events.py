"""Webhook event catalog and the data schema of each event type.

Every event type maps to one dataclass describing its ``data`` object.
``build_payload()`` accepts either an instance of that dataclass or a mapping
with camelCase keys, validates it against the schema, and wraps it in the
canonical envelope::

    {"id": "evt_<24 hex>", "type": "<EVENT_TYPE>", "timestamp": "<ISO-8601 Z>", "data": {...}}

Payload keys are camelCase on the wire; dataclass fields are snake_case.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import MISSING, asdict, dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class WebhookPayloadError(ValueError):
    """Raised when event data does not match the schema of its event type."""


class WebhookEventType(str, Enum):
    TRAINING_STARTED = "TRAINING_STARTED"
    TRAINING_COMPLETE = "TRAINING_COMPLETE"
    TRAINING_FAILED = "TRAINING_FAILED"
    CONVERSATION_NEW = "CONVERSATION_NEW"
    CONVERSATION_ENDED = "CONVERSATION_ENDED"
    ESCALATION_REQUESTED = "ESCALATION_REQUESTED"
    LEAD_CAPTURED = "LEAD_CAPTURED"
    USAGE_WARNING = "USAGE_WARNING"


EVENT_DESCRIPTIONS: dict[WebhookEventType, tuple[str, str]] = {
    WebhookEventType.TRAINING_STARTED: (
        "Training Started",
        "Triggered when a chatbot starts training on new content",
    ),
    WebhookEventType.TRAINING_COMPLETE: (
        "Training Complete",
        "Triggered when a chatbot finishes training successfully",
    ),
    WebhookEventType.TRAINING_FAILED: (
        "Training Failed",
        "Triggered when training encounters an error",
    ),
    WebhookEventType.CONVERSATION_NEW: (
        "New Conversation",
        "Triggered when a visitor starts a new chat",
    ),
    WebhookEventType.CONVERSATION_ENDED: (
        "Conversation Ended",
        "Triggered when a conversation is closed",
    ),
    WebhookEventType.ESCALATION_REQUESTED: (
        "Escalation Requested",
        "Triggered when a visitor requests human support",
    ),
    WebhookEventType.LEAD_CAPTURED: (
        "Lead Captured",
        "Triggered when a visitor submits their contact info",
    ),
    WebhookEventType.USAGE_WARNING: (
        "Usage Warning",
        "Triggered when approaching monthly usage limits",
    ),
}


# ---------------------------------------------------------------------------
# Event data schemas
# ---------------------------------------------------------------------------


@dataclass
class TrainingStartedData:
    chatbot_id: str
    source_id: str
    source_type: str
    started_at: str


@dataclass
class TrainingCompleteData:
    chatbot_id: str
    source_id: str
    chunks_count: int
    duration_ms: int


@dataclass
class TrainingFailedData:
    chatbot_id: str
    source_id: str
    error: str


@dataclass
class ConversationNewData:
    chatbot_id: str
    conversation_id: str
    visitor_id: str
    started_at: str


@dataclass
class ConversationEndedData:
    chatbot_id: str
    conversation_id: str
    visitor_id: str
    message_count: int
    ended_at: str


@dataclass
class TranscriptMessage:
    role: str
    content: str
    created_at: str | None = None


@dataclass
class EscalationRequestedData:
    chatbot_id: str
    chatbot_name: str
    conversation_id: str
    visitor_id: str
    reason: str
    visitor_email: str | None = None
    visitor_name: str | None = None
    messages: list[TranscriptMessage] = field(default_factory=list)


@dataclass
class LeadInfo:
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    company: str | None = None


@dataclass
class LeadCapturedData:
    chatbot_id: str
    chatbot_name: str
    lead: LeadInfo
    captured_at: str
    conversation_id: str | None = None


@dataclass
class UsageWarningData:
    workspace_id: str
    metric: str
    used: int
    limit: int


EVENT_SCHEMAS: dict[WebhookEventType, type] = {
    WebhookEventType.TRAINING_STARTED: TrainingStartedData,
    WebhookEventType.TRAINING_COMPLETE: TrainingCompleteData,
    WebhookEventType.TRAINING_FAILED: TrainingFailedData,
    WebhookEventType.CONVERSATION_NEW: ConversationNewData,
    WebhookEventType.CONVERSATION_ENDED: ConversationEndedData,
    WebhookEventType.ESCALATION_REQUESTED: EscalationRequestedData,
    WebhookEventType.LEAD_CAPTURED: LeadCapturedData,
    WebhookEventType.USAGE_WARNING: UsageWarningData,
}

# Nested schema types, by (parent schema, field name).
_NESTED: dict[tuple[type, str], tuple[type, bool]] = {
    (EscalationRequestedData, "messages"): (TranscriptMessage, True),
    (LeadCapturedData, "lead"): (LeadInfo, False),
}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def build_payload(event_type: WebhookEventType | str, data: Any) -> dict[str, Any]:
    """Validate *data* for *event_type* and wrap it in the canonical envelope.

    Raises:
        WebhookPayloadError: Unknown event type, wrong dataclass, missing or
            unknown fields.
    """
    etype = parse_event_type(event_type)
    schema = EVENT_SCHEMAS[etype]
    if isinstance(data, Mapping):
        data = _from_mapping(schema, data)
    elif not isinstance(data, schema):
        raise WebhookPayloadError(
            f"{etype.value} expects {schema.__name__}, got {type(data).__name__}."
        )
    return new_payload(etype, to_wire(data))


def new_payload(event_type: WebhookEventType, data: dict[str, Any]) -> dict[str, Any]:
    """Wrap already-serialised *data* in an envelope without schema checks."""
    return {
        "id": new_event_id(),
        "type": event_type.value,
        "timestamp": utc_timestamp(),
        "data": data,
    }


def parse_event_type(value: WebhookEventType | str) -> WebhookEventType:
    try:
        return WebhookEventType(value)
    except ValueError:
        raise WebhookPayloadError(f"Unknown webhook event type '{value}'.") from None


def new_event_id() -> str:
    return f"evt_{secrets.token_hex(12)}"


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with milliseconds and a 'Z' suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def to_wire(data: Any) -> dict[str, Any]:
    """Serialise a schema dataclass to a camelCase dict."""
    if not is_dataclass(data):
        raise WebhookPayloadError(f"Cannot serialise {type(data).__name__} as event data.")
    return _camelize(asdict(data))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _from_mapping(schema: type, raw: Mapping[str, Any]) -> Any:
    by_wire = {_to_camel(f.name): f for f in fields(schema)}
    unknown = sorted(set(raw) - set(by_wire))
    if unknown:
        raise WebhookPayloadError(
            f"Unknown field(s) for {schema.__name__}: {', '.join(unknown)}."
        )

    kwargs: dict[str, Any] = {}
    for wire_name, f in by_wire.items():
        required = f.default is MISSING and f.default_factory is MISSING
        if wire_name not in raw or raw[wire_name] is None:
            if required:
                raise WebhookPayloadError(
                    f"Missing required field '{wire_name}' for {schema.__name__}."
                )
            continue
        value = raw[wire_name]
        nested = _NESTED.get((schema, f.name))
        if nested is not None:
            value = _nested_value(nested, wire_name, value)
        kwargs[f.name] = value
    return schema(**kwargs)


def _nested_value(nested: tuple[type, bool], wire_name: str, value: Any) -> Any:
    cls, many = nested
    if many:
        if not isinstance(value, list):
            raise WebhookPayloadError(f"Field '{wire_name}' must be a list.")
        return [v if isinstance(v, cls) else _from_mapping(cls, _as_mapping(wire_name, v)) for v in value]
    if isinstance(value, cls):
        return value
    return _from_mapping(cls, _as_mapping(wire_name, value))


def _as_mapping(wire_name: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise WebhookPayloadError(f"Field '{wire_name}' must be an object.")
    return value


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_to_camel(k): _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    return value
