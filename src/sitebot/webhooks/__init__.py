"""Signed webhook delivery: event catalog, dispatcher, endpoint management, retry sweep."""

from sitebot.webhooks.dispatcher import (
    DEFAULT_RETRY_CONFIG,
    DeliveryResult,
    DispatchResult,
    RetryConfig,
    WebhookDispatcher,
    calculate_backoff_delay,
)
from sitebot.webhooks.events import WebhookEventType, WebhookPayloadError, build_payload
from sitebot.webhooks.retry import retry_failed_events
from sitebot.webhooks.signing import sign_payload, verify_request, verify_signature

__all__ = [
    "DEFAULT_RETRY_CONFIG",
    "DeliveryResult",
    "DispatchResult",
    "RetryConfig",
    "WebhookDispatcher",
    "WebhookEventType",
    "WebhookPayloadError",
    "build_payload",
    "calculate_backoff_delay",
    "retry_failed_events",
    "sign_payload",
    "verify_request",
    "verify_signature",
]
