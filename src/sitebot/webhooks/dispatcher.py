"""Webhook dispatcher: resolve subscribed endpoints, sign, POST, record outcome.

Per matching endpoint, in sequence:
  1. Build the payload envelope (each endpoint gets its own event id).
  2. Persist a PENDING ``webhook_events`` row before any network I/O.
  3. POST the signed body with a hard timeout; any 2xx is success.
  4. Record the outcome once: SENT, or FAILED with the error string and the
     time the retry sweep may try again.

One endpoint failing never stops delivery to the others. ``dispatch`` makes
exactly one attempt per endpoint; re-delivery of FAILED events is the job of
``sitebot.webhooks.retry``.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from sitebot.db.models import WebhookEndpoint, WebhookEvent, WebhookEventStatus
from sitebot.db.repository import Repository
from sitebot.errors import NotFoundError
from sitebot.webhooks.events import (
    WebhookEventType,
    build_payload,
    new_payload,
    parse_event_type,
)
from sitebot.webhooks.signing import serialize_payload, signature_headers

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5_000
DEFAULT_TEST_TIMEOUT_MS = 10_000


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 30_000


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> int:
    """Delay in ms before retry number *attempt* (0-based): base * 2^attempt, capped."""
    return min(config.base_delay_ms * 2**attempt, config.max_delay_ms)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


@dataclass
class DeliveryResult:
    success: bool
    status_code: int | None = None
    error: str | None = None
    response_time_ms: int = 0


@dataclass
class DispatchResult:
    """Aggregate of one ``dispatch`` call.

    ``triggered_count`` counts endpoints that accepted the delivery (2xx);
    ``event_ids`` lists every recorded event, successful or not.
    """

    triggered_count: int = 0
    event_ids: list[str] = field(default_factory=list)


def deliver_webhook(
    url: str,
    secret: str,
    payload: dict[str, Any],
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    transport: httpx.BaseTransport | None = None,
) -> DeliveryResult:
    """POST the signed *payload* to *url*. Never raises for delivery failures."""
    body = serialize_payload(payload)
    headers = signature_headers(body, secret, payload["id"])
    start = time.monotonic()

    def _elapsed() -> int:
        return int((time.monotonic() - start) * 1000)

    try:
        with httpx.Client(transport=transport, timeout=timeout_ms / 1000) as client:
            response = client.post(url, content=body.encode("utf-8"), headers=headers)
    except httpx.TimeoutException:
        return DeliveryResult(
            success=False,
            error=f"Request timeout after {timeout_ms}ms",
            response_time_ms=_elapsed(),
        )
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return DeliveryResult(
            success=False,
            error=str(exc) or type(exc).__name__,
            response_time_ms=_elapsed(),
        )

    if response.is_success:
        return DeliveryResult(
            success=True, status_code=response.status_code, response_time_ms=_elapsed()
        )
    return DeliveryResult(
        success=False,
        status_code=response.status_code,
        error=f"HTTP {response.status_code}: {response.reason_phrase}",
        response_time_ms=_elapsed(),
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class WebhookDispatcher:
    """Fan an event out to a workspace's subscribed endpoints.

    Args:
        repo:            Repository over the webhook tables.
        timeout_ms:      Per-request timeout for event deliveries.
        test_timeout_ms: Timeout for ``send_test``.
        retry:           Backoff schedule used to stamp ``next_attempt_at``.
        transport:       Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        repo: Repository,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        test_timeout_ms: int = DEFAULT_TEST_TIMEOUT_MS,
        retry: RetryConfig = DEFAULT_RETRY_CONFIG,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._repo = repo
        self.timeout_ms = timeout_ms
        self.test_timeout_ms = test_timeout_ms
        self.retry = retry
        self._transport = transport

    def dispatch(
        self, workspace_id: str, event_type: WebhookEventType | str, data: Any
    ) -> DispatchResult:
        """Deliver *data* as *event_type* to every subscribed, active endpoint.

        Zero subscribers is a no-op. Raises ``WebhookPayloadError`` (before
        anything is persisted) if *data* does not fit the event's schema.
        """
        etype = parse_event_type(event_type)
        build_payload(etype, data)  # validate once, up front

        result = DispatchResult()
        for endpoint in self._repo.list_subscribed_endpoints(workspace_id, etype.value):
            payload = build_payload(etype, data)
            try:
                event = self._record_pending(endpoint, etype, payload)
                result.event_ids.append(event.id)
                outcome = self.deliver_event(endpoint, event, attempt=1)
            except Exception:
                logger.exception(
                    "Webhook %s for endpoint %s could not be recorded", etype.value, endpoint.id
                )
                continue
            if outcome.success:
                result.triggered_count += 1
        return result

    def deliver_event(
        self,
        endpoint: WebhookEndpoint,
        event: WebhookEvent,
        attempt: int,
        timeout_ms: int | None = None,
    ) -> DeliveryResult:
        """Deliver a persisted *event* and record the outcome as attempt *attempt*."""
        timeout = self.timeout_ms if timeout_ms is None else timeout_ms
        outcome = deliver_webhook(
            endpoint.url, endpoint.secret, event.payload, timeout, transport=self._transport
        )
        now = _utcnow()
        if outcome.success:
            self._repo.record_webhook_outcome(
                event.id, WebhookEventStatus.SENT, attempt, None, db_time(now)
            )
        else:
            next_attempt = None
            if attempt < self.retry.max_attempts:
                delay = calculate_backoff_delay(attempt - 1, self.retry)
                next_attempt = db_time(now + timedelta(milliseconds=delay))
            self._repo.record_webhook_outcome(
                event.id, WebhookEventStatus.FAILED, attempt, outcome.error, None, next_attempt
            )
            logger.warning(
                "Webhook %s to endpoint %s failed (attempt %d): %s",
                event.type,
                endpoint.id,
                attempt,
                outcome.error,
            )
        return outcome

    def send_test(self, endpoint_id: str, workspace_id: str | None = None) -> DeliveryResult:
        """Send a TRAINING_COMPLETE test delivery to one endpoint and record it.

        The test event is recorded with its final outcome and is never retried.
        """
        endpoint = self._repo.get_webhook_endpoint(endpoint_id, workspace_id)
        if endpoint is None:
            raise NotFoundError(f"Webhook endpoint '{endpoint_id}' not found.")

        payload = new_payload(
            WebhookEventType.TRAINING_COMPLETE,
            {
                "test": True,
                "chatbotId": "test_chatbot_123",
                "chatbotName": "Test Chatbot",
                "chunksCreated": 42,
                "duration": 5000,
                "message": "This is a test webhook delivery",
            },
        )
        outcome = deliver_webhook(
            endpoint.url,
            endpoint.secret,
            payload,
            self.test_timeout_ms,
            transport=self._transport,
        )
        self._repo.add_webhook_event(
            WebhookEvent(
                id=str(uuid.uuid4()),
                endpoint_id=endpoint.id,
                type=WebhookEventType.TRAINING_COMPLETE.value,
                payload=payload,
                status=WebhookEventStatus.SENT if outcome.success else WebhookEventStatus.FAILED,
                attempts=1,
                last_error=outcome.error,
                sent_at=db_time(_utcnow()) if outcome.success else None,
            )
        )
        return outcome

    def _record_pending(
        self, endpoint: WebhookEndpoint, etype: WebhookEventType, payload: dict[str, Any]
    ) -> WebhookEvent:
        event = WebhookEvent(
            id=str(uuid.uuid4()),
            endpoint_id=endpoint.id,
            type=etype.value,
            payload=payload,
        )
        self._repo.add_webhook_event(event)
        return event


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def db_time(moment: datetime) -> str:
    """Naive-UTC text that sorts correctly against SQLite's datetime('now')."""
    return moment.astimezone(timezone.utc).replace(tzinfo=None).isoformat(
        sep=" ", timespec="milliseconds"
    )
