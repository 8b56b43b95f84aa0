"""Tests for the failed-delivery retry sweep."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx

from sitebot.db.models import WebhookEventStatus
from sitebot.webhooks.dispatcher import RetryConfig, WebhookDispatcher
from sitebot.webhooks.endpoints import create_endpoint, update_endpoint
from sitebot.webhooks.events import TrainingFailedData
from sitebot.webhooks.retry import retry_failed_events

FAILED = TrainingFailedData(chatbot_id="c1", source_id="s1", error="boom")


class Flaky:
    """Transport handler answering with the queued status codes, then 200."""

    def __init__(self, *codes: int) -> None:
        self.codes = list(codes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.codes.pop(0) if self.codes else 200)


def _later(seconds: int = 60) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def _failed_event(repo, handler, retry=RetryConfig()):
    ep = create_endpoint(repo, "ws-1", "https://a.example.com/", ["TRAINING_FAILED"])
    dispatcher = WebhookDispatcher(repo, retry=retry, transport=httpx.MockTransport(handler))
    dispatcher.dispatch("ws-1", "TRAINING_FAILED", FAILED)
    return ep, dispatcher


def test_nothing_due_before_backoff(repo):
    handler = Flaky(500)
    ep, dispatcher = _failed_event(repo, handler)

    summary = retry_failed_events(repo, dispatcher, now=datetime.now(timezone.utc) - timedelta(seconds=5))
    assert summary.attempted == 0
    assert len(handler.requests) == 1


def test_retry_succeeds_with_same_event_id(repo):
    handler = Flaky(500)
    ep, dispatcher = _failed_event(repo, handler)

    summary = retry_failed_events(repo, dispatcher, now=_later())

    assert summary.attempted == 1
    assert summary.succeeded == 1
    first, second = (json.loads(r.content)["id"] for r in handler.requests)
    assert first == second
    event = repo.list_webhook_events(ep.id)[0]
    assert event.status == WebhookEventStatus.SENT
    assert event.attempts == 2


def test_attempts_exhausted(repo):
    handler = Flaky(500, 500, 500, 500)
    ep, dispatcher = _failed_event(repo, handler)

    assert retry_failed_events(repo, dispatcher, now=_later()).failed == 1
    assert retry_failed_events(repo, dispatcher, now=_later(120)).failed == 1
    assert retry_failed_events(repo, dispatcher, now=_later(600)).attempted == 0

    event = repo.list_webhook_events(ep.id)[0]
    assert event.status == WebhookEventStatus.FAILED
    assert event.attempts == 3
    assert event.next_attempt_at is None
    assert len(handler.requests) == 3


def test_inactive_endpoint_parked(repo):
    handler = Flaky(500)
    ep, dispatcher = _failed_event(repo, handler)
    update_endpoint(repo, "ws-1", ep.id, active=False)

    summary = retry_failed_events(repo, dispatcher, now=_later())

    assert summary.skipped == 1
    assert summary.attempted == 0
    event = repo.list_webhook_events(ep.id)[0]
    assert event.next_attempt_at is None
    assert "inactive" in event.last_error
    assert retry_failed_events(repo, dispatcher, now=_later(600)).skipped == 0
