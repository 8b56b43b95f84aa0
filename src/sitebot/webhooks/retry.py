"""Retry sweep for failed webhook deliveries.

Dispatch makes exactly one attempt per endpoint. This sweep picks up FAILED
events that still have attempts left and whose ``next_attempt_at`` has
passed, and re-delivers the stored payload (same event id, fresh signature).
Run it from ``sitebot webhooks retry`` or any external scheduler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sitebot.db.models import WebhookEventStatus
from sitebot.db.repository import Repository
from sitebot.webhooks.dispatcher import WebhookDispatcher, db_time

logger = logging.getLogger(__name__)


@dataclass
class RetrySummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


def retry_failed_events(
    repo: Repository,
    dispatcher: WebhookDispatcher,
    now: datetime | None = None,
) -> RetrySummary:
    """Re-deliver every due FAILED event once. Returns counts for reporting."""
    moment = now or datetime.now(timezone.utc)
    summary = RetrySummary()

    due = repo.list_due_webhook_events(db_time(moment), dispatcher.retry.max_attempts)
    for event in due:
        endpoint = repo.get_webhook_endpoint(event.endpoint_id)
        if endpoint is None or not endpoint.active:
            # Parked: no next_attempt_at means the sweep never selects it again.
            repo.record_webhook_outcome(
                event.id,
                WebhookEventStatus.FAILED,
                event.attempts,
                "Endpoint inactive; retry abandoned",
                None,
            )
            summary.skipped += 1
            continue

        summary.attempted += 1
        outcome = dispatcher.deliver_event(endpoint, event, attempt=event.attempts + 1)
        if outcome.success:
            summary.succeeded += 1
        else:
            summary.failed += 1

    if due:
        logger.info(
            "Webhook retry sweep: %d attempted, %d succeeded, %d failed, %d skipped",
            summary.attempted,
            summary.succeeded,
            summary.failed,
            summary.skipped,
        )
    return summary
