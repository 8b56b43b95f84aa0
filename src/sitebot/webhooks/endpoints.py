"""Workspace-scoped management of webhook endpoints.

The signing secret is returned in full only by ``create_endpoint`` and
``regenerate_secret``; listings carry the masked form (``***`` + last 4).
"""

from __future__ import annotations

import dataclasses
import urllib.parse
import uuid

from sitebot.db.models import WebhookEndpoint, WebhookEvent
from sitebot.db.repository import Repository
from sitebot.errors import NotFoundError
from sitebot.webhooks.events import WebhookPayloadError, parse_event_type
from sitebot.webhooks.signing import generate_secret


def create_endpoint(
    repo: Repository,
    workspace_id: str,
    url: str,
    events: list[str],
    description: str | None = None,
) -> WebhookEndpoint:
    """Register a new active endpoint. The returned object holds the full secret.

    Raises:
        WebhookPayloadError: Invalid URL or event list.
    """
    endpoint = WebhookEndpoint(
        id=str(uuid.uuid4()),
        workspace_id=workspace_id,
        url=_validate_url(url),
        events=_validate_events(events),
        secret=generate_secret(),
        description=description or None,
        active=True,
    )
    repo.add_webhook_endpoint(endpoint)
    return repo.get_webhook_endpoint(endpoint.id) or endpoint


def list_endpoints(repo: Repository, workspace_id: str) -> list[WebhookEndpoint]:
    """Return the workspace's endpoints (newest first) with masked secrets."""
    return [
        dataclasses.replace(ep, secret=ep.masked_secret)
        for ep in repo.list_webhook_endpoints(workspace_id)
    ]


def update_endpoint(
    repo: Repository,
    workspace_id: str,
    endpoint_id: str,
    url: str | None = None,
    events: list[str] | None = None,
    description: str | None = None,
    active: bool | None = None,
) -> None:
    _require(repo, workspace_id, endpoint_id)
    repo.update_webhook_endpoint(
        endpoint_id,
        url=_validate_url(url) if url is not None else None,
        events=_validate_events(events) if events is not None else None,
        description=description,
        active=active,
    )


def delete_endpoint(repo: Repository, workspace_id: str, endpoint_id: str) -> None:
    """Delete an endpoint together with its delivery history."""
    _require(repo, workspace_id, endpoint_id)
    repo.delete_webhook_endpoint(endpoint_id)


def regenerate_secret(repo: Repository, workspace_id: str, endpoint_id: str) -> str:
    """Replace the signing secret and return the new one in full."""
    _require(repo, workspace_id, endpoint_id)
    secret = generate_secret()
    repo.update_webhook_endpoint(endpoint_id, secret=secret)
    return secret


def delivery_history(
    repo: Repository, workspace_id: str, endpoint_id: str, limit: int = 10
) -> list[WebhookEvent]:
    """Most recent delivery records of an endpoint, newest first."""
    _require(repo, workspace_id, endpoint_id)
    return repo.list_webhook_events(endpoint_id, limit=limit)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require(repo: Repository, workspace_id: str, endpoint_id: str) -> WebhookEndpoint:
    endpoint = repo.get_webhook_endpoint(endpoint_id, workspace_id)
    if endpoint is None:
        raise NotFoundError(f"Webhook endpoint '{endpoint_id}' not found.")
    return endpoint


def _validate_url(url: str) -> str:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise WebhookPayloadError(f"Invalid webhook URL '{url}'.")
    return url


def _validate_events(events: list[str]) -> list[str]:
    if not events:
        raise WebhookPayloadError("At least one event type is required.")
    ordered: list[str] = []
    for name in events:
        value = parse_event_type(name).value
        if value not in ordered:
            ordered.append(value)
    return ordered
