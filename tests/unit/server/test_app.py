"""Tests for the HTTP binding (FastAPI TestClient, model and webhooks mocked)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from sitebot.chatbots import create_chatbot
from sitebot.config import SitebotConfig
from sitebot.db.models import ConversationStatus, MessageRole
from sitebot.server.app import create_app
from sitebot.services import build_services, open_db
from sitebot.webhooks.endpoints import create_endpoint

_COMPLETION = "sitebot.rag.llm_client.litellm.completion"


def _chunks(*texts: str):
    return iter(
        SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=t))]) for t in texts
    )


@pytest.fixture
def cfg(tmp_path) -> SitebotConfig:
    config = SitebotConfig()
    config.database.path = str(tmp_path / "server.db")
    return config


@pytest.fixture
def received():
    return []


@pytest.fixture
def client(cfg, fake_embedding_client, received):
    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(200)

    app = create_app(cfg, transport=httpx.MockTransport(handler))
    return TestClient(app)


@pytest.fixture
def services(cfg, client):
    svc = build_services(open_db(cfg.database.path), cfg)
    yield svc
    svc.close()


@pytest.fixture
def bot(services):
    chatbot = create_chatbot(services.repo, "ws-1", "Helper", welcome_message="Bonjour!")
    services.pipeline.add_text_source(chatbot.id, "Geo", "The capital of France is Paris.")
    return services.repo.get_chatbot(chatbot.id)


def _chat(client, bot, content="Capital of France?", **extra):
    body = {"chatbotId": bot.public_id, "messages": [{"role": "user", "content": content}], **extra}
    return client.post("/api/widget/chat", json=body)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Widget
# ---------------------------------------------------------------------------


def test_chat_streams_plain_text(client, bot, services):
    with patch(_COMPLETION, return_value=_chunks("Paris", " is the capital.")):
        r = _chat(client, bot)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/plain")
    assert r.text == "Paris is the capital."
    conversation_id = r.headers["x-conversation-id"]
    messages = services.repo.list_messages(conversation_id)
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]


def test_chat_reuses_conversation(client, bot):
    with patch(_COMPLETION, side_effect=lambda **kw: _chunks("ok")):
        first = _chat(client, bot)
        second = _chat(client, bot, conversationId=first.headers["x-conversation-id"])
    assert second.headers["x-conversation-id"] == first.headers["x-conversation-id"]


def test_chat_model_failure_returns_apology(client, bot):
    with patch(_COMPLETION, side_effect=RuntimeError("provider down")):
        r = _chat(client, bot)
    assert r.status_code == 200
    assert "having trouble" in r.text


def test_chat_unknown_chatbot_404(client):
    r = client.post(
        "/api/widget/chat",
        json={"chatbotId": "cb_missing", "messages": [{"role": "user", "content": "Hi"}]},
    )
    assert r.status_code == 404
    assert r.json() == {"error": "Chatbot not found or inactive"}


def test_chat_last_message_must_be_user(client, bot):
    r = client.post(
        "/api/widget/chat",
        json={"chatbotId": bot.public_id, "messages": [{"role": "assistant", "content": "Hi"}]},
    )
    assert r.status_code == 400


def test_chat_malformed_body_400(client):
    r = client.post("/api/widget/chat", json={"messages": "nope"})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request body"}


def test_widget_config(client, bot):
    r = client.get(f"/api/widget/config/{bot.public_id}")
    assert r.status_code == 200
    assert r.json() == {"publicId": bot.public_id, "name": "Helper", "welcomeMessage": "Bonjour!"}


def test_widget_config_draft_chatbot_404(client, services):
    draft = create_chatbot(services.repo, "ws-1", "Draft")
    assert client.get(f"/api/widget/config/{draft.public_id}").status_code == 404


def test_lead_capture(client, bot, services, received):
    create_endpoint(services.repo, "ws-1", "https://crm.example.com/", ["LEAD_CAPTURED"])
    with patch(_COMPLETION, return_value=_chunks("ok")):
        conversation_id = _chat(client, bot).headers["x-conversation-id"]

    r = client.post(
        "/api/widget/lead",
        json={"chatbotId": bot.public_id, "conversationId": conversation_id, "email": "ada@example.com"},
    )
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert services.repo.get_conversation(conversation_id).lead_email == "ada@example.com"
    assert received[-1]["type"] == "LEAD_CAPTURED"


def test_lead_requires_email_or_phone(client, bot):
    r = client.post("/api/widget/lead", json={"chatbotId": bot.public_id, "name": "Ada"})
    assert r.status_code == 400
    assert "email or phone" in r.json()["error"]


def test_escalate_and_end(client, bot, services):
    with patch(_COMPLETION, return_value=_chunks("ok")):
        conversation_id = _chat(client, bot).headers["x-conversation-id"]

    r = client.post("/api/widget/escalate", json={"conversationId": conversation_id, "reason": "angry"})
    assert r.json() == {"success": True, "status": "ESCALATED"}

    r = client.post("/api/widget/end", json={"conversationId": conversation_id})
    assert r.json() == {"success": True, "status": "RESOLVED"}
    assert services.repo.get_conversation(conversation_id).status == ConversationStatus.RESOLVED


def test_escalate_unknown_conversation_404(client):
    r = client.post("/api/widget/escalate", json={"conversationId": "missing"})
    assert r.status_code == 404


# ---------------------------------------------------------------------------
# Workspace routes
# ---------------------------------------------------------------------------


def test_training_status_requires_workspace_header(client, bot):
    r = client.get(f"/api/training/{bot.id}/status")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


def test_training_status(client, bot):
    r = client.get(f"/api/training/{bot.id}/status", headers={"X-Workspace-Id": "ws-1"})
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ACTIVE"
    assert data["progress"] == 100
    assert data["totalChunks"] == 1
    assert data["dataSources"][0]["name"] == "Geo"


def test_training_status_other_workspace_404(client, bot):
    r = client.get(f"/api/training/{bot.id}/status", headers={"X-Workspace-Id": "ws-2"})
    assert r.status_code == 404


def test_webhook_test_route(client, services, received):
    endpoint = create_endpoint(services.repo, "ws-1", "https://crm.example.com/", ["LEAD_CAPTURED"])
    r = client.post(f"/api/webhooks/{endpoint.id}/test", headers={"X-Workspace-Id": "ws-1"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["statusCode"] == 200
    assert body["error"] is None
    assert received[-1]["data"]["test"] is True


def test_webhook_test_other_workspace_404(client, services):
    endpoint = create_endpoint(services.repo, "ws-1", "https://crm.example.com/", ["LEAD_CAPTURED"])
    r = client.post(f"/api/webhooks/{endpoint.id}/test", headers={"X-Workspace-Id": "ws-2"})
    assert r.status_code == 404


def test_unexpected_error_500(cfg, fake_embedding_client):
    app = create_app(cfg)
    client = TestClient(app, raise_server_exceptions=False)
    with patch("sitebot.server.app.build_services", side_effect=RuntimeError("disk full")):
        r = client.get("/api/widget/config/cb_x")
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
