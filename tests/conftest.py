"""Shared pytest fixtures."""

from __future__ import annotations

import re
import zlib

import httpx
import pytest

from sitebot.chatbots import create_chatbot
from sitebot.db.connection import Database
from sitebot.db.repository import Repository
from sitebot.db.schema import initialize
from sitebot.db.vector_store import VectorStore
from sitebot.rag.embeddings import EmbeddingError
from sitebot.webhooks.dispatcher import WebhookDispatcher

DIMS = 16
WORKSPACE = "ws-1"


class KeywordEmbedder:
    """Deterministic bag-of-words embedder: one bucket per crc32(word) % DIMS."""

    def __init__(self, dimensions: int = DIMS) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vec[zlib.crc32(word.encode()) % self.dimensions] += 1.0
        if not any(vec):
            vec[0] = 1e-3
        return vec

    def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise EmbeddingError("Cannot embed blank text.")
        self.calls.append([text])
        return self._vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [v for v in self.embed_batch_aligned(texts) if v is not None]

    def embed_batch_aligned(self, texts: list[str]) -> list[list[float] | None]:
        self.calls.append(list(texts))
        return [self._vector(t) if t.strip() else None for t in texts]


class FailingEmbedder(KeywordEmbedder):
    def embed(self, text: str) -> list[float]:
        raise EmbeddingError("provider unavailable")

    def embed_batch_aligned(self, texts: list[str]) -> list[list[float] | None]:
        raise EmbeddingError("provider unavailable")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".sitebot.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def store(tmp_db):
    return VectorStore(tmp_db, DIMS)


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def webhook_requests():
    """Requests seen by the ``dispatcher`` fixture's mock transport."""
    return []


@pytest.fixture
def dispatcher(repo, webhook_requests):
    """Dispatcher whose endpoints all answer 200 without touching the network."""

    def handler(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200)

    return WebhookDispatcher(repo, transport=httpx.MockTransport(handler))


@pytest.fixture
def chatbot(repo):
    return create_chatbot(repo, WORKSPACE, "Helper")


@pytest.fixture
def fake_embedding_client(monkeypatch):
    """Make ``build_services()`` wire a KeywordEmbedder instead of the LiteLLM client."""
    monkeypatch.setattr(
        "sitebot.services.EmbeddingClient",
        lambda model, dimensions, batch_size: KeywordEmbedder(dimensions),
    )


@pytest.fixture
def failing_embedding_client(monkeypatch):
    monkeypatch.setattr(
        "sitebot.services.EmbeddingClient",
        lambda model, dimensions, batch_size: FailingEmbedder(dimensions),
    )


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Empty project directory as CWD, isolated from the user's config and env."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("sitebot.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("SITEBOT_DB", "SITEBOT_GENERATION_MODEL", "SITEBOT_EMBEDDING_MODEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("COLUMNS", "200")
    return tmp_path
