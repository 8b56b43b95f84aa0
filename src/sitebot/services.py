"""Wire the orchestrators onto one open connection.

Both outer surfaces (CLI and HTTP) build their repository, vector store,
embedding client, webhook dispatcher, ingestion pipeline and responder here,
from a ``SitebotConfig``. Nothing is cached between calls: each ``Services``
belongs to exactly one connection.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

import httpx

from sitebot.config import SitebotConfig
from sitebot.db.connection import Database
from sitebot.db.repository import Repository
from sitebot.db.schema import initialize
from sitebot.db.vector_store import VectorStore
from sitebot.ingest.pipeline import IngestionPipeline
from sitebot.ingest.web import WebCrawler
from sitebot.rag.embeddings import EmbeddingClient
from sitebot.rag.responder import ChatResponder
from sitebot.webhooks.dispatcher import RetryConfig, WebhookDispatcher


@dataclass
class Services:
    conn: sqlite3.Connection
    repo: Repository
    store: VectorStore
    embedder: EmbeddingClient
    dispatcher: WebhookDispatcher
    pipeline: IngestionPipeline
    responder: ChatResponder

    def close(self) -> None:
        self.conn.close()


def open_db(db_path: Path | str) -> sqlite3.Connection:
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def build_services(
    conn: sqlite3.Connection,
    cfg: SitebotConfig,
    transport: httpx.BaseTransport | None = None,
) -> Services:
    """Construct every orchestrator for *conn* from *cfg*.

    *transport* is handed to the webhook dispatcher (tests pass an
    ``httpx.MockTransport``).
    """
    repo = Repository(conn)
    store = VectorStore(conn, cfg.embedding.dimensions)
    embedder = EmbeddingClient(
        cfg.embedding.model,
        dimensions=cfg.embedding.dimensions,
        batch_size=cfg.embedding.batch_size,
    )
    dispatcher = WebhookDispatcher(
        repo,
        timeout_ms=cfg.webhooks.timeout_ms,
        test_timeout_ms=cfg.webhooks.test_timeout_ms,
        retry=RetryConfig(
            max_attempts=cfg.webhooks.max_attempts,
            base_delay_ms=cfg.webhooks.base_delay_ms,
            max_delay_ms=cfg.webhooks.max_delay_ms,
        ),
        transport=transport,
    )
    pipeline = IngestionPipeline(
        repo,
        store,
        embedder,
        dispatcher,
        chunk_size=cfg.chunking.chunk_size,
        chunk_overlap=cfg.chunking.chunk_overlap,
        crawler=WebCrawler(
            timeout=cfg.crawler.timeout,
            max_bytes=cfg.crawler.max_bytes,
            max_redirects=cfg.crawler.max_redirects,
        ),
    )
    responder = ChatResponder(
        repo,
        store,
        embedder,
        dispatcher,
        model=cfg.generation.model,
        temperature=cfg.generation.temperature,
        max_tokens=cfg.generation.max_tokens,
        top_k=cfg.retrieval.top_k,
    )
    return Services(
        conn=conn,
        repo=repo,
        store=store,
        embedder=embedder,
        dispatcher=dispatcher,
        pipeline=pipeline,
        responder=responder,
    )
