"""Ingestion pipeline: acquire → chunk → embed → upsert → mark READY.

Data source state machine::

    PENDING ──► PROCESSING ──► READY
                     │
                     └───────► ERROR (error_message set)

Input problems that can be detected up front (bad URL scheme, private
address, blank text, unsupported file type) raise ``SourceInputError``
before any row exists. Once the row exists, every failure is caught,
recorded as ERROR with a message, and reported through TRAINING_FAILED;
a source is never left in PROCESSING.

Chunk writes are all-or-nothing: vectors are upserted in one transaction
after every chunk has been embedded.

Ingestion runs synchronously on the caller's thread; the caller gets the
final DataSource back once the pipeline has finished.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

from sitebot.db.models import (
    Chatbot,
    ChatbotStatus,
    DataSource,
    DataSourceStatus,
    DataSourceType,
)
from sitebot.db.repository import Repository
from sitebot.db.vector_store import VectorEntry, VectorStore
from sitebot.errors import NotFoundError, SourceInputError
from sitebot.ingest.base import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, BaseChunker
from sitebot.ingest.pdf import extract_pdf
from sitebot.ingest.recursive import RecursiveChunker
from sitebot.ingest.web import WebCrawler
from sitebot.ingest.window import WindowChunker
from sitebot.rag.embeddings import EmbeddingClient, EmbeddingError
from sitebot.webhooks.dispatcher import WebhookDispatcher
from sitebot.webhooks.events import (
    TrainingCompleteData,
    TrainingFailedData,
    TrainingStartedData,
    WebhookEventType,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = {".pdf"}
TEXT_EXTENSIONS = {".txt", ".md"}
SUPPORTED_EXTENSIONS = PDF_EXTENSIONS | TEXT_EXTENSIONS


@dataclass
class ChunkDraft:
    """A chunk that has been cut and cleaned but not yet embedded."""

    content: str
    metadata: dict = field(default_factory=dict)


@dataclass
class Acquired:
    """Output of the acquisition stage for one source."""

    drafts: list[ChunkDraft]
    name: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class SourceProgress:
    id: str
    name: str
    type: str
    status: str
    chunks_count: int
    included: bool
    error_message: str | None = None


@dataclass
class TrainingStatus:
    """Pollable view of a chatbot's training state."""

    chatbot_id: str
    name: str
    status: str
    last_trained_at: str | None
    progress: int
    data_sources: list[SourceProgress]
    total_chunks: int
    total_sources: int
    processed_sources: int

    def to_dict(self) -> dict:
        return {
            "chatbotId": self.chatbot_id,
            "name": self.name,
            "status": self.status,
            "lastTrainedAt": self.last_trained_at,
            "progress": self.progress,
            "dataSources": [
                {
                    "id": s.id,
                    "name": s.name,
                    "type": s.type,
                    "status": s.status,
                    "chunksCount": s.chunks_count,
                    "included": s.included,
                    "errorMessage": s.error_message,
                }
                for s in self.data_sources
            ],
            "totalChunks": self.total_chunks,
            "totalSources": self.total_sources,
            "processedSources": self.processed_sources,
        }


class IngestionPipeline:
    """Add, re-sync and remove a chatbot's data sources.

    Args:
        repo:          Repository for chatbots and data sources.
        store:         Vector store receiving the chunk embeddings.
        embedder:      Embedding client (``embed_batch_aligned`` is used).
        dispatcher:    Webhook dispatcher for TRAINING_* events.
        chunk_size:    Characters per chunk.
        chunk_overlap: Characters shared by consecutive chunks.
        crawler:       Website crawler; a default ``WebCrawler`` if omitted.
    """

    def __init__(
        self,
        repo: Repository,
        store: VectorStore,
        embedder: EmbeddingClient,
        dispatcher: WebhookDispatcher,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        crawler: WebCrawler | None = None,
    ) -> None:
        self._repo = repo
        self._store = store
        self._embedder = embedder
        self._dispatcher = dispatcher
        self._crawler = crawler or WebCrawler()
        self._text_chunker: BaseChunker = RecursiveChunker(chunk_size, chunk_overlap)
        self._web_chunker: BaseChunker = WindowChunker(chunk_size, chunk_overlap)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def add_website_source(self, chatbot_id: str, url: str) -> DataSource:
        """Crawl *url* into a new WEBSITE source linked to the chatbot.

        Raises:
            NotFoundError: Unknown chatbot.
            SourceInputError: Unsupported scheme, missing host, unresolvable
                or private address (``SsrfError``).
        """
        chatbot = self._require_chatbot(chatbot_id)
        url = url.strip()
        self._crawler.validate_url(url)
        source = self._create_source(chatbot, DataSourceType.WEBSITE, url, {"url": url})
        return self._process(source, [chatbot], lambda: self._acquire_website(url))

    def add_text_source(self, chatbot_id: str, title: str, content: str) -> DataSource:
        """Index pasted *content* as a new TEXT source.

        Raises:
            NotFoundError: Unknown chatbot.
            SourceInputError: Blank content.
        """
        chatbot = self._require_chatbot(chatbot_id)
        if not content or not content.strip():
            raise SourceInputError("Text content must not be empty.")
        name = title.strip() or "Text snippet"
        source = self._create_source(chatbot, DataSourceType.TEXT, name, {})
        return self._process(source, [chatbot], lambda: self._acquire_text(name, content))

    def add_file_source(self, chatbot_id: str, data: bytes, filename: str) -> DataSource:
        """Index an uploaded file (.pdf, .txt or .md) as a new FILE source.

        Raises:
            NotFoundError: Unknown chatbot.
            SourceInputError: Unsupported extension or empty upload.
        """
        chatbot = self._require_chatbot(chatbot_id)
        name = PurePath(filename).name
        ext = PurePath(name).suffix.lower()
        if ext not in SUPPORTED_EXTENSIONS:
            raise SourceInputError(
                f"Unsupported file type '{ext or name}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )
        if not data:
            raise SourceInputError(f"File '{name}' is empty.")

        config = {"fileName": name, "fileSize": len(data)}
        source = self._create_source(chatbot, DataSourceType.FILE, name, config)
        if ext in PDF_EXTENSIONS:
            return self._process(source, [chatbot], lambda: self._acquire_pdf(name, data))
        return self._process(source, [chatbot], lambda: self._acquire_text_file(name, data))

    def resync_source(self, source_id: str) -> DataSource:
        """Re-crawl a WEBSITE source in place: drop its chunks, run the pipeline again."""
        source = self._require_source(source_id)
        if source.type != DataSourceType.WEBSITE:
            raise SourceInputError("Only website sources can be re-synced.")
        url = source.config.get("url", "")
        self._crawler.validate_url(url)

        chatbots = [
            c for c in (self._repo.get_chatbot(cid) for cid in self._repo.chatbot_ids_for_source(source_id))
            if c is not None
        ]
        self._store.delete(source_id)
        self._repo.set_data_source_status(source_id, DataSourceStatus.PENDING)
        return self._process(source, chatbots, lambda: self._acquire_website(url))

    def delete_source(self, source_id: str) -> None:
        """Remove a source's vectors, then the source row (links cascade)."""
        self._require_source(source_id)
        removed = self._store.delete(source_id)
        self._repo.delete_data_source(source_id)
        logger.info("Deleted data source %s (%d chunks)", source_id, removed)

    def set_source_included(self, chatbot_id: str, source_id: str, included: bool) -> None:
        """Include or exclude a linked source from the chatbot's retrieval scope."""
        if not self._repo.set_link_included(chatbot_id, source_id, included):
            raise NotFoundError(
                f"Data source '{source_id}' is not linked to chatbot '{chatbot_id}'."
            )

    def training_status(self, chatbot_id: str, workspace_id: str | None = None) -> TrainingStatus:
        chatbot = self._require_chatbot(chatbot_id)
        if workspace_id is not None and chatbot.workspace_id != workspace_id:
            raise NotFoundError(f"Chatbot '{chatbot_id}' not found.")

        linked = self._repo.list_linked_sources(chatbot_id)
        total = len(linked)
        processed = sum(1 for ls in linked if ls.source.status == DataSourceStatus.READY)
        if chatbot.status == ChatbotStatus.ACTIVE:
            progress = 100
        elif chatbot.status == ChatbotStatus.TRAINING:
            progress = round(processed / total * 100) if total else 50
        else:
            progress = 0

        return TrainingStatus(
            chatbot_id=chatbot.id,
            name=chatbot.name,
            status=chatbot.status.value,
            last_trained_at=chatbot.last_trained_at,
            progress=progress,
            data_sources=[
                SourceProgress(
                    id=ls.source.id,
                    name=ls.source.name,
                    type=ls.source.type.value,
                    status=ls.source.status.value,
                    chunks_count=ls.chunk_count,
                    included=ls.included,
                    error_message=ls.source.error_message,
                )
                for ls in linked
            ],
            total_chunks=sum(ls.chunk_count for ls in linked),
            total_sources=total,
            processed_sources=processed,
        )

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _acquire_website(self, url: str) -> Acquired:
        page = self._crawler.crawl(url)
        title = page.title or url
        drafts = self._cut(
            self._web_chunker, page.content, {"url": url, "title": title}
        )
        return Acquired(drafts=drafts, name=title)

    def _acquire_text(self, title: str, content: str) -> Acquired:
        return Acquired(drafts=self._cut(self._text_chunker, content, {"title": title}))

    def _acquire_text_file(self, name: str, data: bytes) -> Acquired:
        text = data.decode("utf-8-sig")
        return Acquired(drafts=self._cut(self._text_chunker, text, {"fileName": name}))

    def _acquire_pdf(self, name: str, data: bytes) -> Acquired:
        document = extract_pdf(data)
        drafts: list[ChunkDraft] = []
        for page_number, text in document.non_empty_pages():
            drafts.extend(
                self._cut(
                    self._text_chunker,
                    text,
                    {"fileName": name, "page": page_number, "pageCount": document.page_count},
                )
            )
        for index, draft in enumerate(drafts):
            draft.metadata["chunkIndex"] = index
        return Acquired(drafts=drafts, metadata={"pageCount": document.page_count})

    @staticmethod
    def _cut(chunker: BaseChunker, text: str, base_metadata: dict) -> list[ChunkDraft]:
        """Chunk *text*, flatten newlines, drop blank chunks, number the rest."""
        cleaned = [c.replace("\n", " ").strip() for c in chunker.chunk(text)]
        kept = [c for c in cleaned if c]
        return [
            ChunkDraft(content=content, metadata={**base_metadata, "chunkIndex": i})
            for i, content in enumerate(kept)
        ]

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _process(
        self,
        source: DataSource,
        chatbots: list[Chatbot],
        acquire: Callable[[], Acquired],
    ) -> DataSource:
        started = time.monotonic()
        previous = {c.id: c.status for c in chatbots}
        for chatbot in chatbots:
            if chatbot.status == ChatbotStatus.DRAFT:
                self._repo.set_chatbot_status(chatbot.id, ChatbotStatus.TRAINING)

        self._repo.set_data_source_status(source.id, DataSourceStatus.PROCESSING)
        for chatbot in chatbots:
            self._notify(
                chatbot,
                WebhookEventType.TRAINING_STARTED,
                TrainingStartedData(
                    chatbot_id=chatbot.id,
                    source_id=source.id,
                    source_type=source.type.value,
                    started_at=utc_timestamp(),
                ),
            )

        try:
            acquired = acquire()
            if acquired.name and acquired.name != source.name:
                self._repo.rename_data_source(source.id, acquired.name)
            chunk_count = self._store_chunks(source.id, acquired.drafts)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Ingestion of data source %s failed: %s", source.id, message)
            self._repo.set_data_source_status(
                source.id, DataSourceStatus.ERROR, error_message=message
            )
            for chatbot in chatbots:
                self._restore_status(chatbot.id, previous[chatbot.id])
                self._notify(
                    chatbot,
                    WebhookEventType.TRAINING_FAILED,
                    TrainingFailedData(chatbot_id=chatbot.id, source_id=source.id, error=message),
                )
            return self._require_source(source.id)

        metadata = {**source.metadata, **acquired.metadata, "chunkCount": chunk_count}
        self._repo.set_data_source_status(
            source.id, DataSourceStatus.READY, metadata=metadata, synced=True
        )
        duration_ms = int((time.monotonic() - started) * 1000)
        for chatbot in chatbots:
            if chunk_count:
                self._repo.set_chatbot_status(chatbot.id, ChatbotStatus.ACTIVE, trained=True)
            else:
                self._restore_status(chatbot.id, previous[chatbot.id])
            self._notify(
                chatbot,
                WebhookEventType.TRAINING_COMPLETE,
                TrainingCompleteData(
                    chatbot_id=chatbot.id,
                    source_id=source.id,
                    chunks_count=chunk_count,
                    duration_ms=duration_ms,
                ),
            )
        logger.info("Data source %s ready with %d chunks", source.id, chunk_count)
        return self._require_source(source.id)

    def _store_chunks(self, source_id: str, drafts: list[ChunkDraft]) -> int:
        if not drafts:
            return 0
        vectors = self._embedder.embed_batch_aligned([d.content for d in drafts])
        entries: list[VectorEntry] = []
        for draft, vector in zip(drafts, vectors):
            if vector is None:
                raise EmbeddingError("Embedding provider skipped a non-blank chunk.")
            entries.append(
                VectorEntry(
                    id=str(uuid.uuid4()),
                    vector=vector,
                    content=draft.content,
                    data_source_id=source_id,
                    metadata=draft.metadata,
                )
            )
        self._store.upsert(entries)
        return len(entries)

    def _restore_status(self, chatbot_id: str, status: ChatbotStatus) -> None:
        current = self._repo.get_chatbot(chatbot_id)
        if current is not None and current.status == ChatbotStatus.TRAINING and status != current.status:
            self._repo.set_chatbot_status(chatbot_id, status)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_source(
        self, chatbot: Chatbot, source_type: DataSourceType, name: str, config: dict
    ) -> DataSource:
        source = DataSource(
            id=str(uuid.uuid4()),
            workspace_id=chatbot.workspace_id,
            type=source_type,
            name=name,
            config=config,
        )
        self._repo.add_data_source(source)
        self._repo.link_data_source(chatbot.id, source.id)
        return source

    def _require_chatbot(self, chatbot_id: str) -> Chatbot:
        chatbot = self._repo.get_chatbot(chatbot_id)
        if chatbot is None:
            raise NotFoundError(f"Chatbot '{chatbot_id}' not found.")
        return chatbot

    def _require_source(self, source_id: str) -> DataSource:
        source = self._repo.get_data_source(source_id)
        if source is None:
            raise NotFoundError(f"Data source '{source_id}' not found.")
        return source

    def _notify(self, chatbot: Chatbot, event_type: WebhookEventType, data) -> None:
        try:
            self._dispatcher.dispatch(chatbot.workspace_id, event_type, data)
        except Exception:
            logger.exception("Webhook dispatch of %s failed", event_type.value)
