"""Tests for IngestionPipeline: state machine, chunk storage and TRAINING_* webhooks."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from sitebot.db.models import ChatbotStatus, DataSourceStatus, DataSourceType
from sitebot.errors import NotFoundError, SourceInputError
from sitebot.ingest.pipeline import IngestionPipeline
from sitebot.ingest.web import CrawledPage, CrawlError, SsrfError
from sitebot.webhooks.endpoints import create_endpoint

ALL_TRAINING_EVENTS = ["TRAINING_STARTED", "TRAINING_COMPLETE", "TRAINING_FAILED"]


class FakeCrawler:
    def __init__(self, page: CrawledPage | None = None, error: Exception | None = None) -> None:
        self.page = page
        self.error = error
        self.crawled: list[str] = []

    def validate_url(self, url: str) -> None:
        if "localhost" in url:
            raise SsrfError("URL resolves to private address (127.0.0.1).")
        if not url.startswith(("http://", "https://")):
            raise SourceInputError("Unsupported URL scheme.")

    def crawl(self, url: str) -> CrawledPage:
        self.crawled.append(url)
        if self.error is not None:
            raise self.error
        return self.page


@pytest.fixture
def crawler():
    return FakeCrawler(
        page=CrawledPage(
            url="https://example.com/about",
            title="About Acme",
            content="Acme builds rockets. " * 30,
        )
    )


@pytest.fixture
def pipeline(repo, store, embedder, dispatcher, crawler):
    return IngestionPipeline(
        repo, store, embedder, dispatcher, chunk_size=200, chunk_overlap=20, crawler=crawler
    )


@pytest.fixture
def endpoint(repo):
    return create_endpoint(repo, "ws-1", "https://hooks.example.com/in", ALL_TRAINING_EVENTS)


def _sent(webhook_requests) -> list[dict]:
    return [json.loads(r.content) for r in webhook_requests]


# ------------------------------------------------------------------
# Text sources
# ------------------------------------------------------------------


def test_text_source_single_chunk_ready(pipeline, repo, store, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Facts", "The capital of France is Paris.")

    assert source.status == DataSourceStatus.READY
    assert source.type == DataSourceType.TEXT
    assert source.metadata["chunkCount"] == 1
    assert source.error_message is None
    assert source.last_synced_at is not None
    chunks = store.list_chunks(source.id)
    assert [c.content for c in chunks] == ["The capital of France is Paris."]
    assert chunks[0].metadata == {"title": "Facts", "chunkIndex": 0}

    bot = repo.get_chatbot(chatbot.id)
    assert bot.status == ChatbotStatus.ACTIVE
    assert bot.last_trained_at is not None


def test_text_source_links_to_chatbot(pipeline, repo, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Facts", "Some facts.")
    assert repo.included_source_ids(chatbot.id) == [source.id]


def test_blank_text_rejected_before_any_row(pipeline, repo, chatbot):
    with pytest.raises(SourceInputError):
        pipeline.add_text_source(chatbot.id, "Empty", "   \n ")
    assert repo.list_data_sources() == []


def test_unknown_chatbot(pipeline):
    with pytest.raises(NotFoundError):
        pipeline.add_text_source("missing", "x", "text")


def test_chunks_have_newlines_flattened(pipeline, embedder, store, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Lines", "line one\nline two")
    assert store.list_chunks(source.id)[0].content == "line one line two"
    assert embedder.calls[-1] == ["line one line two"]


def test_long_text_multiple_chunks_numbered(pipeline, store, chatbot):
    text = "\n\n".join(f"Section {i}. " + "word " * 30 for i in range(6))
    source = pipeline.add_text_source(chatbot.id, "Long", text)
    chunks = store.list_chunks(source.id)
    assert len(chunks) > 1
    assert [c.metadata["chunkIndex"] for c in chunks] == list(range(len(chunks)))
    assert all(len(c.content) <= 200 for c in chunks)
    assert source.metadata["chunkCount"] == len(chunks)


# ------------------------------------------------------------------
# Failure handling
# ------------------------------------------------------------------


def test_embedding_failure_marks_error(repo, store, failing_embedder, dispatcher, chatbot):
    pipeline = IngestionPipeline(repo, store, failing_embedder, dispatcher)
    source = pipeline.add_text_source(chatbot.id, "Facts", "The capital of France is Paris.")

    assert source.status == DataSourceStatus.ERROR
    assert "provider unavailable" in source.error_message
    assert store.count(source.id) == 0
    assert repo.get_chatbot(chatbot.id).status == ChatbotStatus.DRAFT


def test_failure_keeps_active_chatbot_active(pipeline, repo, store, failing_embedder, dispatcher, chatbot):
    pipeline.add_text_source(chatbot.id, "Facts", "Paris is in France.")
    broken = IngestionPipeline(repo, store, failing_embedder, dispatcher)
    broken.add_text_source(chatbot.id, "More", "Berlin is in Germany.")
    assert repo.get_chatbot(chatbot.id).status == ChatbotStatus.ACTIVE


def test_failure_sends_training_failed(repo, store, failing_embedder, dispatcher, chatbot, endpoint, webhook_requests):
    pipeline = IngestionPipeline(repo, store, failing_embedder, dispatcher)
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")

    sent = _sent(webhook_requests)
    assert [p["type"] for p in sent] == ["TRAINING_STARTED", "TRAINING_FAILED"]
    assert sent[1]["data"]["sourceId"] == source.id
    assert "provider unavailable" in sent[1]["data"]["error"]


def test_webhook_events_on_success(pipeline, chatbot, endpoint, webhook_requests):
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")

    sent = _sent(webhook_requests)
    assert [p["type"] for p in sent] == ["TRAINING_STARTED", "TRAINING_COMPLETE"]
    complete = sent[1]["data"]
    assert complete["chatbotId"] == chatbot.id
    assert complete["sourceId"] == source.id
    assert complete["chunksCount"] == 1
    assert complete["durationMs"] >= 0


def test_webhook_failure_does_not_break_ingestion(repo, store, embedder, chatbot, endpoint):
    dispatcher = MagicMock()
    dispatcher.dispatch.side_effect = RuntimeError("dispatcher down")
    pipeline = IngestionPipeline(repo, store, embedder, dispatcher)
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")
    assert source.status == DataSourceStatus.READY


# ------------------------------------------------------------------
# Website sources
# ------------------------------------------------------------------


def test_website_source_uses_page_title(pipeline, store, crawler, chatbot):
    source = pipeline.add_website_source(chatbot.id, " https://example.com/about ")

    assert crawler.crawled == ["https://example.com/about"]
    assert source.type == DataSourceType.WEBSITE
    assert source.name == "About Acme"
    assert source.config == {"url": "https://example.com/about"}
    assert source.status == DataSourceStatus.READY
    chunks = store.list_chunks(source.id)
    assert len(chunks) > 1
    assert chunks[0].metadata["url"] == "https://example.com/about"
    assert chunks[0].metadata["title"] == "About Acme"


def test_website_ssrf_rejected_before_any_row(pipeline, repo, chatbot):
    with pytest.raises(SsrfError):
        pipeline.add_website_source(chatbot.id, "http://localhost/admin")
    assert repo.list_data_sources() == []


def test_website_crawl_error_marks_error(repo, store, embedder, dispatcher, chatbot):
    crawler = FakeCrawler(error=CrawlError("Unsupported Content-Type 'image/png'"))
    pipeline = IngestionPipeline(repo, store, embedder, dispatcher, crawler=crawler)
    source = pipeline.add_website_source(chatbot.id, "https://example.com/logo.png")
    assert source.status == DataSourceStatus.ERROR
    assert "Content-Type" in source.error_message


def test_resync_replaces_chunks(pipeline, store, crawler, chatbot):
    source = pipeline.add_website_source(chatbot.id, "https://example.com/about")
    before = {c.id for c in store.list_chunks(source.id)}

    crawler.page = CrawledPage(url=crawler.page.url, title="About Acme v2", content="Now we build boats.")
    resynced = pipeline.resync_source(source.id)

    assert resynced.id == source.id
    assert resynced.name == "About Acme v2"
    chunks = store.list_chunks(source.id)
    assert [c.content for c in chunks] == ["Now we build boats."]
    assert not before & {c.id for c in chunks}


def test_resync_rejects_non_website(pipeline, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")
    with pytest.raises(SourceInputError):
        pipeline.resync_source(source.id)


# ------------------------------------------------------------------
# File sources
# ------------------------------------------------------------------


def test_markdown_file(pipeline, store, chatbot):
    source = pipeline.add_file_source(chatbot.id, "\ufeff# Guide\n\nInstall it.".encode(), "docs/guide.md")
    assert source.name == "guide.md"
    assert source.config == {"fileName": "guide.md", "fileSize": len("\ufeff# Guide\n\nInstall it.".encode())}
    assert store.list_chunks(source.id)[0].content.startswith("# Guide")


@pytest.mark.parametrize("name", ["slides.pptx", "archive.zip", "noext"])
def test_unsupported_file_type(pipeline, repo, chatbot, name):
    with pytest.raises(SourceInputError, match="Unsupported file type"):
        pipeline.add_file_source(chatbot.id, b"data", name)
    assert repo.list_data_sources() == []


def test_empty_upload_rejected(pipeline, chatbot):
    with pytest.raises(SourceInputError, match="empty"):
        pipeline.add_file_source(chatbot.id, b"", "notes.txt")


def _mock_pdf(mock_pypdf, texts):
    pages = []
    for text in texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    mock_pypdf.PdfReader.return_value.pages = pages


def test_pdf_pages_carry_page_metadata(pipeline, store, chatbot):
    with patch("sitebot.ingest.pdf.pypdf") as mock_pypdf:
        _mock_pdf(mock_pypdf, ["Page one text.", "", "Page three text."])
        source = pipeline.add_file_source(chatbot.id, b"%PDF", "manual.PDF")

    assert source.metadata["pageCount"] == 3
    assert source.metadata["chunkCount"] == 2
    chunks = store.list_chunks(source.id)
    assert [c.metadata["page"] for c in chunks] == [1, 3]
    assert [c.metadata["chunkIndex"] for c in chunks] == [0, 1]
    assert all(c.metadata["pageCount"] == 3 for c in chunks)


def test_pdf_without_text_is_ready_with_zero_chunks(pipeline, repo, chatbot, endpoint, webhook_requests):
    with patch("sitebot.ingest.pdf.pypdf") as mock_pypdf:
        _mock_pdf(mock_pypdf, ["", None])
        source = pipeline.add_file_source(chatbot.id, b"%PDF", "scan.pdf")

    assert source.status == DataSourceStatus.READY
    assert source.metadata["chunkCount"] == 0
    assert repo.get_chatbot(chatbot.id).status == ChatbotStatus.DRAFT
    complete = _sent(webhook_requests)[-1]
    assert complete["type"] == "TRAINING_COMPLETE"
    assert complete["data"]["chunksCount"] == 0


def test_unreadable_pdf_marks_error(pipeline, chatbot):
    with patch("sitebot.ingest.pdf.pypdf") as mock_pypdf:
        mock_pypdf.PdfReader.side_effect = ValueError("EOF marker not found")
        source = pipeline.add_file_source(chatbot.id, b"not a pdf", "broken.pdf")
    assert source.status == DataSourceStatus.ERROR
    assert "EOF marker" in source.error_message


# ------------------------------------------------------------------
# Deletion, inclusion, status
# ------------------------------------------------------------------


def test_delete_source_removes_chunks_and_row(pipeline, repo, store, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")
    pipeline.delete_source(source.id)
    assert repo.get_data_source(source.id) is None
    assert store.count(source.id) == 0
    assert repo.list_linked_sources(chatbot.id) == []


def test_delete_unknown_source(pipeline):
    with pytest.raises(NotFoundError):
        pipeline.delete_source("missing")


def test_set_source_included(pipeline, repo, chatbot):
    source = pipeline.add_text_source(chatbot.id, "Facts", "Paris.")
    pipeline.set_source_included(chatbot.id, source.id, False)
    assert repo.included_source_ids(chatbot.id) == []
    with pytest.raises(NotFoundError):
        pipeline.set_source_included(chatbot.id, "other", True)


def test_training_status_after_training(pipeline, chatbot):
    pipeline.add_text_source(chatbot.id, "Facts", "Paris.")
    status = pipeline.training_status(chatbot.id, "ws-1")

    assert status.status == "ACTIVE"
    assert status.progress == 100
    assert status.total_sources == 1
    assert status.processed_sources == 1
    assert status.total_chunks == 1

    data = status.to_dict()
    assert data["chatbotId"] == chatbot.id
    assert data["dataSources"][0]["chunksCount"] == 1
    assert data["dataSources"][0]["included"] is True


def test_training_status_draft_is_zero(pipeline, chatbot):
    status = pipeline.training_status(chatbot.id)
    assert status.progress == 0
    assert status.data_sources == []


def test_training_status_other_workspace(pipeline, chatbot):
    with pytest.raises(NotFoundError):
        pipeline.training_status(chatbot.id, "ws-other")
