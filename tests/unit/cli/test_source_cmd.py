"""Tests for sitebot source commands (embeddings faked, no network)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from sitebot.cli.main import app
from sitebot.db.models import ChatbotStatus, DataSourceStatus
from sitebot.db.repository import Repository
from sitebot.ingest.web import CrawledPage
from sitebot.services import open_db

runner = CliRunner()


@pytest.fixture
def bot_id(project: Path, fake_embedding_client) -> str:
    result = runner.invoke(app, ["init", "--chatbot", "Helper"])
    assert result.exit_code == 0, result.output
    conn = open_db(project / ".sitebot.db")
    try:
        return Repository(conn).list_chatbots("default")[0].id
    finally:
        conn.close()


def _with_repo(project: Path, fn):
    conn = open_db(project / ".sitebot.db")
    try:
        return fn(Repository(conn))
    finally:
        conn.close()


def _add_text(bot_id: str, content: str = "The capital of France is Paris.", title: str = "Facts"):
    return runner.invoke(app, ["source", "add-text", bot_id, "-t", title, "-c", content])


def test_add_text_trains_chatbot(project: Path, bot_id: str) -> None:
    result = _add_text(bot_id)
    assert result.exit_code == 0, result.output
    assert "Status: READY" in result.output
    assert "Chunks: 1" in result.output

    bot = _with_repo(project, lambda r: r.get_chatbot(bot_id))
    assert bot.status == ChatbotStatus.ACTIVE


def test_add_text_blank_rejected(project: Path, bot_id: str) -> None:
    result = _add_text(bot_id, content="   ")
    assert result.exit_code == 1
    assert "must not be empty" in result.output
    assert _with_repo(project, lambda r: r.list_data_sources()) == []


def test_add_text_requires_api_key(project: Path, bot_id: str, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY")
    result = _add_text(bot_id)
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_add_text_unknown_chatbot(project: Path, bot_id: str) -> None:
    result = _add_text("missing")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_add_text_other_workspace(project: Path, bot_id: str) -> None:
    result = runner.invoke(app, ["source", "add-text", bot_id, "-c", "x", "-w", "other"])
    assert result.exit_code == 1


def test_add_file_markdown(project: Path, bot_id: str) -> None:
    doc = project / "guide.md"
    doc.write_text("# Guide\n\nInstall with pip.", encoding="utf-8")
    result = runner.invoke(app, ["source", "add-file", bot_id, str(doc)])
    assert result.exit_code == 0, result.output
    assert "guide.md" in result.output


def test_add_file_unsupported(project: Path, bot_id: str) -> None:
    doc = project / "deck.pptx"
    doc.write_bytes(b"PK")
    result = runner.invoke(app, ["source", "add-file", bot_id, str(doc)])
    assert result.exit_code == 1
    assert "Unsupported file type" in result.output


def test_add_url(project: Path, bot_id: str) -> None:
    page = CrawledPage(url="https://example.com/", title="Example", content="Example Domain text.")
    with patch("sitebot.ingest.web.WebCrawler.validate_url"), patch(
        "sitebot.ingest.web.WebCrawler.crawl", return_value=page
    ):
        result = runner.invoke(app, ["source", "add-url", bot_id, "https://example.com/"])
    assert result.exit_code == 0, result.output
    assert "Example" in result.output


def test_add_url_private_address_blocked(project: Path, bot_id: str) -> None:
    with patch("sitebot.ingest.web.socket.getaddrinfo", return_value=[(2, 1, 6, "", ("127.0.0.1", 80))]):
        result = runner.invoke(app, ["source", "add-url", bot_id, "http://internal.example/"])
    assert result.exit_code == 1
    assert "SSRF" in result.output


def test_ingest_failure_exits_1(project: Path, bot_id: str, failing_embedding_client) -> None:
    result = _add_text(bot_id)
    assert result.exit_code == 1
    assert "provider unavailable" in result.output
    sources = _with_repo(project, lambda r: r.list_data_sources())
    assert sources[0].status == DataSourceStatus.ERROR


def test_list_and_status(project: Path, bot_id: str) -> None:
    _add_text(bot_id, title="Facts")

    listed = runner.invoke(app, ["source", "list", bot_id])
    assert listed.exit_code == 0, listed.output
    assert "Facts" in listed.output
    assert "READY" in listed.output

    status = runner.invoke(app, ["source", "status", bot_id])
    assert status.exit_code == 0, status.output
    assert "100%" in status.output


def test_list_empty(project: Path, bot_id: str) -> None:
    result = runner.invoke(app, ["source", "list", bot_id])
    assert result.exit_code == 0
    assert "No sources" in result.output


def test_exclude_and_include(project: Path, bot_id: str) -> None:
    _add_text(bot_id)
    source_id = _with_repo(project, lambda r: r.list_data_sources()[0].id)

    result = runner.invoke(app, ["source", "exclude", bot_id, source_id])
    assert result.exit_code == 0, result.output
    assert _with_repo(project, lambda r: r.included_source_ids(bot_id)) == []

    runner.invoke(app, ["source", "include", bot_id, source_id])
    assert _with_repo(project, lambda r: r.included_source_ids(bot_id)) == [source_id]


def test_remove_with_yes(project: Path, bot_id: str) -> None:
    _add_text(bot_id)
    source_id = _with_repo(project, lambda r: r.list_data_sources()[0].id)

    result = runner.invoke(app, ["source", "remove", source_id, "--yes"])
    assert result.exit_code == 0, result.output
    assert "Removed" in result.output
    assert _with_repo(project, lambda r: r.get_data_source(source_id)) is None


def test_remove_cancelled(project: Path, bot_id: str) -> None:
    _add_text(bot_id)
    source_id = _with_repo(project, lambda r: r.list_data_sources()[0].id)

    result = runner.invoke(app, ["source", "remove", source_id], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert _with_repo(project, lambda r: r.get_data_source(source_id)) is not None


def test_remove_unknown_source(project: Path, bot_id: str) -> None:
    result = runner.invoke(app, ["source", "remove", "missing", "-y"])
    assert result.exit_code == 1
    assert "Source not found" in result.output


def test_resync_text_source_rejected(project: Path, bot_id: str) -> None:
    _add_text(bot_id)
    source_id = _with_repo(project, lambda r: r.list_data_sources()[0].id)
    result = runner.invoke(app, ["source", "resync", source_id])
    assert result.exit_code == 1
    assert "Only website sources" in result.output
