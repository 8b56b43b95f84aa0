"""Tests for sitebot chatbot create / list / show."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from sitebot.cli.main import app
from sitebot.db.repository import Repository
from sitebot.services import open_db

runner = CliRunner()


@pytest.fixture
def initialized(project: Path) -> Path:
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    return project


def _chatbots(project: Path, workspace: str = "default"):
    conn = open_db(project / ".sitebot.db")
    try:
        return Repository(conn).list_chatbots(workspace)
    finally:
        conn.close()


def test_no_database_exits_1(project: Path) -> None:
    result = runner.invoke(app, ["chatbot", "list"])
    assert result.exit_code == 1
    assert "No database found" in result.output
    assert "sitebot init" in result.output


def test_create_chatbot(initialized: Path) -> None:
    result = runner.invoke(
        app, ["chatbot", "create", "Support", "--welcome", "Hello there!"]
    )
    assert result.exit_code == 0, result.output

    bots = _chatbots(initialized)
    assert len(bots) == 1
    assert bots[0].welcome_message == "Hello there!"
    assert bots[0].public_id in result.output


def test_create_blank_name_rejected(initialized: Path) -> None:
    result = runner.invoke(app, ["chatbot", "create", "  "])
    assert result.exit_code == 1
    assert "must not be empty" in result.output


def test_list_empty(initialized: Path) -> None:
    result = runner.invoke(app, ["chatbot", "list"])
    assert result.exit_code == 0
    assert "No chatbots" in result.output


def test_list_is_workspace_scoped(initialized: Path) -> None:
    runner.invoke(app, ["chatbot", "create", "Alpha"])
    runner.invoke(app, ["chatbot", "create", "Beta", "-w", "other"])

    result = runner.invoke(app, ["chatbot", "list"])
    assert result.exit_code == 0, result.output
    assert "Alpha" in result.output
    assert "Beta" not in result.output


def test_show_chatbot(initialized: Path) -> None:
    runner.invoke(app, ["chatbot", "create", "Support", "--system-prompt", "Be brief."])
    bot = _chatbots(initialized)[0]

    result = runner.invoke(app, ["chatbot", "show", bot.id])
    assert result.exit_code == 0, result.output
    assert "Support" in result.output
    assert "DRAFT" in result.output
    assert "Be brief." in result.output


def test_show_unknown_chatbot(initialized: Path) -> None:
    result = runner.invoke(app, ["chatbot", "show", "missing"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_explicit_db_path(project: Path) -> None:
    runner.invoke(app, ["init", "elsewhere"])
    db = project / "elsewhere" / ".sitebot.db"
    result = runner.invoke(app, ["chatbot", "create", "Remote", "--db", str(db)])
    assert result.exit_code == 0, result.output
    conn = open_db(db)
    try:
        assert [b.name for b in Repository(conn).list_chatbots("default")] == ["Remote"]
    finally:
        conn.close()
