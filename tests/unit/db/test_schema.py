"""Tests for database schema initialization."""

from __future__ import annotations

import sqlite3

import pytest

from sitebot.db.schema import CURRENT_VERSION, initialize


def _table_columns(conn, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def test_chatbots_columns(tmp_db):
    assert _table_columns(tmp_db, "chatbots") == {
        "id", "public_id", "workspace_id", "name", "system_prompt",
        "welcome_message", "status", "last_trained_at", "created_at",
    }


def test_document_chunks_columns(tmp_db):
    assert _table_columns(tmp_db, "document_chunks") == {
        "id", "data_source_id", "content", "metadata", "embedding", "created_at",
    }


def test_webhook_events_columns(tmp_db):
    assert _table_columns(tmp_db, "webhook_events") == {
        "id", "endpoint_id", "type", "payload", "status", "attempts",
        "last_error", "sent_at", "next_attempt_at", "created_at",
    }


def test_schema_version_recorded(tmp_db):
    version = tmp_db.execute("SELECT version FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    assert tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0] == 1


def test_chatbot_public_id_unique(tmp_db):
    sql = "INSERT INTO chatbots (id, public_id, workspace_id, name) VALUES (?, ?, ?, ?)"
    tmp_db.execute(sql, ("a", "cb_same", "ws", "A"))
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(sql, ("b", "cb_same", "ws", "B"))


def test_deleting_source_cascades_links_and_chunks(tmp_db):
    tmp_db.execute(
        "INSERT INTO chatbots (id, public_id, workspace_id, name) VALUES ('c', 'cb_1', 'ws', 'C')"
    )
    tmp_db.execute(
        "INSERT INTO data_sources (id, workspace_id, type, name) VALUES ('s', 'ws', 'TEXT', 'S')"
    )
    tmp_db.execute("INSERT INTO chatbot_data_sources (chatbot_id, data_source_id) VALUES ('c', 's')")
    tmp_db.execute(
        "INSERT INTO document_chunks (id, data_source_id, content, embedding) "
        "VALUES ('k', 's', 'text', x'00000000')"
    )
    tmp_db.execute("DELETE FROM data_sources WHERE id = 's'")
    assert tmp_db.execute("SELECT COUNT(*) FROM chatbot_data_sources").fetchone()[0] == 0
    assert tmp_db.execute("SELECT COUNT(*) FROM document_chunks").fetchone()[0] == 0
