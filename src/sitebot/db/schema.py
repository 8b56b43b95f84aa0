"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from sitebot.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]

TABLES = (
    "chatbots",
    "data_sources",
    "chatbot_data_sources",
    "document_chunks",
    "conversations",
    "messages",
    "webhook_endpoints",
    "webhook_events",
)


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
