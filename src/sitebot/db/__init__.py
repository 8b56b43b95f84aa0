"""sitebot database layer."""

from sitebot.db.connection import Database
from sitebot.db.migrations import MIGRATIONS, run_migrations
from sitebot.db.repository import Repository
from sitebot.db.schema import initialize
from sitebot.db.vector_store import QueryMatch, VectorEntry, VectorStore, VectorStoreError

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "VectorStore",
    "VectorEntry",
    "QueryMatch",
    "VectorStoreError",
]
