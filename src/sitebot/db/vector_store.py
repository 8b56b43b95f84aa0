"""Scoped nearest-neighbour store for document chunks.

Chunks are stored in ``document_chunks`` with their embedding packed as a
float32 blob (``sqlite_vec.serialize_float32``). Similarity search uses
sqlite-vec's ``vec_distance_cosine`` over the rows of the requested data
sources only, ordered by distance and then by insertion order:

  score = 1 - cosine_distance

A tenant-scoped query with an empty scope returns nothing. ``query_global``
is the separate unscoped variant for debugging.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field

from sqlite_vec import serialize_float32


class VectorStoreError(RuntimeError):
    """Raised on malformed entries or a vector/dimension mismatch."""


@dataclass
class VectorEntry:
    """One chunk to write: replace-by-id semantics on upsert."""

    id: str
    vector: list[float]
    content: str
    data_source_id: str
    metadata: dict = field(default_factory=dict)


@dataclass
class QueryMatch:
    id: str
    data_source_id: str
    content: str
    metadata: dict
    score: float


class VectorStore:
    """Persist chunk vectors and rank them by cosine similarity.

    Args:
        conn: Open connection with sqlite-vec loaded and schema initialised.
        dimensions: Fixed embedding dimension; every written or queried
            vector must have exactly this length.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self._conn = conn
        self.dimensions = dimensions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, entries: list[VectorEntry]) -> None:
        """Insert or replace *entries* by id in a single transaction.

        Either every entry is written or none is.

        Raises:
            VectorStoreError: If any entry has the wrong dimension or the
                write fails (the transaction is rolled back).
        """
        if not entries:
            return
        for entry in entries:
            self._check_dimensions(entry.vector, what=f"entry '{entry.id}'")

        rows = [
            (
                e.id,
                e.data_source_id,
                e.content,
                json.dumps(e.metadata),
                serialize_float32(e.vector),
            )
            for e in entries
        ]
        try:
            with self._conn:
                self._conn.executemany(
                    """
                    INSERT INTO document_chunks (id, data_source_id, content, metadata, embedding)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        data_source_id = excluded.data_source_id,
                        content        = excluded.content,
                        metadata       = excluded.metadata,
                        embedding      = excluded.embedding
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Failed to write {len(rows)} chunks: {exc}") from exc

    def delete(self, data_source_id: str) -> int:
        """Remove all chunks of *data_source_id*. Returns the number deleted.

        Deleting a source with no chunks is a no-op.
        """
        cur = self._conn.execute(
            "DELETE FROM document_chunks WHERE data_source_id = ?", (data_source_id,)
        )
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(
        self,
        vector: list[float],
        scope_data_source_ids: list[str],
        top_k: int = 5,
    ) -> list[QueryMatch]:
        """Return up to *top_k* chunks from the scoped sources, most similar first.

        An empty scope yields an empty list; this never widens to a global search.
        """
        if not scope_data_source_ids or top_k < 1:
            return []
        self._check_dimensions(vector, what="query vector")

        placeholders = ",".join("?" * len(scope_data_source_ids))
        sql = f"""
            SELECT id, data_source_id, content, metadata,
                   vec_distance_cosine(embedding, ?) AS distance
            FROM document_chunks
            WHERE data_source_id IN ({placeholders})
            ORDER BY distance ASC, rowid ASC
            LIMIT ?
        """
        params = [serialize_float32(vector), *scope_data_source_ids, top_k]
        return self._run_query(sql, params)

    def query_global(self, vector: list[float], top_k: int = 5) -> list[QueryMatch]:
        """Unscoped search across every stored chunk. Debugging only."""
        if top_k < 1:
            return []
        self._check_dimensions(vector, what="query vector")
        sql = """
            SELECT id, data_source_id, content, metadata,
                   vec_distance_cosine(embedding, ?) AS distance
            FROM document_chunks
            ORDER BY distance ASC, rowid ASC
            LIMIT ?
        """
        return self._run_query(sql, [serialize_float32(vector), top_k])

    def count(self, data_source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM document_chunks WHERE data_source_id = ?",
            (data_source_id,),
        ).fetchone()[0]

    def list_chunks(self, data_source_id: str) -> list[QueryMatch]:
        """Return the chunks of a source in insertion order (score is 0.0)."""
        rows = self._conn.execute(
            "SELECT id, data_source_id, content, metadata FROM document_chunks "
            "WHERE data_source_id = ? ORDER BY rowid",
            (data_source_id,),
        ).fetchall()
        return [
            QueryMatch(
                id=r["id"],
                data_source_id=r["data_source_id"],
                content=r["content"],
                metadata=json.loads(r["metadata"]),
                score=0.0,
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_query(self, sql: str, params: list) -> list[QueryMatch]:
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Similarity query failed: {exc}") from exc
        return [
            QueryMatch(
                id=r["id"],
                data_source_id=r["data_source_id"],
                content=r["content"],
                metadata=json.loads(r["metadata"]),
                score=1.0 - r["distance"],
            )
            for r in rows
        ]

    def _check_dimensions(self, vector: list[float], what: str) -> None:
        if len(vector) != self.dimensions:
            raise VectorStoreError(
                f"Dimension mismatch for {what}: got {len(vector)}, "
                f"store expects {self.dimensions}."
            )
