"""Repository pattern for the relational side of the sitebot database.

Single interface for: chatbots, data sources and their chatbot links,
conversations, messages, webhook endpoints and webhook delivery events.
Document chunks and their vectors live behind ``VectorStore``.
"""

from __future__ import annotations

import json
import sqlite3

from sitebot.db.models import (
    Chatbot,
    ChatbotStatus,
    Conversation,
    ConversationStatus,
    DataSource,
    DataSourceStatus,
    DataSourceType,
    LinkedSource,
    Message,
    MessageRole,
    WebhookEndpoint,
    WebhookEvent,
    WebhookEventStatus,
)

_CHATBOT_COLS = (
    "id, public_id, workspace_id, name, system_prompt, welcome_message, "
    "status, last_trained_at, created_at"
)
_SOURCE_COLS = (
    "id, workspace_id, type, name, status, config, metadata, error_message, "
    "last_synced_at, created_at"
)
_CONVERSATION_COLS = (
    "id, chatbot_id, visitor_id, status, lead_email, lead_name, lead_phone, "
    "lead_company, started_at, ended_at"
)
_ENDPOINT_COLS = "id, workspace_id, url, events, secret, description, active, created_at"
_EVENT_COLS = (
    "id, endpoint_id, type, payload, status, attempts, last_error, sent_at, "
    "next_attempt_at, created_at"
)


class Repository:
    """Data access layer for all sitebot relational entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see sitebot.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Chatbots
    # ------------------------------------------------------------------

    def add_chatbot(self, chatbot: Chatbot) -> None:
        self._conn.execute(
            """
            INSERT INTO chatbots
                (id, public_id, workspace_id, name, system_prompt, welcome_message, status)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chatbot.id,
                chatbot.public_id,
                chatbot.workspace_id,
                chatbot.name,
                chatbot.system_prompt,
                chatbot.welcome_message,
                chatbot.status.value,
            ),
        )
        self._conn.commit()

    def get_chatbot(self, chatbot_id: str) -> Chatbot | None:
        row = self._conn.execute(
            f"SELECT {_CHATBOT_COLS} FROM chatbots WHERE id = ?", (chatbot_id,)
        ).fetchone()
        return _row_to_chatbot(row) if row else None

    def get_chatbot_by_public_id(self, public_id: str) -> Chatbot | None:
        row = self._conn.execute(
            f"SELECT {_CHATBOT_COLS} FROM chatbots WHERE public_id = ?", (public_id,)
        ).fetchone()
        return _row_to_chatbot(row) if row else None

    def list_chatbots(self, workspace_id: str | None = None) -> list[Chatbot]:
        """Return chatbots ordered by creation time, optionally for one workspace."""
        if workspace_id is None:
            rows = self._conn.execute(
                f"SELECT {_CHATBOT_COLS} FROM chatbots ORDER BY created_at, rowid"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_CHATBOT_COLS} FROM chatbots WHERE workspace_id = ? "
                "ORDER BY created_at, rowid",
                (workspace_id,),
            ).fetchall()
        return [_row_to_chatbot(r) for r in rows]

    def set_chatbot_status(
        self, chatbot_id: str, status: ChatbotStatus, trained: bool = False
    ) -> None:
        """Update chatbot status; ``trained=True`` also stamps last_trained_at."""
        if trained:
            self._conn.execute(
                "UPDATE chatbots SET status = ?, last_trained_at = datetime('now') WHERE id = ?",
                (status.value, chatbot_id),
            )
        else:
            self._conn.execute(
                "UPDATE chatbots SET status = ? WHERE id = ?", (status.value, chatbot_id)
            )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Data sources
    # ------------------------------------------------------------------

    def add_data_source(self, source: DataSource) -> None:
        self._conn.execute(
            """
            INSERT INTO data_sources (id, workspace_id, type, name, status, config, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.workspace_id,
                source.type.value,
                source.name,
                source.status.value,
                json.dumps(source.config),
                json.dumps(source.metadata),
            ),
        )
        self._conn.commit()

    def get_data_source(self, source_id: str) -> DataSource | None:
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLS} FROM data_sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_data_sources(self, workspace_id: str | None = None) -> list[DataSource]:
        if workspace_id is None:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLS} FROM data_sources ORDER BY created_at, rowid"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLS} FROM data_sources WHERE workspace_id = ? "
                "ORDER BY created_at, rowid",
                (workspace_id,),
            ).fetchall()
        return [_row_to_source(r) for r in rows]

    def set_data_source_status(
        self,
        source_id: str,
        status: DataSourceStatus,
        error_message: str | None = None,
        metadata: dict | None = None,
        synced: bool = False,
    ) -> None:
        """Move a data source to *status*.

        ``error_message`` is always overwritten (cleared when None) so a source
        that recovers from ERROR does not keep a stale message. ``metadata`` is
        replaced only when given. ``synced=True`` stamps last_synced_at.
        """
        sets = ["status = ?", "error_message = ?"]
        params: list = [status.value, error_message]
        if metadata is not None:
            sets.append("metadata = ?")
            params.append(json.dumps(metadata))
        if synced:
            sets.append("last_synced_at = datetime('now')")
        params.append(source_id)
        self._conn.execute(
            f"UPDATE data_sources SET {', '.join(sets)} WHERE id = ?", params
        )
        self._conn.commit()

    def rename_data_source(self, source_id: str, name: str) -> None:
        self._conn.execute("UPDATE data_sources SET name = ? WHERE id = ?", (name, source_id))
        self._conn.commit()

    def delete_data_source(self, source_id: str) -> None:
        """Delete a data source row; links and chunks cascade."""
        self._conn.execute("DELETE FROM data_sources WHERE id = ?", (source_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chatbot <-> data source links
    # ------------------------------------------------------------------

    def link_data_source(self, chatbot_id: str, source_id: str, included: bool = True) -> None:
        self._conn.execute(
            """
            INSERT INTO chatbot_data_sources (chatbot_id, data_source_id, included)
            VALUES (?, ?, ?)
            ON CONFLICT(chatbot_id, data_source_id) DO UPDATE SET included = excluded.included
            """,
            (chatbot_id, source_id, int(included)),
        )
        self._conn.commit()

    def set_link_included(self, chatbot_id: str, source_id: str, included: bool) -> bool:
        """Toggle the included flag. Returns False if the link does not exist."""
        cur = self._conn.execute(
            "UPDATE chatbot_data_sources SET included = ? "
            "WHERE chatbot_id = ? AND data_source_id = ?",
            (int(included), chatbot_id, source_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def included_source_ids(self, chatbot_id: str) -> list[str]:
        """Return ids of the linked, included data sources of *chatbot_id*."""
        rows = self._conn.execute(
            """
            SELECT data_source_id FROM chatbot_data_sources
            WHERE chatbot_id = ? AND included = 1
            ORDER BY rowid
            """,
            (chatbot_id,),
        ).fetchall()
        return [r["data_source_id"] for r in rows]

    def list_linked_sources(self, chatbot_id: str) -> list[LinkedSource]:
        """Return every source linked to *chatbot_id* with its chunk count."""
        rows = self._conn.execute(
            f"""
            SELECT {", ".join("ds." + c.strip() for c in _SOURCE_COLS.split(","))},
                   cds.included AS included,
                   (SELECT COUNT(*) FROM document_chunks dc
                    WHERE dc.data_source_id = ds.id) AS chunk_count
            FROM chatbot_data_sources cds
            JOIN data_sources ds ON ds.id = cds.data_source_id
            WHERE cds.chatbot_id = ?
            ORDER BY ds.created_at, ds.rowid
            """,
            (chatbot_id,),
        ).fetchall()
        return [
            LinkedSource(
                source=_row_to_source(r),
                included=bool(r["included"]),
                chunk_count=r["chunk_count"],
            )
            for r in rows
        ]

    def chatbot_ids_for_source(self, source_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT chatbot_id FROM chatbot_data_sources WHERE data_source_id = ?",
            (source_id,),
        ).fetchall()
        return [r["chatbot_id"] for r in rows]

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def add_conversation(self, conversation: Conversation) -> None:
        self._conn.execute(
            "INSERT INTO conversations (id, chatbot_id, visitor_id, status) VALUES (?, ?, ?, ?)",
            (
                conversation.id,
                conversation.chatbot_id,
                conversation.visitor_id,
                conversation.status.value,
            ),
        )
        self._conn.commit()

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self._conn.execute(
            f"SELECT {_CONVERSATION_COLS} FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def update_conversation_lead(
        self,
        conversation_id: str,
        email: str | None = None,
        name: str | None = None,
        phone: str | None = None,
        company: str | None = None,
    ) -> None:
        """Overwrite the lead fields that are given; None leaves a field as is."""
        self._conn.execute(
            """
            UPDATE conversations SET
                lead_email   = COALESCE(?, lead_email),
                lead_name    = COALESCE(?, lead_name),
                lead_phone   = COALESCE(?, lead_phone),
                lead_company = COALESCE(?, lead_company)
            WHERE id = ?
            """,
            (email, name, phone, company, conversation_id),
        )
        self._conn.commit()

    def set_conversation_status(
        self, conversation_id: str, status: ConversationStatus, ended: bool = False
    ) -> None:
        if ended:
            self._conn.execute(
                "UPDATE conversations SET status = ?, ended_at = datetime('now') WHERE id = ?",
                (status.value, conversation_id),
            )
        else:
            self._conn.execute(
                "UPDATE conversations SET status = ? WHERE id = ?",
                (status.value, conversation_id),
            )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> None:
        """Append *message* to its conversation and commit immediately."""
        self._conn.execute(
            "INSERT INTO messages (id, conversation_id, role, content) VALUES (?, ?, ?, ?)",
            (message.id, message.conversation_id, message.role.value, message.content),
        )
        self._conn.commit()

    def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """Return messages in append order (oldest first)."""
        sql = (
            "SELECT id, conversation_id, role, content, created_at FROM messages "
            "WHERE conversation_id = ? ORDER BY rowid"
        )
        params: tuple = (conversation_id,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (conversation_id, limit)
        return [
            Message(
                id=r["id"],
                conversation_id=r["conversation_id"],
                role=MessageRole(r["role"]),
                content=r["content"],
                created_at=r["created_at"],
            )
            for r in self._conn.execute(sql, params).fetchall()
        ]

    # ------------------------------------------------------------------
    # Webhook endpoints
    # ------------------------------------------------------------------

    def add_webhook_endpoint(self, endpoint: WebhookEndpoint) -> None:
        self._conn.execute(
            """
            INSERT INTO webhook_endpoints (id, workspace_id, url, events, secret, description, active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                endpoint.id,
                endpoint.workspace_id,
                endpoint.url,
                json.dumps(endpoint.events),
                endpoint.secret,
                endpoint.description,
                int(endpoint.active),
            ),
        )
        self._conn.commit()

    def get_webhook_endpoint(
        self, endpoint_id: str, workspace_id: str | None = None
    ) -> WebhookEndpoint | None:
        """Return an endpoint by id; with *workspace_id*, only if it owns it."""
        if workspace_id is None:
            row = self._conn.execute(
                f"SELECT {_ENDPOINT_COLS} FROM webhook_endpoints WHERE id = ?",
                (endpoint_id,),
            ).fetchone()
        else:
            row = self._conn.execute(
                f"SELECT {_ENDPOINT_COLS} FROM webhook_endpoints "
                "WHERE id = ? AND workspace_id = ?",
                (endpoint_id, workspace_id),
            ).fetchone()
        return _row_to_endpoint(row) if row else None

    def list_webhook_endpoints(self, workspace_id: str) -> list[WebhookEndpoint]:
        """Return a workspace's endpoints, newest first."""
        rows = self._conn.execute(
            f"SELECT {_ENDPOINT_COLS} FROM webhook_endpoints WHERE workspace_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (workspace_id,),
        ).fetchall()
        return [_row_to_endpoint(r) for r in rows]

    def list_subscribed_endpoints(self, workspace_id: str, event_type: str) -> list[WebhookEndpoint]:
        """Return active endpoints of *workspace_id* subscribed to *event_type*."""
        rows = self._conn.execute(
            f"""
            SELECT {_ENDPOINT_COLS} FROM webhook_endpoints
            WHERE workspace_id = ? AND active = 1
              AND EXISTS (SELECT 1 FROM json_each(webhook_endpoints.events) WHERE value = ?)
            ORDER BY created_at, rowid
            """,
            (workspace_id, event_type),
        ).fetchall()
        return [_row_to_endpoint(r) for r in rows]

    def update_webhook_endpoint(
        self,
        endpoint_id: str,
        url: str | None = None,
        events: list[str] | None = None,
        description: str | None = None,
        active: bool | None = None,
        secret: str | None = None,
    ) -> None:
        """Update the given fields of an endpoint; None leaves a field unchanged."""
        sets: list[str] = []
        params: list = []
        if url is not None:
            sets.append("url = ?")
            params.append(url)
        if events is not None:
            sets.append("events = ?")
            params.append(json.dumps(events))
        if description is not None:
            sets.append("description = ?")
            params.append(description)
        if active is not None:
            sets.append("active = ?")
            params.append(int(active))
        if secret is not None:
            sets.append("secret = ?")
            params.append(secret)
        if not sets:
            return
        params.append(endpoint_id)
        self._conn.execute(
            f"UPDATE webhook_endpoints SET {', '.join(sets)} WHERE id = ?", params
        )
        self._conn.commit()

    def delete_webhook_endpoint(self, endpoint_id: str) -> None:
        self._conn.execute("DELETE FROM webhook_endpoints WHERE id = ?", (endpoint_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Webhook events (delivery records)
    # ------------------------------------------------------------------

    def add_webhook_event(self, event: WebhookEvent) -> None:
        """Persist a delivery record. Committed before the caller delivers."""
        self._conn.execute(
            """
            INSERT INTO webhook_events
                (id, endpoint_id, type, payload, status, attempts, last_error, sent_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.endpoint_id,
                event.type,
                json.dumps(event.payload),
                event.status.value,
                event.attempts,
                event.last_error,
                event.sent_at,
            ),
        )
        self._conn.commit()

    def get_webhook_event(self, event_id: str) -> WebhookEvent | None:
        row = self._conn.execute(
            f"SELECT {_EVENT_COLS} FROM webhook_events WHERE id = ?", (event_id,)
        ).fetchone()
        return _row_to_event(row) if row else None

    def record_webhook_outcome(
        self,
        event_id: str,
        status: WebhookEventStatus,
        attempts: int,
        last_error: str | None,
        sent_at: str | None,
        next_attempt_at: str | None = None,
    ) -> None:
        self._conn.execute(
            """
            UPDATE webhook_events
            SET status = ?, attempts = ?, last_error = ?, sent_at = ?, next_attempt_at = ?
            WHERE id = ?
            """,
            (status.value, attempts, last_error, sent_at, next_attempt_at, event_id),
        )
        self._conn.commit()

    def list_webhook_events(self, endpoint_id: str, limit: int = 10) -> list[WebhookEvent]:
        """Return delivery history for an endpoint, most recent first."""
        rows = self._conn.execute(
            f"SELECT {_EVENT_COLS} FROM webhook_events WHERE endpoint_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (endpoint_id, limit),
        ).fetchall()
        return [_row_to_event(r) for r in rows]

    def list_due_webhook_events(self, now: str, max_attempts: int) -> list[WebhookEvent]:
        """Return FAILED events that still have attempts left and are due at *now*."""
        rows = self._conn.execute(
            f"""
            SELECT {_EVENT_COLS} FROM webhook_events
            WHERE status = ? AND attempts < ?
              AND next_attempt_at IS NOT NULL AND next_attempt_at <= ?
            ORDER BY next_attempt_at, rowid
            """,
            (WebhookEventStatus.FAILED.value, max_attempts, now),
        ).fetchall()
        return [_row_to_event(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_chatbot(row: sqlite3.Row) -> Chatbot:
    return Chatbot(
        id=row["id"],
        public_id=row["public_id"],
        workspace_id=row["workspace_id"],
        name=row["name"],
        system_prompt=row["system_prompt"],
        welcome_message=row["welcome_message"],
        status=ChatbotStatus(row["status"]),
        last_trained_at=row["last_trained_at"],
        created_at=row["created_at"],
    )


def _row_to_source(row: sqlite3.Row) -> DataSource:
    return DataSource(
        id=row["id"],
        workspace_id=row["workspace_id"],
        type=DataSourceType(row["type"]),
        name=row["name"],
        status=DataSourceStatus(row["status"]),
        config=json.loads(row["config"]),
        metadata=json.loads(row["metadata"]),
        error_message=row["error_message"],
        last_synced_at=row["last_synced_at"],
        created_at=row["created_at"],
    )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        chatbot_id=row["chatbot_id"],
        visitor_id=row["visitor_id"],
        status=ConversationStatus(row["status"]),
        lead_email=row["lead_email"],
        lead_name=row["lead_name"],
        lead_phone=row["lead_phone"],
        lead_company=row["lead_company"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
    )


def _row_to_endpoint(row: sqlite3.Row) -> WebhookEndpoint:
    return WebhookEndpoint(
        id=row["id"],
        workspace_id=row["workspace_id"],
        url=row["url"],
        events=json.loads(row["events"]),
        secret=row["secret"],
        description=row["description"],
        active=bool(row["active"]),
        created_at=row["created_at"],
    )


def _row_to_event(row: sqlite3.Row) -> WebhookEvent:
    return WebhookEvent(
        id=row["id"],
        endpoint_id=row["endpoint_id"],
        type=row["type"],
        payload=json.loads(row["payload"]),
        status=WebhookEventStatus(row["status"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        sent_at=row["sent_at"],
        next_attempt_at=row["next_attempt_at"],
        created_at=row["created_at"],
    )
