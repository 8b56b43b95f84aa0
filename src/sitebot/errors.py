"""Errors shared by the orchestration layers and their outer surfaces.

Lower layers define their own errors next to the code that raises them
(``EmbeddingError``, ``VectorStoreError``, ``CrawlError``,
``WebhookPayloadError``, ``ConfigError``).
"""

from __future__ import annotations


class SourceInputError(ValueError):
    """Permanent input failure, raised before any data source row is written.

    Examples: a URL with an unsupported scheme, blank pasted text, an upload
    with an unsupported file extension.
    """


class NotFoundError(LookupError):
    """Unknown chatbot, data source, conversation or webhook endpoint."""


class ChatRequestError(ValueError):
    """Malformed chat request (no messages, last message not from the user)."""
