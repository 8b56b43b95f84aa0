"""Scoped dense retrieval for one chatbot.

The scope is the chatbot's linked, *included* data sources. An empty scope
returns no context without calling the embedding provider; the store itself
never widens a scoped query to a global one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sitebot.db.repository import Repository
from sitebot.db.vector_store import QueryMatch, VectorStore
from sitebot.rag.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
CONTEXT_SEPARATOR = "\n\n"


@dataclass
class RetrievedContext:
    """Matches for one query and their contents joined for the prompt."""

    matches: list[QueryMatch] = field(default_factory=list)

    @property
    def text(self) -> str:
        return CONTEXT_SEPARATOR.join(m.content for m in self.matches)


def retrieve_context(
    query: str,
    chatbot_id: str,
    repo: Repository,
    store: VectorStore,
    embedder: EmbeddingClient,
    top_k: int = DEFAULT_TOP_K,
) -> RetrievedContext:
    """Embed *query* and return the top *top_k* chunks in the chatbot's scope.

    Raises:
        EmbeddingError: The query could not be embedded.
        VectorStoreError: The similarity query failed.
    """
    scope = repo.included_source_ids(chatbot_id)
    if not scope or not query.strip():
        return RetrievedContext()

    vector = embedder.embed(query)
    matches = store.query(vector, scope, top_k=top_k)
    logger.debug(
        "Retrieved %d chunk(s) for chatbot %s from %d source(s)", len(matches), chatbot_id, len(scope)
    )
    return RetrievedContext(matches=matches)
