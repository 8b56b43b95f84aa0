"""Retrieval-augmented chat: embeddings, scoped retrieval, prompts, streamed responder."""

from sitebot.rag.embeddings import EmbeddingClient, EmbeddingError
from sitebot.rag.responder import ChatReply, ChatRequest, ChatResponder, ChatTurn
from sitebot.rag.retriever import RetrievedContext, retrieve_context

__all__ = [
    "ChatReply",
    "ChatRequest",
    "ChatResponder",
    "ChatTurn",
    "EmbeddingClient",
    "EmbeddingError",
    "RetrievedContext",
    "retrieve_context",
]
