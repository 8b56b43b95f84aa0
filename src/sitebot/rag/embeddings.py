"""Embedding client: text → fixed-length vectors via ``litellm.embedding()``.

Batch contract:
- ``embed_batch(texts)`` drops blank / whitespace-only entries before the
  network call and returns vectors for the remaining texts, in input order.
  The result is therefore *shorter* than the input whenever blanks are
  present; callers zipping by position must filter blanks first.
- ``embed_batch_aligned(texts)`` returns one slot per input, ``None`` at
  blank positions. Ingestion uses this variant.

No retries happen here; callers decide whether a failure aborts the source
(ingestion) or degrades the turn (chat).
"""

from __future__ import annotations

import logging

import litellm

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "openai/text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
DEFAULT_BATCH_SIZE = 96


class EmbeddingError(RuntimeError):
    """Raised on provider/network failure or a malformed provider response."""


class EmbeddingClient:
    """Thin wrapper around ``litellm.embedding()`` with input normalisation.

    Args:
        model:      LiteLLM embedding model string (provider/model format).
        dimensions: Expected vector length; any other length is an error.
        batch_size: Maximum number of inputs per provider call.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size

    def embed(self, text: str) -> list[float]:
        """Embed a single non-blank *text*."""
        if not text.strip():
            raise EmbeddingError("Cannot embed blank text.")
        return self._call([_normalise(text)])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed the non-blank entries of *texts*, preserving their order."""
        kept = [_normalise(t) for t in texts if t.strip()]
        vectors: list[list[float]] = []
        for start in range(0, len(kept), self.batch_size):
            vectors.extend(self._call(kept[start:start + self.batch_size]))
        return vectors

    def embed_batch_aligned(self, texts: list[str]) -> list[list[float] | None]:
        """Like ``embed_batch()`` but with a ``None`` placeholder for each blank input."""
        vectors = iter(self.embed_batch(texts))
        return [next(vectors) if t.strip() else None for t in texts]

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    def _call(self, inputs: list[str]) -> list[list[float]]:
        try:
            response = litellm.embedding(model=self.model, input=inputs)
        except Exception as exc:
            raise EmbeddingError(f"Embedding request to '{self.model}' failed: {exc}") from exc

        data = list(response.data)
        if len(data) != len(inputs):
            raise EmbeddingError(
                f"Embedding provider returned {len(data)} vectors for {len(inputs)} inputs."
            )
        # Providers may return items out of order; 'index' is authoritative.
        if all(_field(item, "index") is not None for item in data):
            data.sort(key=lambda item: _field(item, "index"))

        vectors = [list(_field(item, "embedding")) for item in data]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Model '{self.model}' returned a {len(vector)}-dimension vector; "
                    f"expected {self.dimensions}."
                )
        logger.debug("Embedded %d inputs with %s", len(inputs), self.model)
        return vectors


def _normalise(text: str) -> str:
    return text.replace("\n", " ")


def _field(item, name: str):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
