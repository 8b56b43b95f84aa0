"""Base chunker interface shared by the recursive and window chunkers."""

from __future__ import annotations

from abc import ABC, abstractmethod

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Chunkers work in characters. Every chunk is an exact substring of the
    input, and consecutive chunks either touch or overlap, so the text can be
    rebuilt from ``split_with_offsets()`` (see ``reassemble``).

    Subclasses implement ``_spans()``.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk(self, text: str) -> list[str]:
        """Split *text* into ordered, possibly overlapping chunks.

        Empty input yields an empty list. Whitespace is preserved; callers that
        need non-blank chunks filter afterwards.
        """
        return [text[start:end] for start, end in self._spans(text)]

    def split_with_offsets(self, text: str) -> list[tuple[int, str]]:
        """Like ``chunk()`` but pairs each chunk with its start offset in *text*."""
        return [(start, text[start:end]) for start, end in self._spans(text)]

    @abstractmethod
    def _spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` character spans covering *text* in order."""

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)


def reassemble(pieces: list[tuple[int, str]]) -> str:
    """Rebuild the source text from ``split_with_offsets()`` output.

    Each chunk contributes only the part past the end of the previous one.
    """
    out: list[str] = []
    covered = 0
    for start, text in pieces:
        end = start + len(text)
        if end > covered:
            out.append(text[max(0, covered - start):])
            covered = end
    return "".join(out)
