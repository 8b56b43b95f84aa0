"""Recursive separator chunker: the default splitter for text and PDF sources.

Splitting:
  1. Pick the first separator from ["\\n\\n", "\\n", " ", ""] present in the text.
  2. Cut after each occurrence (the separator stays at the end of its piece).
  3. Pieces that fit in chunk_size are kept; longer pieces are split again with
     the remaining, finer separators. With "" exhausted a piece is kept as is.

Merging:
  Pieces are packed greedily into chunks of at most chunk_size characters.
  When a chunk is emitted, trailing pieces totalling at most chunk_overlap
  characters are carried into the next chunk (sliding window).
"""

from __future__ import annotations

from sitebot.ingest.base import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, BaseChunker

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", " ", "")


class RecursiveChunker(BaseChunker):
    """Split on the coarsest separator available, then merge with overlap."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
    ) -> None:
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.separators = separators

    def _spans(self, text: str) -> list[tuple[int, int]]:
        if not text:
            return []
        if len(text) <= self.chunk_size:
            return [(0, len(text))]
        pieces = self._split(text, 0, list(self.separators))
        return self._merge(pieces)

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def _split(self, text: str, offset: int, separators: list[str]) -> list[tuple[int, int]]:
        """Return atomic ``(start, end)`` pieces of *text* (absolute offsets)."""
        separator = separators[-1] if separators else ""
        remaining: list[str] = []
        for i, sep in enumerate(separators):
            if sep == "" or sep in text:
                separator = sep
                remaining = separators[i + 1:]
                break

        pieces: list[tuple[int, int]] = []
        for start, end in _cut(text, separator):
            length = end - start
            if length <= self.chunk_size or not remaining:
                pieces.append((offset + start, offset + end))
            else:
                pieces.extend(self._split(text[start:end], offset + start, remaining))
        return pieces

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def _merge(self, pieces: list[tuple[int, int]]) -> list[tuple[int, int]]:
        spans: list[tuple[int, int]] = []
        window: list[tuple[int, int]] = []
        total = 0

        for piece in pieces:
            length = piece[1] - piece[0]
            if window and total + length > self.chunk_size:
                spans.append((window[0][0], window[-1][1]))
                # Keep at most chunk_overlap trailing characters, and make room
                # for the incoming piece.
                while window and (
                    total > self.chunk_overlap or total + length > self.chunk_size
                ):
                    total -= window[0][1] - window[0][0]
                    window.pop(0)
            window.append(piece)
            total += length

        if window:
            spans.append((window[0][0], window[-1][1]))
        return spans


def _cut(text: str, separator: str) -> list[tuple[int, int]]:
    """Cut *text* after every *separator*; "" cuts between characters."""
    if separator == "":
        return [(i, i + 1) for i in range(len(text))]

    spans: list[tuple[int, int]] = []
    start = 0
    while True:
        idx = text.find(separator, start)
        if idx == -1:
            break
        end = idx + len(separator)
        spans.append((start, end))
        start = end
    if start < len(text):
        spans.append((start, len(text)))
    return spans


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Convenience wrapper: ``RecursiveChunker(chunk_size, chunk_overlap).chunk(text)``."""
    return RecursiveChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap).chunk(text)
