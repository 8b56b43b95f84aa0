"""Fixed-window chunker for crawled page text.

Crawled body text has its whitespace collapsed, so paragraph structure is gone
and the recursive splitter has nothing to work with. This chunker slices fixed
windows instead and, when a '.' falls in the last fifth of a window, cuts just
after it so sentences are less likely to be split.
"""

from __future__ import annotations

from sitebot.ingest.base import BaseChunker

# A '.' must sit past this fraction of the window to become the cut point.
_SNAP_THRESHOLD = 0.8


class WindowChunker(BaseChunker):
    """Slice *chunk_size* windows that overlap by *chunk_overlap* characters."""

    def _spans(self, text: str) -> list[tuple[int, int]]:
        spans: list[tuple[int, int]] = []
        start = 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            if end < len(text):
                period = text.rfind(".", start, end)
                if period - start > self.chunk_size * _SNAP_THRESHOLD:
                    end = period + 1
            spans.append((start, end))
            if end >= len(text):
                break
            start += max(1, (end - start) - self.chunk_overlap)
        return spans
