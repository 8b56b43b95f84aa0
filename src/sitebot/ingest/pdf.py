"""PDF text extraction via pypdf, page by page."""

from __future__ import annotations

import io
from dataclasses import dataclass

import pypdf


@dataclass
class PdfDocument:
    """Extracted page texts; ``pages[i]`` is page ``i + 1`` (may be empty)."""

    pages: list[str]

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def non_empty_pages(self) -> list[tuple[int, str]]:
        """Return ``(page_number, text)`` for pages that yielded any text."""
        return [(i + 1, text) for i, text in enumerate(self.pages) if text.strip()]


def extract_pdf(data: bytes) -> PdfDocument:
    """Extract the text of every page in the PDF held in *data*.

    Pages that yield no text (scanned images, etc.) are kept as empty strings
    so page numbers stay aligned with the document.

    Raises:
        pypdf.errors.PdfReadError: If *data* is not a readable PDF.
    """
    reader = pypdf.PdfReader(io.BytesIO(data))
    return PdfDocument(pages=[page.extract_text() or "" for page in reader.pages])
