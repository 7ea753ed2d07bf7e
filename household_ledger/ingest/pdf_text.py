"""Positioned text extraction for PDF statements (``pdfplumber``).

The PDF adapter needs word boxes, not a character stream. Each extracted word
becomes a :class:`PdfTextItem` with its left edge (``x0``) and top edge
(``top``). Pages are stacked vertically by accumulating page heights, so
coordinates stay monotonic across the document and rows on different pages
never collide.
"""

from __future__ import annotations

import io
from collections.abc import Callable
from dataclasses import dataclass

import pdfplumber

from ..errors import PdfExtractionError
from ..logging_setup import get_logger

_logger = get_logger("household_ledger.ingest.pdf_text")


@dataclass(frozen=True, slots=True)
class PdfTextItem:
    x: float
    y: float
    text: str


@dataclass(frozen=True, slots=True)
class PdfTextContent:
    text: str
    items: tuple[PdfTextItem, ...] = ()


type PdfTextExtractor = Callable[[bytes], PdfTextContent]
"""Collaborator signature: raw PDF bytes in, positioned text out."""


def extract_pdf_text(data: bytes) -> PdfTextContent:
    """Extract plain text and positioned words from every page.

    Raises
    ------
    PdfExtractionError
        When ``pdfplumber`` cannot open or read the document.
    """

    items: list[PdfTextItem] = []
    page_texts: list[str] = []
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            y_offset = 0.0
            for page in pdf.pages:
                for w in page.extract_words(x_tolerance=1.5, y_tolerance=1.5):
                    if not w.get("upright", True):
                        continue
                    items.append(
                        PdfTextItem(
                            x=float(w["x0"]),
                            y=y_offset + float(w["top"]),
                            text=str(w["text"]),
                        )
                    )
                page_texts.append(page.extract_text() or "")
                y_offset += float(page.height)
    except Exception as e:  # pdfminer raises a zoo of parser exceptions
        raise PdfExtractionError(f"Failed to extract text from PDF: {e}") from e

    _logger.info("pdf_text:extracted pages=%d words=%d", len(page_texts), len(items))
    return PdfTextContent(text="\n".join(page_texts), items=tuple(items))


__all__ = ["PdfTextItem", "PdfTextContent", "PdfTextExtractor", "extract_pdf_text"]
