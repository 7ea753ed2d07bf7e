"""Route an uploaded file to the parser for its format.

Routing prefers the MIME type and falls back to the file extension, so a
browser upload labelled ``application/octet-stream`` still parses when its
name ends in ``.csv``. The engine holds no state between calls.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import PurePath

from ..errors import UnsupportedFileTypeError
from ..logging_setup import get_logger
from ..models import ParseResult, SourceType
from .adapters.csv_file import parse_csv
from .adapters.excel import parse_excel
from .adapters.image import parse_image
from .adapters.pdf import parse_pdf
from .heuristics import DEFAULT_INSTALLMENT_POLICY, InstallmentPolicy
from .pdf_text import PdfTextExtractor, extract_pdf_text
from .vision import VisionClassifier

_SPREADSHEET_MIME_TYPES: frozenset[str] = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
    }
)
_IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".webp"})
_IMAGE_MIME_BY_EXTENSION: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

_logger = get_logger("household_ledger.ingest.engine")


def detect_source_type(file_name: str, mime_type: str | None = None) -> SourceType | None:
    """Return the parser family for a file, or ``None`` when unsupported."""

    mime = (mime_type or "").strip().lower()
    ext = PurePath(file_name).suffix.lower()

    if mime == "text/csv" or ext == ".csv":
        return "csv"
    if mime in _SPREADSHEET_MIME_TYPES or ext in {".xlsx", ".xls"}:
        return "excel"
    if mime == "application/pdf" or ext == ".pdf":
        return "pdf"
    if mime.startswith("image/") or ext in _IMAGE_EXTENSIONS:
        return "screenshot"
    return None


def parse_file(
    file_name: str,
    data: bytes,
    mime_type: str | None = None,
    *,
    classifier: VisionClassifier | None = None,
    pdf_extractor: PdfTextExtractor | None = None,
    policy: InstallmentPolicy = DEFAULT_INSTALLMENT_POLICY,
) -> ParseResult:
    """Parse one uploaded statement or screenshot.

    Parameters
    ----------
    file_name:
        Original file name; its extension is used when ``mime_type`` is
        missing or generic.
    data:
        Raw file bytes.
    mime_type:
        Optional MIME type reported by the uploader.
    classifier:
        Vision classifier for screenshots. Defaults to the OpenAI-backed
        implementation, created lazily on first use.
    pdf_extractor:
        Positioned-text extractor for PDFs. Defaults to ``pdfplumber``.
    policy:
        Which amount wins when a card statement carries both billing and
        transaction amounts.

    Returns
    -------
    ParseResult
        Valid transactions plus total/valid/error row counts.

    Raises
    ------
    UnsupportedFileTypeError
        When neither the MIME type nor the extension is recognized.
    FileReadError, PdfExtractionError, ClassifierError
        When the file cannot be read or a collaborator fails.
    """

    source_type = detect_source_type(file_name, mime_type)
    _logger.info(
        "parse_file:start file=%s mime=%s source_type=%s bytes=%d",
        file_name,
        mime_type,
        source_type,
        len(data),
    )

    parsers: dict[SourceType, Callable[[], ParseResult]] = {
        "csv": lambda: parse_csv(file_name, data, policy=policy),
        "excel": lambda: parse_excel(file_name, data, policy=policy),
        "pdf": lambda: parse_pdf(file_name, data, extractor=pdf_extractor or extract_pdf_text),
        "screenshot": lambda: parse_image(
            file_name, data, _image_mime(file_name, mime_type), classifier=classifier
        ),
    }
    if source_type is None or source_type not in parsers:
        raise UnsupportedFileTypeError(file_name, mime_type)

    result = parsers[source_type]()
    _logger.info(
        "parse_file:done file=%s source_type=%s total=%d valid=%d errors=%d",
        file_name,
        result.source_type,
        result.total_rows,
        result.valid_rows,
        result.error_rows,
    )
    return result


def _image_mime(file_name: str, mime_type: str | None) -> str:
    if mime_type and mime_type.lower().startswith("image/"):
        return mime_type.lower()
    return _IMAGE_MIME_BY_EXTENSION.get(PurePath(file_name).suffix.lower(), "image/jpeg")


__all__ = ["detect_source_type", "parse_file"]
