"""Exception types raised by ``household_ledger``.

Row-level parse problems never raise; they are dropped and counted on the
``ParseResult``. The exceptions below are reserved for conditions that abort a
whole file or a whole call.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for package errors."""


class UnsupportedFileTypeError(LedgerError, ValueError):
    """The file's MIME type and extension match no known parser."""

    def __init__(self, file_name: str, mime_type: str | None) -> None:
        kind = mime_type or "unknown"
        super().__init__(f"Unsupported file type: {kind} ({file_name})")
        self.file_name = file_name
        self.mime_type = mime_type


class FileReadError(LedgerError):
    """The file could not be read at all (corrupt workbook, bad encoding)."""


class PdfExtractionError(LedgerError):
    """The PDF text extraction collaborator failed."""


class ClassifierError(LedgerError):
    """The vision classifier failed or returned an unusable payload."""


class MissingHouseholdError(LedgerError, ValueError):
    """An operation that touches stored data was called without a household."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} requires a household_id")
        self.operation = operation


__all__ = [
    "LedgerError",
    "UnsupportedFileTypeError",
    "FileReadError",
    "PdfExtractionError",
    "ClassifierError",
    "MissingHouseholdError",
]
