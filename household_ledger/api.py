"""High-level orchestration used by the CLI and by request handlers.

Parsing and reconciliation live in their own modules; this module wires them
to storage: parse, screen against stored rows for duplicates, then save the
clean candidates, all inside the caller's session.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from .duplicates import check_for_duplicates
from .errors import MissingHouseholdError
from .ingest.adapters.sms import parse_sms_batch
from .ingest.engine import parse_file
from .ingest.pdf_text import PdfTextExtractor
from .ingest.vision import VisionClassifier
from .logging_setup import get_logger
from .models import DuplicateCheckResult, ParseResult
from .persistence import save_transactions

_logger = get_logger("household_ledger.api")


@dataclass(frozen=True, slots=True)
class ImportOutcome:
    """What an import parsed, which candidates were held back, and what was saved."""

    parse_result: ParseResult
    duplicates: DuplicateCheckResult | None
    saved_ids: tuple[str, ...]

    @property
    def skipped_duplicates(self) -> int:
        return len(self.duplicates.matches) if self.duplicates is not None else 0


def _save_parsed(
    session: Session,
    household_id: str,
    result: ParseResult,
    *,
    check_duplicates: bool,
) -> ImportOutcome:
    duplicates: DuplicateCheckResult | None = None
    to_save = result.transactions
    if check_duplicates and to_save:
        duplicates = check_for_duplicates(session, household_id, to_save)
        to_save = duplicates.clean_transactions

    saved = save_transactions(session, household_id, to_save, result.source_type)
    _logger.info(
        "import:done household=%s file=%s parsed=%d duplicates=%d saved=%d",
        household_id,
        result.file_name,
        len(result.transactions),
        len(duplicates.matches) if duplicates is not None else 0,
        len(saved),
    )
    return ImportOutcome(parse_result=result, duplicates=duplicates, saved_ids=tuple(saved))


def import_file(
    session: Session,
    household_id: str | None,
    file_name: str,
    data: bytes,
    mime_type: str | None = None,
    *,
    check_duplicates: bool = True,
    classifier: VisionClassifier | None = None,
    pdf_extractor: PdfTextExtractor | None = None,
) -> ImportOutcome:
    """Parse an uploaded file and save its transactions for a household.

    The household is checked before the file is parsed, so a missing scope
    never triggers collaborator calls. With ``check_duplicates`` candidates
    that look like stored rows are reported and not saved.
    """

    if not household_id:
        raise MissingHouseholdError("import_file")
    result = parse_file(
        file_name, data, mime_type, classifier=classifier, pdf_extractor=pdf_extractor
    )
    return _save_parsed(session, household_id, result, check_duplicates=check_duplicates)


def import_sms(
    session: Session,
    household_id: str | None,
    messages: Iterable[str],
    *,
    check_duplicates: bool = True,
    today: date | None = None,
) -> ImportOutcome:
    """Parse card SMS notifications and save the valid charges."""

    if not household_id:
        raise MissingHouseholdError("import_sms")
    result = parse_sms_batch(messages, today=today)
    return _save_parsed(session, household_id, result, check_duplicates=check_duplicates)


__all__ = ["ImportOutcome", "import_file", "import_sms"]
