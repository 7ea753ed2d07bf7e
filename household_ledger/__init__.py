"""Public interface for the ``household_ledger`` package.

This module re-exports the parsing, duplicate-detection, reconciliation and
merge entry points together with the public models. There is no runtime
logic here, only symbol re-exports.
"""

from .api import ImportOutcome, import_file, import_sms
from .duplicates import check_for_duplicates, find_duplicates
from .errors import (
    ClassifierError,
    FileReadError,
    LedgerError,
    MissingHouseholdError,
    PdfExtractionError,
    UnsupportedFileTypeError,
)
from .ingest.engine import parse_file
from .models import (
    DuplicateCheckResult,
    DuplicateMatch,
    InstallmentInfo,
    MergeResult,
    ParsedTransaction,
    ParseResult,
    ReconciliationMatch,
    ReconciliationResult,
    ReconciliationSummary,
    TransactionSummary,
    WithdrawalMatch,
)
from .persistence import (
    apply_reimbursement,
    mark_as_balance_paid,
    merge_p2p_match,
    merge_withdrawal,
    save_transactions,
)
from .reconciliation import reconcile, run_p2p_reconciliation

__all__ = [
    # API
    "parse_file",
    "import_file",
    "import_sms",
    "ImportOutcome",
    "find_duplicates",
    "check_for_duplicates",
    "reconcile",
    "run_p2p_reconciliation",
    "save_transactions",
    "merge_p2p_match",
    "mark_as_balance_paid",
    "merge_withdrawal",
    "apply_reimbursement",
    # Models
    "ParsedTransaction",
    "ParseResult",
    "InstallmentInfo",
    "DuplicateMatch",
    "DuplicateCheckResult",
    "TransactionSummary",
    "ReconciliationMatch",
    "WithdrawalMatch",
    "ReconciliationSummary",
    "ReconciliationResult",
    "MergeResult",
    # Errors
    "LedgerError",
    "UnsupportedFileTypeError",
    "FileReadError",
    "PdfExtractionError",
    "ClassifierError",
    "MissingHouseholdError",
]
