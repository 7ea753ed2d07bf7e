"""Data models and type aliases for ``household_ledger``.

Two families live here:

- *Parsing* models (``ParsedTransaction``, ``ParseResult``) produced by the
  format adapters before anything touches storage.
- *Reconciliation* models (``TransactionSummary``, ``ReconciliationMatch``,
  ``WithdrawalMatch``, ``ReconciliationResult``) describing a read-only
  snapshot of stored rows and the proposals computed over it.

Amounts are ``Decimal`` throughout. A ``ParsedTransaction`` amount is always
the absolute magnitude; direction lives in ``type``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

type TransactionType = Literal["income", "expense"]
type TransactionStatus = Literal["pending", "categorized", "skipped", "verified"]
type SourceType = Literal["csv", "excel", "pdf", "screenshot", "sms"]
type P2PDirection = Literal["sent", "received", "withdrawal"]
type ReconciliationStatus = Literal[
    "pending", "matched", "balance_paid", "withdrawal_matched", "reimbursement"
]
type MatchType = Literal["exact", "fuzzy", "ambiguous", "no_match"]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InstallmentInfo:
    """Estimated installment plan for a billing/transaction amount pair."""

    total: int


@dataclass(frozen=True, slots=True)
class ParsedTransaction:
    """A normalized transaction candidate emitted by a format adapter.

    ``date`` is an ISO ``YYYY-MM-DD`` string. ``amount`` is non-negative;
    construction with a negative amount raises ``ValueError``. The ``p2p_*``
    fields are populated only by wallet-app sources (screenshots).
    """

    date: str
    merchant_raw: str
    amount: Decimal
    type: TransactionType
    currency: str = "ILS"
    merchant_normalized: str | None = None
    category: str | None = None
    status: TransactionStatus = "pending"
    confidence: float | None = None
    is_reimbursement: bool = False
    is_installment: bool = False
    installment_info: InstallmentInfo | None = None
    p2p_direction: P2PDirection | None = None
    p2p_counterparty: str | None = None
    p2p_memo: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"ParsedTransaction.amount must be >= 0, got {self.amount}")
        if self.confidence is not None and not (0.0 <= self.confidence <= 1.0):
            raise ValueError("ParsedTransaction.confidence must be within [0, 1]")


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Outcome of parsing one file: the valid transactions plus row counts."""

    file_name: str
    source_type: SourceType
    transactions: tuple[ParsedTransaction, ...] = ()
    total_rows: int = 0
    valid_rows: int = 0
    error_rows: int = 0

    @classmethod
    def empty(cls, file_name: str, source_type: SourceType) -> ParseResult:
        return cls(file_name=file_name, source_type=source_type)


class VisionRecord(BaseModel):
    """One untrusted record returned by the screenshot classifier.

    Fields are optional at the schema level; the image adapter decides which
    combinations are usable. Unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    date: str | None = None
    merchant: str | None = None
    amount: Decimal | None = None
    type: str | None = None
    direction: str | None = None
    currency: str | None = None
    p2p_counterparty: str | None = None
    p2p_memo: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v: object) -> object:
        # Classifiers sometimes emit "1,250.00" or "₪120".
        if isinstance(v, str):
            cleaned = "".join(ch for ch in v if ch.isdigit() or ch in ".-")
            return cleaned or None
        return v

    @field_validator("type", "direction", mode="before")
    @classmethod
    def _lower(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower() or None
        return v


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------


class ExistingTransaction(NamedTuple):
    """Minimal stored-row view used by the duplicate checker."""

    id: str
    date: date
    amount: Decimal
    merchant_raw: str


@dataclass(frozen=True, slots=True)
class DuplicateMatch:
    """A new candidate paired with the stored row it most likely repeats."""

    new_transaction: ParsedTransaction
    existing: ExistingTransaction
    confidence: int
    reason: str = ""


@dataclass(frozen=True, slots=True)
class DuplicateCheckResult:
    has_duplicates: bool
    matches: tuple[DuplicateMatch, ...]
    clean_transactions: tuple[ParsedTransaction, ...]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionSummary:
    """Read-only snapshot of a stored transaction used for reconciliation."""

    id: str
    date: date
    merchant_raw: str
    amount: Decimal
    type: TransactionType
    source: str
    currency: str = "ILS"
    merchant_normalized: str | None = None
    category: str | None = None
    p2p_counterparty: str | None = None
    p2p_memo: str | None = None
    p2p_direction: P2PDirection | None = None
    reconciliation_status: ReconciliationStatus | None = None


@dataclass(frozen=True, slots=True)
class ReconciliationMatch:
    """A card P2P line and the app transactions that could explain it."""

    card_transaction: TransactionSummary
    candidates: tuple[TransactionSummary, ...]
    confidence: int
    match_type: MatchType
    reason: str


@dataclass(frozen=True, slots=True)
class WithdrawalMatch:
    """An app-wallet withdrawal and the bank deposits that could receive it."""

    withdrawal: TransactionSummary
    candidates: tuple[TransactionSummary, ...]
    confidence: int
    match_type: MatchType
    reason: str


@dataclass(frozen=True, slots=True)
class ReconciliationSummary:
    total_card_p2p: int = 0
    matched_count: int = 0
    needs_review_count: int = 0
    withdrawal_count: int = 0
    balance_paid_count: int = 0
    reimbursement_count: int = 0


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """Review queue produced by one reconciliation run.

    ``matches`` and ``withdrawals`` never contain ``no_match`` entries.
    """

    matches: tuple[ReconciliationMatch, ...] = ()
    withdrawals: tuple[WithdrawalMatch, ...] = ()
    balance_paid: tuple[TransactionSummary, ...] = ()
    reimbursements: tuple[TransactionSummary, ...] = ()
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)


@dataclass(frozen=True, slots=True)
class PendingReconciliationCounts:
    matches: int = 0
    withdrawals: int = 0
    reimbursements: int = 0
    balance_paid: int = 0

    @property
    def total(self) -> int:
        return self.matches + self.withdrawals + self.reimbursements + self.balance_paid


@dataclass(frozen=True, slots=True)
class MergeResult:
    """Per-call outcome of a merge operation; business failures never raise."""

    success: bool
    error: str | None = None
    group_id: str | None = None


__all__ = [
    "TransactionType",
    "TransactionStatus",
    "SourceType",
    "P2PDirection",
    "ReconciliationStatus",
    "MatchType",
    "InstallmentInfo",
    "ParsedTransaction",
    "ParseResult",
    "VisionRecord",
    "ExistingTransaction",
    "DuplicateMatch",
    "DuplicateCheckResult",
    "TransactionSummary",
    "ReconciliationMatch",
    "WithdrawalMatch",
    "ReconciliationSummary",
    "ReconciliationResult",
    "PendingReconciliationCounts",
    "MergeResult",
]
