"""P2P reconciliation between card statements and wallet-app screenshots.

A run reads a snapshot of a household's unreconciled transactions, computes
proposals in memory and returns them for review. Nothing is written; merges
are separate calls in :mod:`household_ledger.persistence`.

Phases
------
1. Card P2P lines (BIT, Paybox, PayPal...) against outgoing app transactions.
2. App withdrawals against bank deposits that mention the wallet.
3. Outgoing app transactions left unmatched by phase 1 (paid from balance).
4. Incoming app transactions (reimbursement candidates).

Only ``exact``, ``fuzzy`` and ``ambiguous`` proposals are returned; card
lines with no candidate stay silent.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .db.models import LedgerTransaction
from .logging_setup import get_logger
from .models import (
    MatchType,
    ReconciliationMatch,
    ReconciliationResult,
    ReconciliationSummary,
    TransactionSummary,
    WithdrawalMatch,
)

P2P_KEYWORDS: tuple[str, ...] = (
    "BIT",
    "ביט",
    "PAYBOX",
    "פייבוקס",
    "PEPPER",
    "PAY PAL",
    "PAYPAL",
    "P.P",
)
BANK_DEPOSIT_KEYWORDS: tuple[str, ...] = ("BIT", "ביט", "PAYBOX", "פייבוקס", "העברה מ", "PEPPER")

AMOUNT_TOLERANCE = Decimal("1")

BASE_CONFIDENCE: int = 70
EXACT_MATCH_THRESHOLD: int = 90
MAX_CONFIDENCE: int = 99

APP_SOURCE_MARKER = "screenshot"

_logger = get_logger("household_ledger.reconciliation")


class MatchWindow(NamedTuple):
    """Inclusive day window between a primary and a candidate.

    With ``candidate_first`` the offset is ``primary.date - candidate.date``
    (the app payment precedes the card posting); otherwise it is
    ``candidate.date - primary.date`` (the deposit follows the withdrawal).
    """

    lo: int
    hi: int
    candidate_first: bool = True

    def offset(self, primary: date, candidate: date) -> int:
        days = (primary - candidate).days
        return days if self.candidate_first else -days


# Card posting may trail the app payment by up to five days, or lead it by one.
CARD_WINDOW = MatchWindow(-1, 5, candidate_first=True)
# Bank deposit may trail the app withdrawal by up to three days, or lead it by one.
DEPOSIT_WINDOW = MatchWindow(-1, 3, candidate_first=False)


class ScoredCandidate(NamedTuple):
    transaction: TransactionSummary
    confidence: int
    reason: str


class Assignment(NamedTuple):
    """Outcome of assigning candidates to one primary transaction."""

    candidates: tuple[TransactionSummary, ...]
    confidence: int
    match_type: MatchType
    reason: str


type Assigner = Callable[
    [Sequence[TransactionSummary], Sequence[TransactionSummary], MatchWindow],
    list[tuple[TransactionSummary, Assignment]],
]
"""Pairs primaries with candidates: ``(primaries, pool, window) -> [(primary, assignment)]``."""


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def is_app_source(source: str | None) -> bool:
    return APP_SOURCE_MARKER in (source or "").lower()


def _contains_keyword(text: str | None, keywords: Sequence[str]) -> bool:
    upper = (text or "").upper()
    return any(k.upper() in upper for k in keywords)


def is_p2p_card_line(tx: TransactionSummary) -> bool:
    return _contains_keyword(tx.merchant_raw, P2P_KEYWORDS)


def is_bank_wallet_deposit(tx: TransactionSummary) -> bool:
    return tx.type == "income" and _contains_keyword(tx.merchant_raw, BANK_DEPOSIT_KEYWORDS)


def _with_default_direction(tx: TransactionSummary) -> TransactionSummary:
    if tx.p2p_direction is not None:
        return tx
    return replace(tx, p2p_direction="received" if tx.type == "income" else "sent")


# ---------------------------------------------------------------------------
# Scoring and assignment
# ---------------------------------------------------------------------------


def score_candidate(amount_diff: Decimal, days_apart: int) -> tuple[int, str]:
    """Score one primary/candidate pair.

    ``days_apart`` is the oriented offset from :meth:`MatchWindow.offset`.
    Negative offsets inside the window earn no date bonus.
    """

    confidence = BASE_CONFIDENCE
    reasons: list[str] = []
    if amount_diff == 0:
        confidence += 15
        reasons.append("exact amount")
    elif amount_diff <= AMOUNT_TOLERANCE:
        confidence += 10
        reasons.append(f"amount within ±{AMOUNT_TOLERANCE}")

    if days_apart == 0:
        confidence += 15
        reasons.append("same day")
    elif 1 <= days_apart <= 2:
        confidence += 10
        reasons.append("1-2 days apart")
    elif 3 <= days_apart <= 5:
        confidence += 5
        reasons.append(f"{days_apart} days apart")

    return min(confidence, MAX_CONFIDENCE), ", ".join(reasons)


def _candidates_for(
    primary: TransactionSummary,
    pool: Sequence[TransactionSummary],
    window: MatchWindow,
) -> list[ScoredCandidate]:
    scored: list[ScoredCandidate] = []
    for cand in pool:
        amount_diff = abs(abs(primary.amount) - abs(cand.amount))
        if amount_diff > AMOUNT_TOLERANCE:
            continue
        days_apart = window.offset(primary.date, cand.date)
        if days_apart < window.lo or days_apart > window.hi:
            continue
        confidence, reason = score_candidate(amount_diff, days_apart)
        scored.append(ScoredCandidate(cand, confidence, reason))
    scored.sort(key=lambda s: (-s.confidence, abs(window.offset(primary.date, s.transaction.date))))
    return scored


def greedy_assign(
    primaries: Sequence[TransactionSummary],
    pool: Sequence[TransactionSummary],
    window: MatchWindow,
) -> list[tuple[TransactionSummary, Assignment]]:
    """First-fit assignment in primary order.

    A primary with exactly one candidate reserves it; later primaries no
    longer see reserved candidates. Several candidates make the primary
    ``ambiguous`` with nothing reserved.
    """

    reserved: set[str] = set()
    out: list[tuple[TransactionSummary, Assignment]] = []
    for primary in primaries:
        available = [c for c in pool if c.id not in reserved]
        scored = _candidates_for(primary, available, window)
        if not scored:
            out.append(
                (primary, Assignment((), 0, "no_match", "No matching transaction found"))
            )
        elif len(scored) == 1:
            only = scored[0]
            match_type: MatchType = (
                "exact" if only.confidence >= EXACT_MATCH_THRESHOLD else "fuzzy"
            )
            out.append(
                (primary, Assignment((only.transaction,), only.confidence, match_type, only.reason))
            )
            reserved.add(only.transaction.id)
        else:
            out.append(
                (
                    primary,
                    Assignment(
                        tuple(s.transaction for s in scored),
                        BASE_CONFIDENCE,
                        "ambiguous",
                        f"{len(scored)} possible matches - {scored[0].reason}",
                    ),
                )
            )
    return out


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def reconcile(
    transactions: Sequence[TransactionSummary],
    *,
    assigner: Assigner = greedy_assign,
) -> ReconciliationResult:
    """Compute the review queue for a snapshot of transactions.

    Parameters
    ----------
    transactions:
        Snapshot rows, typically unreconciled rows of one household ordered
        by date descending. Primary order drives first-fit reservation.
    assigner:
        Strategy pairing primaries with candidates; defaults to
        :func:`greedy_assign`.

    Returns
    -------
    ReconciliationResult
        Proposals for phases 1 and 2 (no ``no_match`` entries), the phase 3
        and 4 lists, and a summary tally.
    """

    app = [_with_default_direction(t) for t in transactions if is_app_source(t.source)]
    card = [t for t in transactions if not is_app_source(t.source)]
    app_withdrawals = [t for t in app if t.p2p_direction == "withdrawal"]
    app_regular = [t for t in app if t.p2p_direction != "withdrawal"]

    # Phase 1
    card_p2p = [t for t in card if is_p2p_card_line(t)]
    outgoing_pool = [
        t
        for t in app_regular
        if t.reconciliation_status != "matched" and t.p2p_direction != "received"
    ]
    phase1 = assigner(card_p2p, outgoing_pool, CARD_WINDOW)
    matches = [
        ReconciliationMatch(
            card_transaction=primary,
            candidates=a.candidates,
            confidence=a.confidence,
            match_type=a.match_type,
            reason=a.reason,
        )
        for primary, a in phase1
        if a.match_type != "no_match"
    ]
    reserved_app = {
        m.candidates[0].id for m in matches if m.match_type != "ambiguous" and len(m.candidates) == 1
    }

    # Phase 2
    deposits = [t for t in card if is_bank_wallet_deposit(t)]
    phase2 = assigner(app_withdrawals, deposits, DEPOSIT_WINDOW)
    withdrawals = [
        WithdrawalMatch(
            withdrawal=primary,
            candidates=a.candidates,
            confidence=a.confidence,
            match_type=a.match_type,
            reason=a.reason,
        )
        for primary, a in phase2
        if a.match_type != "no_match"
    ]

    # Phase 3
    balance_paid = tuple(
        t
        for t in app_regular
        if t.id not in reserved_app
        and t.p2p_direction == "sent"
        and t.reconciliation_status not in ("matched", "balance_paid")
    )

    # Phase 4
    reimbursements = tuple(
        t
        for t in app_regular
        if t.p2p_direction == "received" and t.reconciliation_status != "reimbursement"
    )

    summary = ReconciliationSummary(
        total_card_p2p=len(card_p2p),
        matched_count=sum(1 for m in matches if m.match_type != "ambiguous"),
        needs_review_count=sum(1 for m in matches if m.match_type == "ambiguous"),
        withdrawal_count=len(withdrawals),
        balance_paid_count=len(balance_paid),
        reimbursement_count=len(reimbursements),
    )
    _logger.info(
        "reconcile:done total=%d app=%d card=%d card_p2p=%d matches=%d withdrawals=%d "
        "balance_paid=%d reimbursements=%d",
        len(transactions),
        len(app),
        len(card),
        summary.total_card_p2p,
        len(matches),
        summary.withdrawal_count,
        summary.balance_paid_count,
        summary.reimbursement_count,
    )
    return ReconciliationResult(
        matches=tuple(matches),
        withdrawals=tuple(withdrawals),
        balance_paid=balance_paid,
        reimbursements=reimbursements,
        summary=summary,
    )


def to_summary(row: LedgerTransaction) -> TransactionSummary:
    """Snapshot view of a stored row. Amounts are reported as magnitudes."""

    return TransactionSummary(
        id=row.id,
        date=row.date,
        merchant_raw=row.merchant_raw,
        amount=abs(Decimal(row.amount)),
        type=row.type,  # type: ignore[arg-type]
        source=row.source,
        currency=row.currency,
        merchant_normalized=row.merchant_normalized,
        category=row.category,
        p2p_counterparty=row.p2p_counterparty,
        p2p_memo=row.p2p_memo,
        p2p_direction=row.p2p_direction,  # type: ignore[arg-type]
        reconciliation_status=row.reconciliation_status,  # type: ignore[arg-type]
    )


def load_snapshot(
    session: Session,
    household_id: str,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    include_already_reconciled: bool = False,
) -> list[TransactionSummary]:
    """Load a household's reconciliation snapshot ordered by date desc, id."""

    stmt = select(LedgerTransaction).where(LedgerTransaction.household_id == household_id)
    if date_from is not None:
        stmt = stmt.where(LedgerTransaction.date >= date_from)
    if date_to is not None:
        stmt = stmt.where(LedgerTransaction.date <= date_to)
    if not include_already_reconciled:
        stmt = stmt.where(
            or_(
                LedgerTransaction.reconciliation_status.is_(None),
                LedgerTransaction.reconciliation_status == "pending",
            )
        )
    stmt = stmt.order_by(LedgerTransaction.date.desc(), LedgerTransaction.id)
    return [to_summary(row) for row in session.scalars(stmt)]


def run_p2p_reconciliation(
    session: Session,
    household_id: str | None,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    include_already_reconciled: bool = False,
    assigner: Assigner = greedy_assign,
) -> ReconciliationResult:
    """Load a household snapshot and reconcile it.

    A missing ``household_id`` yields an empty result with an all-zero
    summary rather than an error.
    """

    if not household_id:
        _logger.warning("reconcile:no_household")
        return ReconciliationResult()

    snapshot = load_snapshot(
        session,
        household_id,
        date_from=date_from,
        date_to=date_to,
        include_already_reconciled=include_already_reconciled,
    )
    _logger.info(
        "reconcile:snapshot household=%s rows=%d date_from=%s date_to=%s include_reconciled=%s",
        household_id,
        len(snapshot),
        date_from,
        date_to,
        include_already_reconciled,
    )
    return reconcile(snapshot, assigner=assigner)


__all__ = [
    "P2P_KEYWORDS",
    "BANK_DEPOSIT_KEYWORDS",
    "AMOUNT_TOLERANCE",
    "CARD_WINDOW",
    "DEPOSIT_WINDOW",
    "MatchWindow",
    "Assigner",
    "Assignment",
    "ScoredCandidate",
    "is_app_source",
    "is_p2p_card_line",
    "is_bank_wallet_deposit",
    "score_candidate",
    "greedy_assign",
    "reconcile",
    "to_summary",
    "load_snapshot",
    "run_p2p_reconciliation",
]
