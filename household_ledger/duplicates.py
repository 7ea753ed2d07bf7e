"""Pre-save duplicate detection for uploaded transactions.

A new transaction is a likely duplicate of a stored one when the two are at
most three days apart and their absolute amounts differ by at most one unit.
Matching is first-fit: each new transaction is paired with the first stored
row (in iteration order) that satisfies both rules.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db.models import LedgerTransaction
from .errors import MissingHouseholdError
from .logging_setup import get_logger
from .models import (
    DuplicateCheckResult,
    DuplicateMatch,
    ExistingTransaction,
    ParsedTransaction,
)

MAX_DAYS_APART: int = 3
AMOUNT_TOLERANCE = Decimal("1")
QUERY_PADDING_DAYS: int = 5

_EXACT_AMOUNT = Decimal("0.01")
_WALLET_RE = re.compile(r"ביט|bit|paybox", re.IGNORECASE)

_logger = get_logger("household_ledger.duplicates")


def _score(new: ParsedTransaction, existing: ExistingTransaction) -> tuple[int, str] | None:
    days_apart = abs((date.fromisoformat(new.date) - existing.date).days)
    if days_apart > MAX_DAYS_APART:
        return None
    amount_diff = abs(abs(new.amount) - abs(existing.amount))
    if amount_diff > AMOUNT_TOLERANCE:
        return None

    confidence = 80
    reasons: list[str] = []
    if days_apart == 0:
        confidence += 10
        reasons.append("same day")
    else:
        reasons.append(f"{days_apart} day(s) apart")
    if amount_diff < _EXACT_AMOUNT:
        confidence += 10
        reasons.append("exact amount")
    else:
        reasons.append(f"{amount_diff:.2f} difference")
    if _WALLET_RE.search(existing.merchant_raw or "") or _WALLET_RE.search(new.merchant_raw or ""):
        confidence += 5
        reasons.append("BIT/Paybox pattern")
    return min(confidence, 100), ", ".join(reasons)


def find_duplicates(
    new: Sequence[ParsedTransaction],
    existing: Iterable[ExistingTransaction],
) -> DuplicateCheckResult:
    """Pair each new transaction with at most one likely stored duplicate.

    Parameters
    ----------
    new:
        Candidates about to be saved.
    existing:
        Stored rows to compare against. Iteration order decides which row
        wins when several qualify.

    Returns
    -------
    DuplicateCheckResult
        ``matches`` in input order and ``clean_transactions`` holding the
        candidates with no match.
    """

    pool = list(existing)
    matches: list[DuplicateMatch] = []
    clean: list[ParsedTransaction] = []
    for tx in new:
        for row in pool:
            scored = _score(tx, row)
            if scored is None:
                continue
            confidence, reason = scored
            matches.append(
                DuplicateMatch(new_transaction=tx, existing=row, confidence=confidence, reason=reason)
            )
            break
        else:
            clean.append(tx)

    return DuplicateCheckResult(
        has_duplicates=bool(matches),
        matches=tuple(matches),
        clean_transactions=tuple(clean),
    )


def check_for_duplicates(
    session: Session,
    household_id: str | None,
    transactions: Sequence[ParsedTransaction],
) -> DuplicateCheckResult:
    """Compare candidates against the household's stored transactions.

    Only rows within ``QUERY_PADDING_DAYS`` of the candidates' date range are
    loaded.

    Raises
    ------
    MissingHouseholdError
        When ``household_id`` is empty.
    """

    if not household_id:
        raise MissingHouseholdError("check_for_duplicates")
    if not transactions:
        return DuplicateCheckResult(has_duplicates=False, matches=(), clean_transactions=())

    dates = [date.fromisoformat(t.date) for t in transactions]
    lo = min(dates) - timedelta(days=QUERY_PADDING_DAYS)
    hi = max(dates) + timedelta(days=QUERY_PADDING_DAYS)

    stmt = (
        select(
            LedgerTransaction.id,
            LedgerTransaction.date,
            LedgerTransaction.amount,
            LedgerTransaction.merchant_raw,
        )
        .where(LedgerTransaction.household_id == household_id)
        .where(LedgerTransaction.date >= lo)
        .where(LedgerTransaction.date <= hi)
        .order_by(LedgerTransaction.date, LedgerTransaction.id)
    )
    existing = [
        ExistingTransaction(id=r.id, date=r.date, amount=Decimal(r.amount), merchant_raw=r.merchant_raw)
        for r in session.execute(stmt)
    ]

    result = find_duplicates(transactions, existing)
    _logger.info(
        "duplicates:checked household=%s candidates=%d existing=%d duplicates=%d",
        household_id,
        len(transactions),
        len(existing),
        len(result.matches),
    )
    return result


__all__ = [
    "MAX_DAYS_APART",
    "AMOUNT_TOLERANCE",
    "find_duplicates",
    "check_for_duplicates",
]
