"""Database writes for parsed transactions, merges and merchant memory.

Every function is scoped by ``household_id`` and raises
:class:`~household_ledger.errors.MissingHouseholdError` when it is empty.
Callers own the transaction (see :func:`household_ledger.db.client.session_scope`).

Merges
------
Merge operations return a :class:`~household_ledger.models.MergeResult`
instead of raising for business failures. Each write is a conditional
``UPDATE`` that only matches rows still in an unreconciled state, so a merge
applied against a stale review queue fails cleanly instead of overwriting a
concurrent decision. Re-applying a merge whose target state is already in
place succeeds without writing.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, NamedTuple

from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .db.models import LedgerTransaction, MerchantMemory
from .errors import MissingHouseholdError
from .logging_setup import get_logger
from .models import (
    MergeResult,
    ParsedTransaction,
    PendingReconciliationCounts,
    SourceType,
    TransactionSummary,
)
from .reconciliation import run_p2p_reconciliation, to_summary

SCREENSHOT_SOURCE = "bit/paybox screenshot"
SMS_SOURCE = "sms"
UPLOAD_SOURCE = "upload"

RELATED_EXPENSE_MIN_RATIO = Decimal("0.8")
RELATED_EXPENSE_MAX_RATIO = Decimal("5")
RELATED_EXPENSE_LIMIT = 5

_logger = get_logger("household_ledger.persistence")


def _require_household(household_id: str | None, operation: str) -> str:
    if not household_id:
        raise MissingHouseholdError(operation)
    return household_id


def source_for(source_type: SourceType) -> str:
    """Stored ``source`` label for a parser family."""

    if source_type == "screenshot":
        return SCREENSHOT_SOURCE
    if source_type == "sms":
        return SMS_SOURCE
    return UPLOAD_SOURCE


# ---------------------------------------------------------------------------
# Inserts
# ---------------------------------------------------------------------------


def save_transactions(
    session: Session,
    household_id: str | None,
    transactions: Iterable[ParsedTransaction],
    source_type: SourceType,
) -> list[str]:
    """Insert parsed transactions as ``pending`` rows and return their ids.

    Rows start with ``reconciliation_status`` unset. Wallet-app metadata
    (``p2p_*``) is stored as parsed.
    """

    hid = _require_household(household_id, "save_transactions")
    source = source_for(source_type)
    rows: list[LedgerTransaction] = []
    for tx in transactions:
        rows.append(
            LedgerTransaction(
                id=str(uuid.uuid4()),
                household_id=hid,
                date=datetime.strptime(tx.date, "%Y-%m-%d").date(),
                merchant_raw=tx.merchant_raw,
                merchant_normalized=tx.merchant_normalized,
                amount=tx.amount,
                currency=tx.currency,
                type=tx.type,
                category=tx.category,
                status=tx.status,
                confidence=tx.confidence,
                source=source,
                is_reimbursement=tx.is_reimbursement,
                is_installment=tx.is_installment,
                installment_total=tx.installment_info.total if tx.installment_info else None,
                p2p_direction=tx.p2p_direction,
                p2p_counterparty=tx.p2p_counterparty,
                p2p_memo=tx.p2p_memo,
                reconciliation_status=None,
            )
        )
    session.add_all(rows)
    session.flush()
    _logger.info(
        "persistence:saved household=%s source=%s rows=%d", hid, source, len(rows)
    )
    return [r.id for r in rows]


# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------


def _unreconciled() -> ColumnElement[bool]:
    return or_(
        LedgerTransaction.reconciliation_status.is_(None),
        LedgerTransaction.reconciliation_status == "pending",
    )


def _load(session: Session, household_id: str, tx_id: str) -> LedgerTransaction | None:
    stmt = (
        select(LedgerTransaction)
        .where(LedgerTransaction.id == tx_id)
        .where(LedgerTransaction.household_id == household_id)
        .with_for_update()
    )
    return session.scalars(stmt).one_or_none()


def _is_unreconciled(row: LedgerTransaction) -> bool:
    return row.reconciliation_status in (None, "pending")


def _conditional_update(
    session: Session,
    household_id: str,
    tx_id: str,
    values: Mapping[str, Any],
    *,
    allowed_statuses: Sequence[str] = (),
) -> bool:
    """Apply ``values`` only if the row is still unreconciled (or in ``allowed_statuses``)."""

    guard = _unreconciled()
    if allowed_statuses:
        guard = or_(guard, LedgerTransaction.reconciliation_status.in_(list(allowed_statuses)))
    stmt = (
        update(LedgerTransaction)
        .where(LedgerTransaction.id == tx_id)
        .where(LedgerTransaction.household_id == household_id)
        .where(guard)
        .values({**values, "updated_at": func.now()})
        .execution_options(synchronize_session="evaluate")
    )
    return session.execute(stmt).rowcount == 1


def _restore(session: Session, row_id: str, previous: Mapping[str, Any]) -> None:
    session.execute(
        update(LedgerTransaction)
        .where(LedgerTransaction.id == row_id)
        .values(dict(previous))
        .execution_options(synchronize_session="evaluate")
    )


def _snapshot(row: LedgerTransaction, keys: Iterable[str]) -> dict[str, Any]:
    return {k: getattr(row, k) for k in keys}


def _not_reconciled_error(label: str, row: LedgerTransaction) -> MergeResult:
    return MergeResult(
        success=False,
        error=f"{label} is already reconciled (reconciliation_status={row.reconciliation_status})",
    )


def _conflict(label: str) -> MergeResult:
    return MergeResult(success=False, error=f"{label} changed concurrently; reload and retry")


# ---------------------------------------------------------------------------
# Merge operations
# ---------------------------------------------------------------------------


def merge_p2p_match(
    session: Session,
    household_id: str | None,
    card_id: str,
    app_id: str,
    *,
    category: str | None = None,
    notes: str | None = None,
) -> MergeResult:
    """Merge a card P2P line with the app transaction that explains it.

    The card row stays the financial record (date, amount, currency) and is
    enriched from the app row: ``merchant_normalized`` takes the counterparty,
    else the app's normalized merchant, else its raw merchant; ``category``
    defaults to the app's; the app memo is appended to ``notes`` as
    ``Memo: ...``. Both rows become ``matched`` and ``verified`` under a new
    shared group id, and the app row is flagged as a duplicate of the card row.
    """

    hid = _require_household(household_id, "merge_p2p_match")
    card = _load(session, hid, card_id)
    if card is None:
        return MergeResult(success=False, error="Card transaction not found")
    app = _load(session, hid, app_id)
    if app is None:
        return MergeResult(success=False, error="App transaction not found")

    if (
        card.reconciliation_status == "matched"
        and app.reconciliation_status == "matched"
        and card.reconciliation_group_id is not None
        and card.reconciliation_group_id == app.reconciliation_group_id
        and app.duplicate_of == card.id
    ):
        return MergeResult(success=True, group_id=card.reconciliation_group_id)
    if not _is_unreconciled(card):
        return _not_reconciled_error("Card transaction", card)
    if not _is_unreconciled(app):
        return _not_reconciled_error("App transaction", app)

    group_id = str(uuid.uuid4())
    enriched_merchant = app.p2p_counterparty or app.merchant_normalized or app.merchant_raw
    enriched_notes = notes or ""
    if app.p2p_memo:
        enriched_notes = (
            f"{enriched_notes} | Memo: {app.p2p_memo}" if enriched_notes else f"Memo: {app.p2p_memo}"
        )

    card_values = {
        "merchant_normalized": enriched_merchant,
        "category": category or app.category,
        "notes": enriched_notes or None,
        "reconciliation_status": "matched",
        "reconciliation_group_id": group_id,
        "status": "verified",
    }
    previous = _snapshot(card, card_values)
    if not _conditional_update(session, hid, card_id, card_values):
        return _conflict("Card transaction")

    app_values = {
        "reconciliation_status": "matched",
        "reconciliation_group_id": group_id,
        "is_duplicate": True,
        "duplicate_of": card_id,
        "status": "verified",
    }
    if not _conditional_update(session, hid, app_id, app_values):
        _restore(session, card_id, previous)
        return _conflict("App transaction")

    _logger.info(
        "merge:p2p household=%s card_id=%s app_id=%s group_id=%s", hid, card_id, app_id, group_id
    )
    return MergeResult(success=True, group_id=group_id)


def mark_as_balance_paid(
    session: Session,
    household_id: str | None,
    tx_id: str,
    category: str | None = None,
    notes: str | None = None,
) -> MergeResult:
    """Confirm that an outgoing app transaction was paid from wallet balance."""

    hid = _require_household(household_id, "mark_as_balance_paid")
    row = _load(session, hid, tx_id)
    if row is None:
        return MergeResult(success=False, error="Transaction not found")
    if not (_is_unreconciled(row) or row.reconciliation_status == "balance_paid"):
        return _not_reconciled_error("Transaction", row)

    values: dict[str, Any] = {"reconciliation_status": "balance_paid", "status": "verified"}
    if category:
        values["category"] = category
    if notes:
        values["notes"] = notes
    if not _conditional_update(session, hid, tx_id, values, allowed_statuses=("balance_paid",)):
        return _conflict("Transaction")

    _logger.info("merge:balance_paid household=%s tx_id=%s", hid, tx_id)
    return MergeResult(success=True)


def merge_withdrawal(
    session: Session,
    household_id: str | None,
    withdrawal_id: str,
    deposit_id: str,
) -> MergeResult:
    """Link an app withdrawal and the bank deposit it produced.

    Both rows become ``withdrawal_matched`` and ``verified`` under one group
    id and point at each other through ``duplicate_of``.
    """

    hid = _require_household(household_id, "merge_withdrawal")
    withdrawal = _load(session, hid, withdrawal_id)
    if withdrawal is None:
        return MergeResult(success=False, error="Withdrawal not found")
    deposit = _load(session, hid, deposit_id)
    if deposit is None:
        return MergeResult(success=False, error="Bank deposit not found")

    if (
        withdrawal.reconciliation_status == "withdrawal_matched"
        and deposit.reconciliation_status == "withdrawal_matched"
        and withdrawal.reconciliation_group_id is not None
        and withdrawal.reconciliation_group_id == deposit.reconciliation_group_id
        and withdrawal.duplicate_of == deposit.id
        and deposit.duplicate_of == withdrawal.id
    ):
        return MergeResult(success=True, group_id=withdrawal.reconciliation_group_id)
    if not _is_unreconciled(withdrawal):
        return _not_reconciled_error("Withdrawal", withdrawal)
    if not _is_unreconciled(deposit):
        return _not_reconciled_error("Bank deposit", deposit)

    group_id = str(uuid.uuid4())

    def _values(other_id: str) -> dict[str, Any]:
        return {
            "reconciliation_status": "withdrawal_matched",
            "reconciliation_group_id": group_id,
            "is_duplicate": True,
            "duplicate_of": other_id,
            "status": "verified",
        }

    first = _values(deposit_id)
    previous = _snapshot(withdrawal, first)
    if not _conditional_update(session, hid, withdrawal_id, first):
        return _conflict("Withdrawal")
    if not _conditional_update(session, hid, deposit_id, _values(withdrawal_id)):
        _restore(session, withdrawal_id, previous)
        return _conflict("Bank deposit")

    _logger.info(
        "merge:withdrawal household=%s withdrawal_id=%s deposit_id=%s group_id=%s",
        hid,
        withdrawal_id,
        deposit_id,
        group_id,
    )
    return MergeResult(success=True, group_id=group_id)


def apply_reimbursement(
    session: Session,
    household_id: str | None,
    tx_id: str,
    category: str,
    linked_expense_id: str | None = None,
    notes: str | None = None,
) -> MergeResult:
    """Reclassify an incoming payment as a reimbursement.

    The row becomes a negative expense in ``category`` so it nets against
    that category's spending: ``type='expense'``, ``amount=-|amount|``,
    ``is_reimbursement=True``, ``reconciliation_status='reimbursement'``.
    """

    hid = _require_household(household_id, "apply_reimbursement")
    row = _load(session, hid, tx_id)
    if row is None:
        return MergeResult(success=False, error="Transaction not found")
    if not (_is_unreconciled(row) or row.reconciliation_status == "reimbursement"):
        return _not_reconciled_error("Transaction", row)
    if linked_expense_id is not None and _load(session, hid, linked_expense_id) is None:
        return MergeResult(success=False, error="Linked expense not found")

    values: dict[str, Any] = {
        "type": "expense",
        "amount": -abs(Decimal(row.amount)),
        "category": category,
        "is_reimbursement": True,
        "reconciliation_status": "reimbursement",
        "linked_to_transaction_id": linked_expense_id,
        "status": "verified",
    }
    if notes:
        values["notes"] = notes
    if not _conditional_update(session, hid, tx_id, values, allowed_statuses=("reimbursement",)):
        return _conflict("Transaction")

    _logger.info(
        "merge:reimbursement household=%s tx_id=%s category=%s linked_expense_id=%s",
        hid,
        tx_id,
        category,
        linked_expense_id,
    )
    return MergeResult(success=True)


# ---------------------------------------------------------------------------
# Review helpers
# ---------------------------------------------------------------------------


def find_related_expenses(
    session: Session,
    household_id: str | None,
    tx_id: str,
    lookback_days: int = 7,
) -> list[TransactionSummary]:
    """Suggest expenses a reimbursement may offset.

    Expenses dated within ``lookback_days`` before the reimbursement whose
    amount lies in ``[0.8x, 5x]`` of it, newest first, at most five.
    """

    hid = _require_household(household_id, "find_related_expenses")
    anchor = session.scalars(
        select(LedgerTransaction)
        .where(LedgerTransaction.id == tx_id)
        .where(LedgerTransaction.household_id == hid)
    ).one_or_none()
    if anchor is None:
        return []

    amount = abs(Decimal(anchor.amount))
    stmt = (
        select(LedgerTransaction)
        .where(LedgerTransaction.household_id == hid)
        .where(LedgerTransaction.id != tx_id)
        .where(LedgerTransaction.type == "expense")
        .where(LedgerTransaction.amount >= amount * RELATED_EXPENSE_MIN_RATIO)
        .where(LedgerTransaction.amount <= amount * RELATED_EXPENSE_MAX_RATIO)
        .where(LedgerTransaction.date >= anchor.date - timedelta(days=lookback_days))
        .where(LedgerTransaction.date <= anchor.date)
        .order_by(LedgerTransaction.date.desc(), LedgerTransaction.id)
        .limit(RELATED_EXPENSE_LIMIT)
    )
    return [to_summary(r) for r in session.scalars(stmt)]


def pending_reconciliation_counts(
    session: Session, household_id: str | None
) -> PendingReconciliationCounts:
    """Per-queue counts of the current review queue."""

    hid = _require_household(household_id, "pending_reconciliation_counts")
    result = run_p2p_reconciliation(session, hid)
    return PendingReconciliationCounts(
        matches=len(result.matches),
        withdrawals=len(result.withdrawals),
        reimbursements=len(result.reimbursements),
        balance_paid=len(result.balance_paid),
    )


# ---------------------------------------------------------------------------
# Merchant memory
# ---------------------------------------------------------------------------


class MerchantMemoryMatch(NamedTuple):
    merchant_normalized: str
    category: str
    exact: bool


def save_merchant_memory(
    session: Session,
    household_id: str | None,
    merchant_normalized: str,
    category: str,
) -> None:
    """Remember ``category`` for a merchant (upsert on household + merchant).

    Re-saving an existing merchant overwrites its category and bumps
    ``correction_count``.
    """

    hid = _require_household(household_id, "save_merchant_memory")
    key = merchant_normalized.strip()
    now = datetime.now(UTC)
    dialect = session.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    table = MerchantMemory.__table__

    stmt = insert(MerchantMemory).values(
        id=str(uuid.uuid4()),
        household_id=hid,
        merchant_normalized=key,
        category=category,
        confidence=1.0,
        correction_count=0,
        last_seen=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[MerchantMemory.household_id, MerchantMemory.merchant_normalized],
        set_={
            "category": stmt.excluded.category,
            "confidence": stmt.excluded.confidence,
            "correction_count": table.c.correction_count + 1,
            "last_seen": now,
        },
    )
    session.execute(stmt)
    _logger.info("merchant_memory:saved household=%s merchant=%s category=%s", hid, key, category)


def lookup_merchant_memory(
    session: Session,
    household_id: str | None,
    merchant_normalized: str,
) -> MerchantMemoryMatch | None:
    """Find a remembered category: exact merchant first, then substring either way."""

    hid = _require_household(household_id, "lookup_merchant_memory")
    key = merchant_normalized.strip()
    exact = session.scalars(
        select(MerchantMemory)
        .where(MerchantMemory.household_id == hid)
        .where(MerchantMemory.merchant_normalized == key)
    ).one_or_none()
    if exact is not None:
        return MerchantMemoryMatch(exact.merchant_normalized, exact.category, True)

    needle = key.casefold()
    if not needle:
        return None
    rows = session.scalars(
        select(MerchantMemory)
        .where(MerchantMemory.household_id == hid)
        .order_by(MerchantMemory.merchant_normalized)
    )
    for m in rows:
        stored = m.merchant_normalized.casefold()
        if stored and (stored in needle or needle in stored):
            return MerchantMemoryMatch(m.merchant_normalized, m.category, False)
    return None


def delete_merchant_memory(
    session: Session,
    household_id: str | None,
    merchant_normalized: str,
) -> bool:
    """Forget a merchant. Returns whether a row was deleted."""

    hid = _require_household(household_id, "delete_merchant_memory")
    res = session.execute(
        delete(MerchantMemory)
        .where(MerchantMemory.household_id == hid)
        .where(MerchantMemory.merchant_normalized == merchant_normalized.strip())
    )
    return res.rowcount > 0


__all__ = [
    "SCREENSHOT_SOURCE",
    "SMS_SOURCE",
    "UPLOAD_SOURCE",
    "source_for",
    "save_transactions",
    "merge_p2p_match",
    "mark_as_balance_paid",
    "merge_withdrawal",
    "apply_reimbursement",
    "find_related_expenses",
    "pending_reconciliation_counts",
    "MerchantMemoryMatch",
    "save_merchant_memory",
    "lookup_merchant_memory",
    "delete_merchant_memory",
]
