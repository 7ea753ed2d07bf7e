from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

import household_ledger.persistence as persistence_mod
from household_ledger.db.client import session_scope
from household_ledger.errors import MissingHouseholdError
from household_ledger.models import InstallmentInfo, MergeResult, ParsedTransaction
from household_ledger.persistence import (
    SCREENSHOT_SOURCE,
    apply_reimbursement,
    find_related_expenses,
    mark_as_balance_paid,
    merge_p2p_match,
    merge_withdrawal,
    pending_reconciliation_counts,
    save_transactions,
)

from tests.helpers.db import add_household, add_transaction, bootstrap_sqlite_db, get_transaction


# ---- Fixtures ----------------------------------------------------------------


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "db.sqlite")


@pytest.fixture()
def p2p_pair(db_url: str) -> dict[str, str]:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        card = add_transaction(
            s, hid, date_="2026-03-10", merchant_raw="BIT TRANSFER", amount="250"
        )
        app = add_transaction(
            s,
            hid,
            date_="2026-03-08",
            merchant_raw="Dana",
            amount="250",
            source=SCREENSHOT_SOURCE,
            category="Dining",
            p2p_direction="sent",
            p2p_counterparty="דנה לוי",
            p2p_memo="פיצה",
        )
    return {"hid": hid, "card": card, "app": app}


# ---- save_transactions -------------------------------------------------------


def test_save_transactions_persists_candidates(db_url: str) -> None:
    txs = [
        ParsedTransaction(
            date="2026-03-01",
            merchant_raw="Electric store",
            amount=Decimal("100.00"),
            type="expense",
            is_installment=True,
            installment_info=InstallmentInfo(total=3),
        ),
        ParsedTransaction(
            date="2026-03-02",
            merchant_raw="Dana",
            amount=Decimal("40.00"),
            type="expense",
            p2p_direction="sent",
            p2p_counterparty="Dana",
            p2p_memo="coffee",
        ),
    ]
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        ids = save_transactions(s, hid, txs, "screenshot")

    assert len(ids) == 2
    with session_scope(database_url=db_url) as s:
        first = get_transaction(s, ids[0])
        second = get_transaction(s, ids[1])

    assert first.date == date(2026, 3, 1)
    assert first.amount == Decimal("100.00")
    assert first.status == "pending"
    assert first.reconciliation_status is None
    assert first.source == SCREENSHOT_SOURCE
    assert first.is_installment
    assert first.installment_total == 3
    assert second.p2p_direction == "sent"
    assert second.p2p_memo == "coffee"


def test_save_transactions_requires_household(db_url: str) -> None:
    with session_scope(database_url=db_url) as s, pytest.raises(MissingHouseholdError):
        save_transactions(s, "", [], "csv")


# ---- merge_p2p_match ---------------------------------------------------------


def test_merge_p2p_match_enriches_card_row(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        result = merge_p2p_match(
            s, p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"], notes="split dinner"
        )

    assert result.success
    assert result.group_id
    with session_scope(database_url=db_url) as s:
        card = get_transaction(s, p2p_pair["card"])
        app = get_transaction(s, p2p_pair["app"])

    assert card.merchant_normalized == "דנה לוי"
    assert card.merchant_raw == "BIT TRANSFER"
    assert card.category == "Dining"
    assert card.notes == "split dinner | Memo: פיצה"
    assert card.status == "verified"
    assert card.reconciliation_status == "matched"
    assert card.reconciliation_group_id == result.group_id
    assert card.amount == Decimal("250")
    assert app.reconciliation_status == "matched"
    assert app.reconciliation_group_id == result.group_id
    assert app.is_duplicate
    assert app.duplicate_of == p2p_pair["card"]
    assert app.status == "verified"


def test_merge_p2p_match_memo_without_notes(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        merge_p2p_match(s, p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"], category="Gifts")

    with session_scope(database_url=db_url) as s:
        card = get_transaction(s, p2p_pair["card"])

    assert card.notes == "Memo: פיצה"
    assert card.category == "Gifts"


def test_merge_p2p_match_is_idempotent(db_url: str, p2p_pair: dict[str, str]) -> None:
    args = (p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"])
    with session_scope(database_url=db_url) as s:
        first = merge_p2p_match(s, *args)
    with session_scope(database_url=db_url) as s:
        second = merge_p2p_match(s, *args)

    assert second.success
    assert second.group_id == first.group_id


def test_merge_p2p_match_rejects_reconciled_rows(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        assert merge_p2p_match(s, p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"]).success
        other_app = add_transaction(
            s,
            p2p_pair["hid"],
            date_="2026-03-09",
            merchant_raw="Someone",
            amount="250",
            source=SCREENSHOT_SOURCE,
            p2p_direction="sent",
        )

    with session_scope(database_url=db_url) as s:
        result = merge_p2p_match(s, p2p_pair["hid"], p2p_pair["card"], other_app)

    assert not result.success
    assert result.error == "Card transaction is already reconciled (reconciliation_status=matched)"


@pytest.mark.parametrize(
    ("missing", "expected"),
    [("card", "Card transaction not found"), ("app", "App transaction not found")],
)
def test_merge_p2p_match_missing_rows(
    db_url: str, p2p_pair: dict[str, str], missing: str, expected: str
) -> None:
    ids = dict(p2p_pair)
    ids[missing] = "does-not-exist"

    with session_scope(database_url=db_url) as s:
        result = merge_p2p_match(s, ids["hid"], ids["card"], ids["app"])

    assert result == MergeResult(success=False, error=expected)


def test_merge_p2p_match_is_household_scoped(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        stranger = add_household(s, name="Stranger")

    with session_scope(database_url=db_url) as s:
        result = merge_p2p_match(s, stranger, p2p_pair["card"], p2p_pair["app"])

    assert result.error == "Card transaction not found"


def test_merge_p2p_match_restores_card_when_app_update_loses_race(
    db_url: str, p2p_pair: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    original = persistence_mod._conditional_update

    def _lose_on_app(session, household_id, tx_id, values, **kwargs):
        if tx_id == p2p_pair["app"]:
            return False
        return original(session, household_id, tx_id, values, **kwargs)

    monkeypatch.setattr(persistence_mod, "_conditional_update", _lose_on_app)

    with session_scope(database_url=db_url) as s:
        result = merge_p2p_match(s, p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"])

    assert not result.success
    assert result.error == "App transaction changed concurrently; reload and retry"
    with session_scope(database_url=db_url) as s:
        card = get_transaction(s, p2p_pair["card"])

    assert card.reconciliation_status is None
    assert card.reconciliation_group_id is None
    assert card.status == "pending"
    assert card.merchant_normalized is None


def test_merge_p2p_match_requires_household(db_url: str) -> None:
    with session_scope(database_url=db_url) as s, pytest.raises(MissingHouseholdError):
        merge_p2p_match(s, None, "a", "b")


# ---- mark_as_balance_paid ----------------------------------------------------


def test_mark_as_balance_paid(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        result = mark_as_balance_paid(s, p2p_pair["hid"], p2p_pair["app"], category="Gifts")
        again = mark_as_balance_paid(s, p2p_pair["hid"], p2p_pair["app"])

    assert result.success
    assert again.success
    with session_scope(database_url=db_url) as s:
        app = get_transaction(s, p2p_pair["app"])

    assert app.reconciliation_status == "balance_paid"
    assert app.status == "verified"
    assert app.category == "Gifts"


def test_mark_as_balance_paid_rejects_matched_row(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        merge_p2p_match(s, p2p_pair["hid"], p2p_pair["card"], p2p_pair["app"])
    with session_scope(database_url=db_url) as s:
        result = mark_as_balance_paid(s, p2p_pair["hid"], p2p_pair["app"])

    assert not result.success
    assert "already reconciled" in (result.error or "")


# ---- merge_withdrawal --------------------------------------------------------


def test_merge_withdrawal_links_both_rows(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        withdrawal = add_transaction(
            s,
            hid,
            date_="2026-03-10",
            merchant_raw="BIT withdrawal",
            amount="300",
            source=SCREENSHOT_SOURCE,
            p2p_direction="withdrawal",
        )
        deposit = add_transaction(
            s, hid, date_="2026-03-12", merchant_raw="העברה מ BIT", amount="300", type_="income"
        )

    with session_scope(database_url=db_url) as s:
        result = merge_withdrawal(s, hid, withdrawal, deposit)
    with session_scope(database_url=db_url) as s:
        again = merge_withdrawal(s, hid, withdrawal, deposit)
        w_row = get_transaction(s, withdrawal)
        d_row = get_transaction(s, deposit)

    assert result.success
    assert again.group_id == result.group_id
    for row, other in ((w_row, deposit), (d_row, withdrawal)):
        assert row.reconciliation_status == "withdrawal_matched"
        assert row.reconciliation_group_id == result.group_id
        assert row.is_duplicate
        assert row.duplicate_of == other
        assert row.status == "verified"


def test_merge_withdrawal_missing_deposit(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        withdrawal = add_transaction(
            s, hid, date_="2026-03-10", merchant_raw="w", amount="300", p2p_direction="withdrawal"
        )
        result = merge_withdrawal(s, hid, withdrawal, "missing")

    assert result.error == "Bank deposit not found"


# ---- apply_reimbursement -----------------------------------------------------


def test_apply_reimbursement_flips_sign(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        dinner = add_transaction(s, hid, date_="2026-03-07", merchant_raw="Restaurant", amount="600")
        incoming = add_transaction(
            s,
            hid,
            date_="2026-03-08",
            merchant_raw="Yossi",
            amount="150",
            type_="income",
            source=SCREENSHOT_SOURCE,
            p2p_direction="received",
        )

    with session_scope(database_url=db_url) as s:
        result = apply_reimbursement(s, hid, incoming, "Dining", linked_expense_id=dinner)
    with session_scope(database_url=db_url) as s:
        again = apply_reimbursement(s, hid, incoming, "Dining", linked_expense_id=dinner)
        row = get_transaction(s, incoming)

    assert result.success
    assert again.success
    assert row.type == "expense"
    assert row.amount == Decimal("-150")
    assert row.category == "Dining"
    assert row.is_reimbursement
    assert row.reconciliation_status == "reimbursement"
    assert row.linked_to_transaction_id == dinner
    assert row.status == "verified"


def test_apply_reimbursement_missing_linked_expense_changes_nothing(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        incoming = add_transaction(
            s, hid, date_="2026-03-08", merchant_raw="Yossi", amount="150", type_="income"
        )
        result = apply_reimbursement(s, hid, incoming, "Dining", linked_expense_id="nope")

    assert result.error == "Linked expense not found"
    with session_scope(database_url=db_url) as s:
        row = get_transaction(s, incoming)

    assert row.amount == Decimal("150")
    assert row.reconciliation_status is None


# ---- Review helpers ----------------------------------------------------------


def test_find_related_expenses(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        hid = add_household(s)
        refund = add_transaction(
            s, hid, date_="2026-03-10", merchant_raw="Yossi", amount="100", type_="income"
        )
        close = add_transaction(s, hid, date_="2026-03-08", merchant_raw="Dinner", amount="90")
        big = add_transaction(s, hid, date_="2026-03-05", merchant_raw="Hotel", amount="400")
        add_transaction(s, hid, date_="2026-03-09", merchant_raw="Too small", amount="70")
        add_transaction(s, hid, date_="2026-03-09", merchant_raw="Too big", amount="600")
        add_transaction(s, hid, date_="2026-03-01", merchant_raw="Too old", amount="100")
        add_transaction(s, hid, date_="2026-03-11", merchant_raw="Later", amount="100")
        add_transaction(
            s, hid, date_="2026-03-09", merchant_raw="Income", amount="100", type_="income"
        )

    with session_scope(database_url=db_url) as s:
        related = find_related_expenses(s, hid, refund)
        unknown = find_related_expenses(s, hid, "missing")

    assert [t.id for t in related] == [close, big]
    assert unknown == []


def test_pending_reconciliation_counts(db_url: str, p2p_pair: dict[str, str]) -> None:
    with session_scope(database_url=db_url) as s:
        add_transaction(
            s,
            p2p_pair["hid"],
            date_="2026-03-09",
            merchant_raw="Yossi",
            amount="60",
            type_="income",
            source=SCREENSHOT_SOURCE,
            p2p_direction="received",
        )

    with session_scope(database_url=db_url) as s:
        counts = pending_reconciliation_counts(s, p2p_pair["hid"])

    assert counts.matches == 1
    assert counts.reimbursements == 1
    assert counts.balance_paid == 0
    assert counts.withdrawals == 0
    assert counts.total == 2
