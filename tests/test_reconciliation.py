from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from household_ledger.db.client import session_scope
from household_ledger.models import ReconciliationResult, TransactionSummary
from household_ledger.persistence import SCREENSHOT_SOURCE, merge_p2p_match
from household_ledger.reconciliation import (
    CARD_WINDOW,
    DEPOSIT_WINDOW,
    greedy_assign,
    is_app_source,
    is_bank_wallet_deposit,
    is_p2p_card_line,
    load_snapshot,
    reconcile,
    run_p2p_reconciliation,
    score_candidate,
)

from tests.helpers.db import add_household, add_transaction, bootstrap_sqlite_db


# ---- Helpers -----------------------------------------------------------------


def _card(id_: str, date_: str, merchant: str, amount: str, type_: str = "expense", **kw: Any):
    return TransactionSummary(
        id=id_,
        date=date.fromisoformat(date_),
        merchant_raw=merchant,
        amount=Decimal(amount),
        type=type_,  # type: ignore[arg-type]
        source="upload",
        **kw,
    )


def _app(id_: str, date_: str, amount: str, direction: str | None = "sent", **kw: Any):
    type_ = kw.pop("type_", "income" if direction == "received" else "expense")
    return TransactionSummary(
        id=id_,
        date=date.fromisoformat(date_),
        merchant_raw=kw.pop("merchant", "דנה לוי"),
        amount=Decimal(amount),
        type=type_,
        source=SCREENSHOT_SOURCE,
        p2p_direction=direction,  # type: ignore[arg-type]
        **kw,
    )


# ---- Classification ----------------------------------------------------------


def test_classification_helpers() -> None:
    assert is_app_source("bit/paybox screenshot")
    assert is_app_source("Screenshot")
    assert not is_app_source("upload")
    assert not is_app_source(None)

    assert is_p2p_card_line(_card("c", "2026-03-10", "BIT TRANSFER", "1"))
    assert is_p2p_card_line(_card("c", "2026-03-10", "העברה בביט", "1"))
    assert is_p2p_card_line(_card("c", "2026-03-10", "PayPal *Seller", "1"))
    assert not is_p2p_card_line(_card("c", "2026-03-10", "SUPER-PHARM", "1"))

    assert is_bank_wallet_deposit(_card("d", "2026-03-10", "העברה מ פייבוקס", "1", "income"))
    assert not is_bank_wallet_deposit(_card("d", "2026-03-10", "BIT", "1", "expense"))


@pytest.mark.parametrize(
    ("amount_diff", "days", "expected"),
    [
        (Decimal("0"), 0, 99),
        (Decimal("0"), 2, 95),
        (Decimal("0.50"), 2, 90),
        (Decimal("1"), 4, 85),
        (Decimal("0"), -1, 85),
        (Decimal("0.99"), 6, 80),
    ],
)
def test_score_candidate(amount_diff: Decimal, days: int, expected: int) -> None:
    confidence, _ = score_candidate(amount_diff, days)

    assert confidence == expected


def test_match_window_orientation() -> None:
    card_day, app_day = date(2026, 3, 10), date(2026, 3, 8)

    assert CARD_WINDOW.offset(card_day, app_day) == 2
    assert DEPOSIT_WINDOW.offset(app_day, card_day) == 2


# ---- Phase 1 -----------------------------------------------------------------


def test_card_line_matches_earlier_app_payment_exactly() -> None:
    card = _card("card", "2026-03-10", "BIT TRANSFER", "250")
    app = _app("app", "2026-03-08", "250", p2p_memo="pizza")

    result = reconcile([card, app])

    (match,) = result.matches
    assert match.card_transaction.id == "card"
    assert [c.id for c in match.candidates] == ["app"]
    assert match.match_type == "exact"
    assert match.confidence == 95
    assert result.balance_paid == ()
    assert result.summary.total_card_p2p == 1
    assert result.summary.matched_count == 1
    assert result.summary.needs_review_count == 0


def test_card_posted_one_day_before_app_is_fuzzy() -> None:
    result = reconcile(
        [_card("card", "2026-03-10", "PAYBOX", "80"), _app("app", "2026-03-11", "80")]
    )

    (match,) = result.matches
    assert match.match_type == "fuzzy"
    assert match.confidence == 85


@pytest.mark.parametrize("app_date", ["2026-03-04", "2026-03-12"])
def test_card_line_outside_window_stays_silent(app_date: str) -> None:
    result = reconcile(
        [_card("card", "2026-03-10", "BIT", "250"), _app("app", app_date, "250")]
    )

    assert result.matches == ()
    assert result.summary.total_card_p2p == 1
    assert result.summary.matched_count == 0
    assert [t.id for t in result.balance_paid] == ["app"]


def test_multiple_candidates_are_ambiguous_and_unreserved() -> None:
    card = _card("card", "2026-03-10", "PAYBOX", "100")
    first = _app("a1", "2026-03-09", "100")
    second = _app("a2", "2026-03-10", "100.50")

    result = reconcile([card, first, second])

    (match,) = result.matches
    assert match.match_type == "ambiguous"
    assert match.confidence == 70
    assert match.reason.startswith("2 possible matches - ")
    # equal scores; the closer date comes first
    assert [c.id for c in match.candidates] == ["a2", "a1"]
    assert result.summary.needs_review_count == 1
    assert result.summary.matched_count == 0
    assert {t.id for t in result.balance_paid} == {"a1", "a2"}


def test_reserved_app_transaction_is_not_reused() -> None:
    later = _card("later", "2026-03-11", "BIT", "250")
    earlier = _card("earlier", "2026-03-10", "BIT", "250")
    app = _app("app", "2026-03-09", "250")

    result = reconcile([later, earlier, app])

    (match,) = result.matches
    assert match.card_transaction.id == "later"
    assert result.summary.total_card_p2p == 2
    assert result.summary.matched_count == 1


def test_received_and_matched_app_rows_are_not_candidates() -> None:
    result = reconcile(
        [
            _card("card", "2026-03-10", "BIT", "250"),
            _app("in", "2026-03-09", "250", "received"),
            _app("done", "2026-03-09", "250", reconciliation_status="matched"),
        ]
    )

    assert result.matches == ()


# ---- Phase 2 -----------------------------------------------------------------


def test_withdrawal_matches_following_bank_deposit() -> None:
    withdrawal = _app("w", "2026-03-10", "300", "withdrawal")
    deposit = _card("dep", "2026-03-12", "העברה מ BIT", "300", "income")

    result = reconcile([deposit, withdrawal])

    (wm,) = result.withdrawals
    assert wm.withdrawal.id == "w"
    assert [c.id for c in wm.candidates] == ["dep"]
    assert wm.match_type == "exact"
    assert wm.confidence == 95
    assert result.summary.withdrawal_count == 1
    # withdrawals never land in the balance-paid queue
    assert result.balance_paid == ()


def test_withdrawal_deposit_outside_window() -> None:
    withdrawal = _app("w", "2026-03-10", "300", "withdrawal")
    deposit = _card("dep", "2026-03-14", "PAYBOX", "300", "income")

    result = reconcile([deposit, withdrawal])

    assert result.withdrawals == ()


def test_withdrawal_pool_is_independent_of_phase_one() -> None:
    # A deposit paired as a card line in phase 1 is still offered to the
    # withdrawal in phase 2.
    withdrawal = _app("w", "2026-03-10", "300", "withdrawal")
    deposit = _card("dep", "2026-03-11", "BIT", "300", "income")
    sent = _app("s", "2026-03-10", "300")

    result = reconcile([deposit, withdrawal, sent])

    assert [c.id for c in result.withdrawals[0].candidates] == ["dep"]
    assert [m.card_transaction.id for m in result.matches] == ["dep"]


# ---- Phases 3 and 4 ----------------------------------------------------------


def test_balance_paid_and_reimbursement_queues() -> None:
    result = reconcile(
        [
            _app("sent", "2026-03-05", "40"),
            _app("paid", "2026-03-05", "40", reconciliation_status="balance_paid"),
            _app("got", "2026-03-06", "120", "received"),
            _app("implicit", "2026-03-06", "60", None, type_="income"),
            _app("refunded", "2026-03-06", "60", "received", reconciliation_status="reimbursement"),
        ]
    )

    assert [t.id for t in result.balance_paid] == ["sent"]
    assert [t.id for t in result.reimbursements] == ["got", "implicit"]
    assert result.reimbursements[1].p2p_direction == "received"
    assert result.summary.balance_paid_count == 1
    assert result.summary.reimbursement_count == 2


def test_reconcile_empty_snapshot() -> None:
    result = reconcile([])

    assert result == ReconciliationResult()


def test_custom_assigner_is_used() -> None:
    calls: list[int] = []

    def _recording(primaries, pool, window):
        calls.append(len(primaries))
        return greedy_assign(primaries, pool, window)

    reconcile([_card("card", "2026-03-10", "BIT", "250")], assigner=_recording)

    assert calls == [1, 0]


# ---- Storage-backed runs -----------------------------------------------------


def _seed(url: str) -> dict[str, str]:
    with session_scope(database_url=url) as s:
        hid = add_household(s)
        ids = {
            "hid": hid,
            "card": add_transaction(
                s, hid, date_="2026-03-10", merchant_raw="BIT TRANSFER", amount="250"
            ),
            "app": add_transaction(
                s,
                hid,
                date_="2026-03-08",
                merchant_raw="דנה לוי",
                amount="250",
                source=SCREENSHOT_SOURCE,
                p2p_direction="sent",
                p2p_counterparty="דנה לוי",
            ),
            "other": add_transaction(
                s, hid, date_="2026-02-01", merchant_raw="PAYBOX", amount="99"
            ),
        }
    return ids


def test_run_p2p_reconciliation_over_stored_rows(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "db.sqlite")
    ids = _seed(url)

    with session_scope(database_url=url) as s:
        first = run_p2p_reconciliation(s, ids["hid"])
        second = run_p2p_reconciliation(s, ids["hid"])

    assert first == second
    (match,) = first.matches
    assert match.card_transaction.id == ids["card"]
    assert match.confidence == 95
    assert first.summary.total_card_p2p == 2


def test_run_p2p_reconciliation_date_range(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "db.sqlite")
    ids = _seed(url)

    with session_scope(database_url=url) as s:
        result = run_p2p_reconciliation(
            s, ids["hid"], date_from=date(2026, 3, 1), date_to=date(2026, 3, 31)
        )

    assert result.summary.total_card_p2p == 1


def test_run_p2p_reconciliation_skips_reconciled_rows(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "db.sqlite")
    ids = _seed(url)

    with session_scope(database_url=url) as s:
        assert merge_p2p_match(s, ids["hid"], ids["card"], ids["app"]).success

    with session_scope(database_url=url) as s:
        after = run_p2p_reconciliation(s, ids["hid"])
        everything = run_p2p_reconciliation(s, ids["hid"], include_already_reconciled=True)

    assert after.matches == ()
    assert after.balance_paid == ()
    assert after.summary.total_card_p2p == 1
    assert everything.summary.total_card_p2p == 2


def test_run_p2p_reconciliation_without_household(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "db.sqlite")

    with session_scope(database_url=url) as s:
        result = run_p2p_reconciliation(s, None)

    assert result == ReconciliationResult()
    assert result.summary.total_card_p2p == 0


def test_reconciliation_only_sees_target_household(tmp_path: Path) -> None:
    url = bootstrap_sqlite_db(tmp_path / "db.sqlite")
    with session_scope(database_url=url) as s:
        ours = add_household(s, name="Ours")
        theirs = add_household(s, name="Theirs")
        app_id = add_transaction(
            s,
            ours,
            date_="2026-03-08",
            merchant_raw="דנה לוי",
            amount="250",
            source=SCREENSHOT_SOURCE,
            p2p_direction="sent",
        )
        foreign_card = add_transaction(
            s, theirs, date_="2026-03-10", merchant_raw="BIT TRANSFER", amount="250"
        )

    with session_scope(database_url=url) as s:
        snapshot_ids = [t.id for t in load_snapshot(s, ours)]
        ours_result = run_p2p_reconciliation(s, ours)
        theirs_result = run_p2p_reconciliation(s, theirs)
        cross_merge = merge_p2p_match(s, ours, foreign_card, app_id)

    assert snapshot_ids == [app_id]
    assert ours_result.matches == ()
    assert ours_result.summary.total_card_p2p == 0
    assert [t.id for t in ours_result.balance_paid] == [app_id]
    assert theirs_result.matches == ()
    assert theirs_result.summary.total_card_p2p == 1
    assert theirs_result.balance_paid == ()
    assert not cross_merge.success
    assert cross_merge.error == "Card transaction not found"
