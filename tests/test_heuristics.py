from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from household_ledger.ingest.heuristics import (
    InstallmentPolicy,
    detect_column_mapping,
    detect_currency,
    detect_currency_from_data,
    find_header_row,
    normalize_date,
    parse_amount_cell,
    resolve_card_amounts,
)


# ---- Dates -------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("01/02/2026", "2026-02-01"),
        ("1/2/2026", "2026-02-01"),
        ("15.03.2026", "2026-03-15"),
        ("2026-03-15", "2026-03-15"),
        ("12/31/2025", "2025-12-31"),
        ("05.03.26", "2026-03-05"),
        ("05/03/26", "2026-03-05"),
        ("  07/04/2026 ", "2026-04-07"),
    ],
)
def test_normalize_date_accepts_known_formats(raw: str, expected: str) -> None:
    assert normalize_date(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "not a date", "32/13/2026", "2026/03/15"])
def test_normalize_date_returns_none_for_garbage(raw: object) -> None:
    assert normalize_date(raw) is None


def test_normalize_date_accepts_native_values() -> None:
    assert normalize_date(date(2026, 1, 9)) == "2026-01-09"
    assert normalize_date(datetime(2026, 1, 9, 13, 45)) == "2026-01-09"


def test_normalize_date_prefers_day_first() -> None:
    # Ambiguous dd/MM vs MM/dd resolves day-first.
    assert normalize_date("03/04/2026") == "2026-04-03"


# ---- Column mapping ------------------------------------------------------------


def test_detect_column_mapping_english_bank_headers() -> None:
    mapping = detect_column_mapping(["Date", "Description", "Debit", "Credit", "Balance"])

    assert mapping.date == 0
    assert mapping.description == 1
    assert mapping.debit == 2
    assert mapping.credit == 3
    assert mapping.balance == 4
    assert mapping.uses_credit_debit
    assert not mapping.uses_card_amounts


def test_detect_column_mapping_hebrew_card_headers() -> None:
    mapping = detect_column_mapping(["תאריך עסקה", "שם בית העסק", "סכום עסקה", "סכום חיוב"])

    assert mapping.date == 0
    assert mapping.description == 1
    assert mapping.amount_transaction == 2
    assert mapping.amount_billing == 3
    assert mapping.uses_card_amounts
    assert mapping.has_card_amount_column


def test_detect_column_mapping_single_card_column() -> None:
    mapping = detect_column_mapping(["תאריך", "שם בית העסק", "סכום חיוב"])

    assert mapping.amount_billing == 2
    assert mapping.amount == 2
    assert not mapping.uses_card_amounts
    assert mapping.has_card_amount_column


def test_detect_column_mapping_requires_both_credit_and_debit() -> None:
    mapping = detect_column_mapping(["Date", "Payee", "Credit"])

    assert mapping.credit is None
    assert mapping.debit is None
    assert not mapping.uses_credit_debit


def test_detect_column_mapping_tolerates_none_headers() -> None:
    mapping = detect_column_mapping([None, "Date", 42, "Amount"])

    assert mapping.date == 1
    assert mapping.amount == 3
    assert mapping.description is None


def test_find_header_row_skips_preamble() -> None:
    rows = [
        ["Account 12-345-678"],
        ["Statement for March"],
        ["Date", "Description", "Amount"],
        ["01/03/2026", "Coffee", "-12.00"],
    ]

    assert find_header_row(rows) == 2


def test_find_header_row_defaults_to_first_row() -> None:
    assert find_header_row([["a", "b"], ["c", "d"]]) == 0


# ---- Currency ----------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Total ₪ 120", "ILS"),
        ('סכום בש"ח', "ILS"),
        ("Amount (USD)", "USD"),
        ("Price $12", "USD"),
        ("€ 40", "EUR"),
        ("GBP 10", "GBP"),
        ("nothing to see", "ILS"),
        ("Transaction details (USD)", "USD"),
        ("Paid in dollars", "USD"),
        ("Amount 40 euros", "EUR"),
        ("Tennis club", "ILS"),
    ],
)
def test_detect_currency(text: str, expected: str) -> None:
    assert detect_currency(text) == expected


def test_detect_currency_from_data_scans_first_rows() -> None:
    headers = ["Date", "Payee", "Amount"]
    rows = [["01/03/2026", "Hotel", "$250.00"]]

    assert detect_currency_from_data(headers, rows) == "USD"


def test_detect_currency_ignores_embedded_words() -> None:
    headers = ["Date", "Details", "Amount USD"]
    rows = [["01/03/2026", "Hotel", "250.00"]]

    assert detect_currency_from_data(headers, rows) == "USD"
    assert detect_currency("Eureka Bakery") == "ILS"


def test_detect_currency_from_data_header_wins() -> None:
    headers = ["Date", "Payee", "Amount EUR"]
    rows = [["01/03/2026", "Hotel", "$250.00"]]

    assert detect_currency_from_data(headers, rows) == "EUR"


# ---- Amounts -----------------------------------------------------------------


@pytest.mark.parametrize(
    ("cell", "expected"),
    [
        ("1,234.50", Decimal("1234.50")),
        ("₪ -80", Decimal("-80")),
        (42, Decimal("42")),
        (12.5, Decimal("12.5")),
        (None, Decimal("0")),
        ("", Decimal("0")),
        ("n/a", Decimal("0")),
        ("--", Decimal("0")),
    ],
)
def test_parse_amount_cell(cell: object, expected: Decimal) -> None:
    assert parse_amount_cell(cell) == expected


def test_resolve_card_amounts_detects_installments() -> None:
    amount, installment = resolve_card_amounts(Decimal("100"), Decimal("300"))

    assert amount == Decimal("100")
    assert installment is not None
    assert installment.total == 3


def test_resolve_card_amounts_equal_pair_is_not_installment() -> None:
    amount, installment = resolve_card_amounts(Decimal("100"), Decimal("100"))

    assert amount == Decimal("100")
    assert installment is None


def test_resolve_card_amounts_rounds_half_up() -> None:
    _, installment = resolve_card_amounts(Decimal("100"), Decimal("250"))

    assert installment is not None
    assert installment.total == 3


def test_resolve_card_amounts_zero_billing_is_not_installment() -> None:
    amount, installment = resolve_card_amounts(Decimal("0"), Decimal("300"))

    assert amount == Decimal("0")
    assert installment is None


def test_resolve_card_amounts_transaction_policy() -> None:
    amount, installment = resolve_card_amounts(
        Decimal("100"), Decimal("300"), policy=InstallmentPolicy.TRANSACTION_AMOUNT_WINS
    )

    assert amount == Decimal("300")
    assert installment is not None and installment.total == 3
