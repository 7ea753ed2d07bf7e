"""Column, date and currency detection for locale-specific statements.

Everything here is a pure function over headers, cell grids or text. The
keyword tables cover the English and Hebrew labels used by Israeli banks and
card issuers; matching is a case-insensitive substring test.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from ..models import InstallmentInfo

# ---- Keyword tables ----------------------------------------------------------

HEURISTIC_KEYWORDS: Mapping[str, tuple[str, ...]] = {
    "date": ("date", "time", "תאריך", "יום", "מועד"),
    "description": (
        "description",
        "details",
        "name",
        "merchant",
        "payee",
        "פרטים",
        "שם",
        "בית עסק",
        "תיאור",
        "הערות",
    ),
    "amount": ("amount", "sum", "total", "price", "value", "סכום", "סך הכל", "מחיר", "ערך"),
    "amount_billing": (
        "billing amount",
        "charge amount",
        "סכום לחיוב",
        "חיוב בפועל",
        "סכום חיוב",
        "סכום לתשלום",
    ),
    "amount_transaction": ("transaction amount", "deal amount", "סכום עסקה", "סכום מקורי"),
    "credit": ("credit", "income", "deposit", "זכות", "הכנסה"),
    "debit": ("debit", "expense", "withdrawal", "outcome", "חובה", "הוצאה"),
    "balance": ("balance", "iterah", "יתרה"),
    "currency": ("currency", "מטבע", "סוג מטבע"),
}

# Checked in insertion order; the first indicator found wins.
CURRENCY_INDICATORS: Mapping[str, tuple[str, ...]] = {
    "ILS": ("₪", "ils", "nis", "שקל", "שקלים", 'ש"ח', "ש״ח", "shekel"),
    "USD": ("$", "usd", "dollar", "דולר"),
    "EUR": ("€", "eur", "euro", "אירו"),
    "GBP": ("£", "gbp", "pound", "לירה שטרלינג"),
}

DEFAULT_CURRENCY = "ILS"


def _indicator_pattern(indicator: str) -> re.Pattern[str]:
    # Latin words must stand alone ("ils" is not in "details"); plurals allowed.
    if indicator.isascii() and indicator.isalpha():
        return re.compile(rf"(?<![a-z]){re.escape(indicator)}s?(?![a-z])")
    return re.compile(re.escape(indicator))


_CURRENCY_PATTERNS: Mapping[str, tuple[re.Pattern[str], ...]] = {
    code: tuple(_indicator_pattern(i) for i in indicators)
    for code, indicators in CURRENCY_INDICATORS.items()
}

_HEADER_SCAN_ROWS: int = 15
_CURRENCY_SCAN_ROWS: int = 5
_INSTALLMENT_EPSILON = Decimal("0.01")

# (strptime format, two-digit year)
_DATE_FORMATS: tuple[tuple[str, bool], ...] = (
    ("%d/%m/%Y", False),  # dd/MM/yyyy and d/M/yyyy
    ("%d.%m.%Y", False),
    ("%Y-%m-%d", False),
    ("%m/%d/%Y", False),
    ("%d.%m.%y", True),
    ("%d/%m/%y", True),
)

_NUMERIC_JUNK_RE = re.compile(r"[^\d.\-]")


# ---- Column mapping ----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """Column indices for each semantic role (``None`` when absent).

    ``credit``/``debit`` are only populated as a pair.
    """

    date: int | None = None
    description: int | None = None
    amount: int | None = None
    amount_billing: int | None = None
    amount_transaction: int | None = None
    credit: int | None = None
    debit: int | None = None
    balance: int | None = None
    currency: int | None = None

    @property
    def uses_card_amounts(self) -> bool:
        return self.amount_billing is not None and self.amount_transaction is not None

    @property
    def has_card_amount_column(self) -> bool:
        """Either card amount column is present; positive amounts are charges."""

        return self.amount_billing is not None or self.amount_transaction is not None

    @property
    def uses_credit_debit(self) -> bool:
        return self.credit is not None and self.debit is not None


def _find_column(normalized: Sequence[str], keywords: Sequence[str]) -> int | None:
    for idx, header in enumerate(normalized):
        if any(k in header for k in keywords):
            return idx
    return None


def detect_column_mapping(headers: Sequence[Any]) -> ColumnMapping:
    """Map raw header cells to semantic roles.

    Parameters
    ----------
    headers:
        The header row cells. Non-string cells are stringified; ``None``
        becomes an empty header.

    Returns
    -------
    ColumnMapping
        First header containing a role keyword wins each role.
    """

    normalized = [("" if h is None else str(h)).strip().lower() for h in headers]

    credit = _find_column(normalized, HEURISTIC_KEYWORDS["credit"])
    debit = _find_column(normalized, HEURISTIC_KEYWORDS["debit"])
    if credit is None or debit is None:
        credit = debit = None

    return ColumnMapping(
        date=_find_column(normalized, HEURISTIC_KEYWORDS["date"]),
        description=_find_column(normalized, HEURISTIC_KEYWORDS["description"]),
        amount=_find_column(normalized, HEURISTIC_KEYWORDS["amount"]),
        amount_billing=_find_column(normalized, HEURISTIC_KEYWORDS["amount_billing"]),
        amount_transaction=_find_column(normalized, HEURISTIC_KEYWORDS["amount_transaction"]),
        credit=credit,
        debit=debit,
        balance=_find_column(normalized, HEURISTIC_KEYWORDS["balance"]),
        currency=_find_column(normalized, HEURISTIC_KEYWORDS["currency"]),
    )


def _cell_text(cell: Any) -> str:
    return "" if cell is None else str(cell)


def find_header_row(rows: Sequence[Sequence[Any]]) -> int:
    """Return the index of the row that looks most like a header.

    Scans the first 15 rows and counts keyword hits across all roles. A later
    row must score strictly higher to win; ``0`` when nothing scores.
    """

    all_keywords = [k for group in HEURISTIC_KEYWORDS.values() for k in group]
    best_score = 0
    best_index = 0
    for i, row in enumerate(rows[:_HEADER_SCAN_ROWS]):
        row_str = " ".join(_cell_text(c).lower() for c in row)
        score = sum(1 for k in all_keywords if k in row_str)
        if score > best_score:
            best_score = score
            best_index = i
    return best_index


# ---- Dates -------------------------------------------------------------------


def normalize_date(value: Any) -> str | None:
    """Normalize a date cell to ``YYYY-MM-DD``.

    ``date``/``datetime`` values are accepted directly. Strings are tried
    against a fixed ordered list of day-first formats followed by the US
    ``MM/dd/yyyy`` form; two-digit years land in 2000-2099. Returns ``None``
    for anything unparseable and never raises.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    s = str(value).strip()
    if not s:
        return None
    for fmt, two_digit in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(s, fmt).date()
        except ValueError:
            continue
        if two_digit:
            try:
                parsed = parsed.replace(year=2000 + parsed.year % 100)
            except ValueError:
                # 29 Feb in a non-leap target year
                continue
        return parsed.isoformat()
    return None


# ---- Currency ----------------------------------------------------------------


def detect_currency(text: str) -> str:
    """Return the first currency whose indicator appears in ``text``.

    Latin indicators match as whole words (optionally plural); symbols and
    Hebrew indicators match anywhere.
    """

    lowered = text.lower()
    for code, patterns in _CURRENCY_PATTERNS.items():
        if any(p.search(lowered) for p in patterns):
            return code
    return DEFAULT_CURRENCY


def detect_currency_from_data(headers: Sequence[Any], rows: Sequence[Sequence[Any]]) -> str:
    """Detect currency from headers first, then the first data rows.

    The default currency is only a fallback: the first non-default hit wins.
    """

    header_currency = detect_currency(" ".join(_cell_text(h) for h in headers))
    if header_currency != DEFAULT_CURRENCY:
        return header_currency
    for row in rows[:_CURRENCY_SCAN_ROWS]:
        row_currency = detect_currency(" ".join(_cell_text(c) for c in row))
        if row_currency != DEFAULT_CURRENCY:
            return row_currency
    return DEFAULT_CURRENCY


# ---- Amounts -----------------------------------------------------------------


def parse_amount_cell(value: Any) -> Decimal:
    """Parse a spreadsheet amount cell, returning ``0`` when unusable.

    Everything except digits, ``.`` and ``-`` is stripped first, so currency
    symbols and thousands separators are tolerated.
    """

    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
    cleaned = _NUMERIC_JUNK_RE.sub("", str(value))
    if not cleaned:
        return Decimal("0")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")


class InstallmentPolicy(enum.Enum):
    """Which card amount becomes the recorded amount for installment rows.

    Issuers report the per-cycle charge (billing) alongside the original
    purchase price (transaction). The household records what was actually
    charged this cycle by default.
    """

    BILLING_AMOUNT_WINS = "billing"
    TRANSACTION_AMOUNT_WINS = "transaction"


DEFAULT_INSTALLMENT_POLICY = InstallmentPolicy.BILLING_AMOUNT_WINS


def resolve_card_amounts(
    billing: Decimal,
    transaction: Decimal,
    *,
    policy: InstallmentPolicy = DEFAULT_INSTALLMENT_POLICY,
) -> tuple[Decimal, InstallmentInfo | None]:
    """Pick the recorded amount from a billing/transaction pair.

    A row is an installment purchase when ``|billing| > 0.01`` and
    ``|transaction| > |billing| + 0.01``; the estimated installment count is
    ``round(|transaction| / |billing|)``.
    """

    installment: InstallmentInfo | None = None
    if abs(billing) > _INSTALLMENT_EPSILON and abs(transaction) > abs(billing) + _INSTALLMENT_EPSILON:
        total = (abs(transaction) / abs(billing)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        installment = InstallmentInfo(total=int(total))

    if policy is InstallmentPolicy.TRANSACTION_AMOUNT_WINS and installment is not None:
        return transaction, installment
    return billing, installment


__all__ = [
    "HEURISTIC_KEYWORDS",
    "CURRENCY_INDICATORS",
    "DEFAULT_CURRENCY",
    "ColumnMapping",
    "detect_column_mapping",
    "find_header_row",
    "normalize_date",
    "detect_currency",
    "detect_currency_from_data",
    "parse_amount_cell",
    "InstallmentPolicy",
    "DEFAULT_INSTALLMENT_POLICY",
    "resolve_card_amounts",
]
