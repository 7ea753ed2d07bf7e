"""Adapter for PDF bank statements (Hebrew, right-to-left layouts).

Input is positioned text (see :mod:`household_ledger.ingest.pdf_text`).
Israeli bank statements lay their table out right to left, so in page
coordinates (left to right) a row reads::

    balance | income | expense | description | value date | transaction date

Three strategies are tried in order and the first that yields transactions
wins:

1. ``row_columns``: rebuild table rows by Y clustering and classify cells by
   content into dates, amounts and text.
2. ``date_anchors``: anchor on date fragments and sweep the vertical band up
   to the next date row. Tolerates descriptions that wrap onto sub-rows.
3. ``regex_sweep``: best effort over the concatenated text when the layout
   is too irregular for either positional method.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from ...logging_setup import get_logger
from ...models import ParsedTransaction, ParseResult, TransactionType
from ..heuristics import detect_currency, normalize_date
from ..pdf_text import PdfTextContent, PdfTextExtractor, PdfTextItem, extract_pdf_text

# ---- Tunables ----------------------------------------------------------------

ROW_Y_TOLERANCE: float = 0.8
_COLUMN_GAP: float = 2.0
_MAX_COLUMNS: int = 10
_BALANCE_RATIO = Decimal(5)
_ANCHOR_BAND_DEFAULT: float = 50.0
_ANCHOR_BAND_SLACK: float = 1.0
_MAX_DESCRIPTION_LEN: int = 200
_MIN_DESCRIPTION_LEN: int = 2

HEADER_MARKERS: tuple[str, ...] = ("יתרה", "תאריך", "פרטים", "חובה", "זכות")
_ANCHOR_HEADER_MARKERS: tuple[str, ...] = HEADER_MARKERS + ('סה"כ',)

_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
# Applied after thousands separators are removed.
_AMOUNT_RE = re.compile(r"^-?\d+\.?\d*$")
_HEBREW_RE = re.compile(r"[\u0590-\u05FF]")
_STANDALONE_NUMBER_RE = re.compile(r"^-?\d[\d,./\-]*$")
_GLUED_NUMBER_SUFFIX_RE = re.compile(r"(?<=[^\d\s])\d+$")

_SWEEP_DATE_RE = re.compile(r"(?<!\d)\d{2}/\d{2}/\d{4}(?!\d)")
_SWEEP_MONEY_RE = re.compile(r"(?<![\d.])-?\d{1,3}(?:,\d{3})*\.\d{2}(?!\d)|(?<![\d.,])-?\d+\.\d{2}(?!\d)")
_SWEEP_HEBREW_RUN_RE = re.compile(r"[\u0590-\u05FF][\u0590-\u05FF\s\"'׳״.\-]*")
_SWEEP_ALPHA_RUN_RE = re.compile(r"[A-Za-z][A-Za-z\s&.'\-]*")

_logger = get_logger("household_ledger.ingest.pdf")


# ---- Geometry ----------------------------------------------------------------


@dataclass(slots=True)
class TableRow:
    y: float
    items: list[PdfTextItem] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RowFields:
    """Cells of one reconstructed row, classified by content."""

    balance: Decimal | None = None
    income: Decimal | None = None
    expense: Decimal | None = None
    description: str = ""
    value_date: str | None = None
    transaction_date: str | None = None


def group_items_by_row(
    items: Sequence[PdfTextItem], tolerance: float = ROW_Y_TOLERANCE
) -> list[TableRow]:
    """Cluster fragments into rows by Y and sort each row left to right.

    A fragment joins the current row when it lies within ``tolerance`` of the
    row's first fragment; the tolerance is kept tight so adjacent
    transaction lines do not merge.
    """

    rows: list[TableRow] = []
    current: TableRow | None = None
    for item in sorted(items, key=lambda i: i.y):
        if current is None or abs(item.y - current.y) > tolerance:
            current = TableRow(y=item.y)
            rows.append(current)
        current.items.append(item)
    for row in rows:
        row.items.sort(key=lambda i: i.x)
    return rows


def detect_column_boundaries(rows: Sequence[TableRow]) -> list[float]:
    """Representative X position of each column, left to right (max 10)."""

    xs = sorted(item.x for row in rows for item in row.items)
    boundaries: list[float] = []
    last_x = -math.inf
    for x in xs:
        if x - last_x > _COLUMN_GAP:
            boundaries.append(x)
        last_x = x
    return boundaries[:_MAX_COLUMNS]


def _parse_amount_token(text: str) -> Decimal | None:
    compact = text.replace(",", "")
    if not _AMOUNT_RE.match(compact):
        return None
    try:
        return Decimal(compact)
    except InvalidOperation:
        return None


def _nearest_column(x: float, boundaries: Sequence[float]) -> int:
    best, best_dist = 0, math.inf
    for idx, b in enumerate(boundaries):
        dist = abs(x - b)
        if dist < best_dist:
            best, best_dist = idx, dist
    return best


def parse_row_by_columns(row: TableRow, boundaries: Sequence[float]) -> RowFields | None:
    """Classify a row's columns into amounts, dates and description text.

    Amounts are assigned positionally: three or more read as
    ``(balance, income, expense)``; two are a balance and an expense when one
    is at least five times the other, otherwise an income/expense pair; a
    lone amount is an expense. With two or more dates the rightmost is the
    transaction date.
    """

    if len(row.items) < 2:
        return None

    by_column: dict[int, list[str]] = {}
    for item in row.items:
        by_column.setdefault(_nearest_column(item.x, boundaries), []).append(item.text)

    amounts: list[Decimal] = []
    dates: list[str] = []
    texts: list[str] = []
    for col in sorted(by_column):
        text = " ".join(by_column[col]).strip()
        if not text:
            continue
        if _DATE_RE.match(text):
            dates.append(text)
            continue
        amount = _parse_amount_token(text)
        if amount is not None:
            amounts.append(amount)
        else:
            texts.append(text)

    balance = income = expense = None
    if len(amounts) >= 3:
        balance, income, expense = amounts[0], amounts[1], amounts[2]
    elif len(amounts) == 2:
        a, b = abs(amounts[0]), abs(amounts[1])
        if a and b and a >= b * _BALANCE_RATIO:
            balance, expense = amounts[0], amounts[1]
        elif a and b and b >= a * _BALANCE_RATIO:
            balance, expense = amounts[1], amounts[0]
        else:
            income, expense = amounts[0], amounts[1]
    elif len(amounts) == 1:
        expense = amounts[0]

    value_date = transaction_date = None
    if len(dates) >= 2:
        value_date, transaction_date = dates[0], dates[-1]
    elif dates:
        transaction_date = dates[0]

    return RowFields(
        balance=balance,
        income=income,
        expense=expense,
        description=" ".join(texts),
        value_date=value_date,
        transaction_date=transaction_date,
    )


# ---- Description cleanup -----------------------------------------------------


def clean_description(text: str) -> str:
    """Repair an extracted description.

    Standalone numeric tokens (confirmation numbers) are dropped. Runs of
    Hebrew words come out of the extractor mirrored, so each run has its
    words' characters reversed and the run's word order reversed. Other
    tokens keep their characters and position. Digits glued to the end of a
    word are stripped last.
    """

    tokens = [t for t in text.split() if not _STANDALONE_NUMBER_RE.match(t)]

    repaired: list[str] = []
    hebrew_run: list[str] = []

    def _flush() -> None:
        repaired.extend(word[::-1] for word in reversed(hebrew_run))
        hebrew_run.clear()

    for token in tokens:
        if _HEBREW_RE.search(token):
            hebrew_run.append(token)
        else:
            _flush()
            repaired.append(token)
    _flush()

    stripped = (_GLUED_NUMBER_SUFFIX_RE.sub("", t) for t in repaired)
    return " ".join(t for t in stripped if t).strip()


def _is_header(raw: str, cleaned: str, markers: Sequence[str]) -> bool:
    return any(m in raw or m in cleaned for m in markers)


def _make_transaction(
    iso_date: str, description: str, amount: Decimal, tx_type: TransactionType, currency: str
) -> ParsedTransaction:
    return ParsedTransaction(
        date=iso_date,
        merchant_raw=description[:_MAX_DESCRIPTION_LEN],
        amount=abs(amount),
        currency=currency,
        type=tx_type,
    )


# ---- Strategies --------------------------------------------------------------


class StrategyOutcome(NamedTuple):
    transactions: list[ParsedTransaction]
    rows_seen: int


class PdfStrategy(NamedTuple):
    name: str
    run: Callable[[PdfTextContent, str], StrategyOutcome]


def _resolve_row_amount(fields: RowFields) -> tuple[Decimal, TransactionType] | None:
    income = abs(fields.income) if fields.income is not None else None
    expense = abs(fields.expense) if fields.expense is not None else None
    if income and income > 0 and not expense:
        return income, "income"
    if expense and expense > 0:
        return expense, "expense"
    return None


def _row_column_strategy(content: PdfTextContent, currency: str) -> StrategyOutcome:
    rows = group_items_by_row(content.items)
    boundaries = detect_column_boundaries(rows)

    out: list[ParsedTransaction] = []
    skipped = {"no_date": 0, "header": 0, "no_amount": 0, "short_description": 0}
    for row in rows:
        fields = parse_row_by_columns(row, boundaries)
        if fields is None:
            continue
        date_str = fields.transaction_date or fields.value_date
        iso_date = normalize_date(date_str) if date_str else None
        if iso_date is None:
            skipped["no_date"] += 1
            continue
        description = clean_description(fields.description)
        if _is_header(fields.description, description, HEADER_MARKERS):
            skipped["header"] += 1
            continue
        resolved = _resolve_row_amount(fields)
        if resolved is None:
            skipped["no_amount"] += 1
            continue
        if len(description) < _MIN_DESCRIPTION_LEN:
            skipped["short_description"] += 1
            continue
        amount, tx_type = resolved
        out.append(_make_transaction(iso_date, description, amount, tx_type, currency))

    _logger.info(
        "pdf_parse:row_columns rows=%d columns=%d extracted=%d skipped_no_date=%d "
        "skipped_header=%d skipped_no_amount=%d skipped_short=%d",
        len(rows),
        len(boundaries),
        len(out),
        skipped["no_date"],
        skipped["header"],
        skipped["no_amount"],
        skipped["short_description"],
    )
    return StrategyOutcome(out, len(rows))


def _round_half(y: float) -> float:
    return math.floor(y * 2 + 0.5) / 2


def _resolve_anchor_amount(amounts: Sequence[Decimal]) -> tuple[Decimal, TransactionType]:
    if len(amounts) >= 3:
        balance = max(amounts, key=abs)
        others = [a for a in amounts if a != balance]
        if len(others) >= 2:
            if others[0] > 0 and others[1] == 0:
                return others[0], "income"
            if others[1] > 0:
                return others[1], "expense"
            return (others[0] or others[1]), "expense"
        if len(others) == 1:
            return others[0], "expense"
        return Decimal("0"), "expense"
    if len(amounts) == 2:
        a, b = amounts
        if abs(a) > abs(b) * _BALANCE_RATIO:
            return b, "expense"
        if a > 0:
            return a, ("income" if b == 0 else "expense")
        return b, "expense"
    return amounts[0], "expense"


def _date_anchor_strategy(content: PdfTextContent, currency: str) -> StrategyOutcome:
    items = content.items
    groups: dict[float, list[PdfTextItem]] = {}
    for item in items:
        if _DATE_RE.match(item.text.strip()):
            groups.setdefault(_round_half(item.y), []).append(item)
    if not groups:
        return StrategyOutcome([], 0)

    ys = sorted(groups)
    out: list[ParsedTransaction] = []
    for idx, cur_y in enumerate(ys):
        next_y = ys[idx + 1] if idx + 1 < len(ys) else cur_y + _ANCHOR_BAND_DEFAULT
        band = sorted(
            (i for i in items if cur_y - _ANCHOR_BAND_SLACK <= i.y < next_y - _ANCHOR_BAND_SLACK),
            key=lambda i: i.x,
        )

        amounts: list[Decimal] = []
        texts: list[str] = []
        for item in band:
            text = item.text.strip()
            if _DATE_RE.match(text):
                continue
            amount = _parse_amount_token(text)
            if amount is not None:
                amounts.append(amount)
            elif len(text) > 1:
                texts.append(text)
        if not amounts:
            continue

        raw_description = " ".join(texts)
        description = clean_description(raw_description)
        if _is_header(raw_description, description, _ANCHOR_HEADER_MARKERS):
            continue

        amount, tx_type = _resolve_anchor_amount(amounts)
        if amount <= 0:
            continue
        row_dates = sorted(groups[cur_y], key=lambda i: i.x)
        iso_date = normalize_date(row_dates[-1].text.strip())
        if iso_date is None or len(description) < _MIN_DESCRIPTION_LEN:
            continue
        out.append(_make_transaction(iso_date, description, amount, tx_type, currency))

    _logger.info("pdf_parse:date_anchors date_rows=%d extracted=%d", len(ys), len(out))
    return StrategyOutcome(out, len(ys))


class _DateCluster(NamedTuple):
    start: int
    end: int
    dates: list[str]


def _date_clusters(text: str) -> list[_DateCluster]:
    clusters: list[_DateCluster] = []
    for m in _SWEEP_DATE_RE.finditer(text):
        if clusters and not text[clusters[-1].end : m.start()].strip():
            prev = clusters[-1]
            clusters[-1] = _DateCluster(prev.start, m.end(), [*prev.dates, m.group(0)])
        else:
            clusters.append(_DateCluster(m.start(), m.end(), [m.group(0)]))
    return clusters


def _sweep_description(span: str) -> str:
    hebrew = _SWEEP_HEBREW_RUN_RE.search(span)
    if hebrew:
        return clean_description(hebrew.group(0))
    alpha = _SWEEP_ALPHA_RUN_RE.search(span)
    return alpha.group(0).strip() if alpha else ""


def _regex_sweep_strategy(content: PdfTextContent, currency: str) -> StrategyOutcome:
    text = content.text
    clusters = _date_clusters(text)
    out: list[ParsedTransaction] = []
    for idx, cluster in enumerate(clusters):
        span_end = clusters[idx + 1].start if idx + 1 < len(clusters) else len(text)
        span = text[cluster.end : span_end]

        values = sorted(
            (abs(Decimal(tok.replace(",", ""))) for tok in _SWEEP_MONEY_RE.findall(span)),
            reverse=True,
        )
        if not values:
            continue
        if len(values) == 1:
            amount = values[0]
        else:
            balance, rest = values[0], values[1:]
            below_half = [v for v in rest if v < balance / 2]
            if not below_half:
                continue
            amount = below_half[0]
        if amount <= 0:
            continue

        iso_date = normalize_date(cluster.dates[-1])
        description = _sweep_description(span)
        if iso_date is None or len(description) < _MIN_DESCRIPTION_LEN:
            continue
        if _is_header(description, description, _ANCHOR_HEADER_MARKERS):
            continue
        out.append(_make_transaction(iso_date, description, amount, "expense", currency))

    _logger.info("pdf_parse:regex_sweep clusters=%d extracted=%d", len(clusters), len(out))
    return StrategyOutcome(out, len(clusters))


PDF_STRATEGIES: tuple[PdfStrategy, ...] = (
    PdfStrategy("row_columns", _row_column_strategy),
    PdfStrategy("date_anchors", _date_anchor_strategy),
    PdfStrategy("regex_sweep", _regex_sweep_strategy),
)


# ---- Entry points ------------------------------------------------------------


def parse_pdf_content(
    file_name: str,
    content: PdfTextContent,
    *,
    strategies: Sequence[PdfStrategy] = PDF_STRATEGIES,
) -> ParseResult:
    """Run the strategy chain over already-extracted PDF text.

    ``total_rows`` reports the rows the winning strategy examined, or the
    first strategy's count when none produced transactions.
    """

    if not content.text.strip():
        _logger.warning("pdf_parse:empty_text file=%s", file_name)
        return ParseResult.empty(file_name, "pdf")

    currency = detect_currency(content.text)
    first_rows_seen: int | None = None
    for strategy in strategies:
        outcome = strategy.run(content, currency)
        if first_rows_seen is None:
            first_rows_seen = outcome.rows_seen
        if outcome.transactions:
            _logger.info(
                "pdf_parse:strategy_done file=%s strategy=%s transactions=%d currency=%s",
                file_name,
                strategy.name,
                len(outcome.transactions),
                currency,
            )
            return ParseResult(
                file_name=file_name,
                source_type="pdf",
                transactions=tuple(outcome.transactions),
                total_rows=outcome.rows_seen,
                valid_rows=len(outcome.transactions),
                error_rows=0,
            )

    _logger.warning("pdf_parse:no_transactions file=%s", file_name)
    return ParseResult(file_name=file_name, source_type="pdf", total_rows=first_rows_seen or 0)


def parse_pdf(
    file_name: str,
    data: bytes,
    *,
    extractor: PdfTextExtractor = extract_pdf_text,
) -> ParseResult:
    """Extract positioned text from ``data`` and parse it."""

    return parse_pdf_content(file_name, extractor(data))


__all__ = [
    "ROW_Y_TOLERANCE",
    "HEADER_MARKERS",
    "TableRow",
    "RowFields",
    "group_items_by_row",
    "detect_column_boundaries",
    "parse_row_by_columns",
    "clean_description",
    "StrategyOutcome",
    "PdfStrategy",
    "PDF_STRATEGIES",
    "parse_pdf_content",
    "parse_pdf",
]
