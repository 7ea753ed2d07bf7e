"""Shared grid-to-transactions logic for CSV and Excel statements.

Both adapters read their file into an untyped grid (list of rows of cells)
and delegate here. Blank rows are dropped before header detection, matching
how spreadsheet exports pad their preambles.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any

from ...logging_setup import get_logger
from ...models import InstallmentInfo, ParsedTransaction, ParseResult, SourceType
from ..heuristics import (
    DEFAULT_INSTALLMENT_POLICY,
    ColumnMapping,
    InstallmentPolicy,
    detect_column_mapping,
    detect_currency_from_data,
    find_header_row,
    normalize_date,
    parse_amount_cell,
    resolve_card_amounts,
)

UNKNOWN_MERCHANT = "Unknown Merchant"

_logger = get_logger("household_ledger.ingest.tabular")


def _is_blank(row: Sequence[Any]) -> bool:
    return all(c is None or str(c).strip() == "" for c in row)


def _cell(row: Sequence[Any], idx: int | None) -> Any:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _row_amount(
    row: Sequence[Any], mapping: ColumnMapping, policy: InstallmentPolicy
) -> tuple[Decimal, InstallmentInfo | None]:
    """Signed amount for a row using the first populated strategy."""

    if mapping.uses_card_amounts:
        return resolve_card_amounts(
            parse_amount_cell(_cell(row, mapping.amount_billing)),
            parse_amount_cell(_cell(row, mapping.amount_transaction)),
            policy=policy,
        )
    if mapping.uses_credit_debit:
        credit = parse_amount_cell(_cell(row, mapping.credit))
        debit = parse_amount_cell(_cell(row, mapping.debit))
        if credit > 0:
            return credit, None
        if debit > 0:
            return -debit, None
        return Decimal("0"), None
    return parse_amount_cell(_cell(row, mapping.amount)), None


def _description(row: Sequence[Any], mapping: ColumnMapping) -> str:
    if mapping.description is None:
        return UNKNOWN_MERCHANT
    raw = _cell(row, mapping.description)
    text = "" if raw is None else str(raw).strip()
    return text or UNKNOWN_MERCHANT


def parse_grid(
    grid: Iterable[Sequence[Any]],
    *,
    file_name: str,
    source_type: SourceType,
    policy: InstallmentPolicy = DEFAULT_INSTALLMENT_POLICY,
) -> ParseResult:
    """Turn a statement grid into a :class:`ParseResult`.

    Parameters
    ----------
    grid:
        Rows of raw cells. Cells may be strings, numbers, dates or ``None``.
    file_name, source_type:
        Carried onto the result.
    policy:
        Installment policy for billing/transaction amount pairs.

    Notes
    -----
    - Type inference follows the mapping shape. With either card amount
      column a positive amount is an expense (card convention); otherwise a
      negative amount is an expense and anything else is income (bank
      convention).
    - Rows whose date cell does not normalize are dropped and counted in
      ``error_rows``.
    """

    rows = [list(r) for r in grid if not _is_blank(r)]
    if not rows:
        return ParseResult.empty(file_name, source_type)

    header_idx = find_header_row(rows)
    headers = ["" if h is None else str(h) for h in rows[header_idx]]
    mapping = detect_column_mapping(headers)
    data_rows = rows[header_idx + 1 :]
    currency = detect_currency_from_data(headers, data_rows)

    _logger.debug(
        "tabular:header file=%s header_row=%d mapping=%s currency=%s",
        file_name,
        header_idx,
        mapping,
        currency,
    )

    out: list[ParsedTransaction] = []
    errors = 0
    for row in data_rows:
        iso_date = normalize_date(_cell(row, mapping.date))
        if iso_date is None:
            errors += 1
            continue

        amount, installment = _row_amount(row, mapping, policy)
        if mapping.has_card_amount_column:
            tx_type = "expense" if amount > 0 else "income"
        else:
            tx_type = "income" if amount >= 0 else "expense"

        out.append(
            ParsedTransaction(
                date=iso_date,
                merchant_raw=_description(row, mapping),
                amount=abs(amount),
                currency=currency,
                type=tx_type,
                is_installment=installment is not None,
                installment_info=installment,
            )
        )

    _logger.info(
        "tabular:parsed file=%s source=%s total_rows=%d valid=%d errors=%d",
        file_name,
        source_type,
        len(rows),
        len(out),
        errors,
    )
    return ParseResult(
        file_name=file_name,
        source_type=source_type,
        transactions=tuple(out),
        total_rows=len(rows),
        valid_rows=len(out),
        error_rows=errors,
    )


__all__ = ["UNKNOWN_MERCHANT", "parse_grid"]
