"""Adapter for ``.xlsx`` statements via ``openpyxl``.

Only the first worksheet is read. Cells come back typed (``datetime`` for
date cells, numbers for amounts), which the heuristics accept directly.
Legacy binary ``.xls`` workbooks are not readable by ``openpyxl`` and surface
as :class:`~household_ledger.errors.FileReadError`.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ...errors import FileReadError
from ...models import ParseResult
from ..heuristics import DEFAULT_INSTALLMENT_POLICY, InstallmentPolicy
from .tabular import parse_grid


def read_excel_grid(data: bytes, *, file_name: str = "<memory>") -> list[tuple[Any, ...]]:
    """Return the first worksheet's rows as tuples of cell values."""

    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise FileReadError(f"Could not open workbook {file_name!r}: {e}") from e
    try:
        if not wb.sheetnames:
            return []
        ws = wb[wb.sheetnames[0]]
        return [tuple(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def parse_excel(
    file_name: str,
    data: bytes,
    *,
    policy: InstallmentPolicy = DEFAULT_INSTALLMENT_POLICY,
) -> ParseResult:
    """Parse the first worksheet of an Excel statement."""

    grid = read_excel_grid(data, file_name=file_name)
    return parse_grid(grid, file_name=file_name, source_type="excel", policy=policy)


__all__ = ["read_excel_grid", "parse_excel"]
