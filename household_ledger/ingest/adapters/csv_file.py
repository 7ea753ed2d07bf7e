"""Adapter for bank and card CSV exports.

Israeli bank exports are still commonly produced in the Windows Hebrew code
page, so decoding falls back from UTF-8 (with or without BOM) to ``cp1255``.
"""

from __future__ import annotations

import csv
import io

from ...errors import FileReadError
from ...models import ParseResult
from ..heuristics import DEFAULT_INSTALLMENT_POLICY, InstallmentPolicy
from .tabular import parse_grid

_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1255")


def _decode(data: bytes, file_name: str) -> str:
    for encoding in _ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FileReadError(f"Could not decode CSV file {file_name!r} as UTF-8 or cp1255")


def read_csv_grid(data: bytes, *, file_name: str = "<memory>") -> list[list[str]]:
    """Decode CSV bytes into a grid of string cells."""

    text = _decode(data, file_name)
    try:
        return [row for row in csv.reader(io.StringIO(text, newline=""))]
    except csv.Error as e:
        raise FileReadError(f"Failed to parse CSV {file_name!r}: {e}") from e


def parse_csv(
    file_name: str,
    data: bytes,
    *,
    policy: InstallmentPolicy = DEFAULT_INSTALLMENT_POLICY,
) -> ParseResult:
    """Parse a CSV statement into normalized transactions."""

    grid = read_csv_grid(data, file_name=file_name)
    return parse_grid(grid, file_name=file_name, source_type="csv", policy=policy)


__all__ = ["read_csv_grid", "parse_csv"]
