"""Adapter for wallet-app screenshots (BIT, Paybox).

Extraction is delegated to a :class:`~household_ledger.ingest.vision.VisionClassifier`.
This module only validates and normalizes the classifier's records; invalid
records are dropped and counted. Classifier failures abort the file.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from ...errors import ClassifierError
from ...logging_setup import get_logger
from ...models import P2PDirection, ParsedTransaction, ParseResult, VisionRecord
from ..heuristics import DEFAULT_CURRENCY, normalize_date
from ..vision import OpenAIVisionClassifier, VisionClassifier

UNKNOWN_COUNTERPARTY = "Unknown"

_DIRECTIONS: frozenset[str] = frozenset({"sent", "received", "withdrawal"})

_logger = get_logger("household_ledger.ingest.image")


def normalize_vision_record(raw: Mapping[str, Any]) -> ParsedTransaction | None:
    """Validate one classifier record; ``None`` when it is unusable.

    A record needs a parseable date and a numeric amount. Income is inferred
    from ``type == "income"`` or ``direction == "received"``; a missing
    direction is derived from the type.
    """

    try:
        rec = VisionRecord.model_validate(dict(raw))
    except ValidationError:
        return None

    iso_date = normalize_date(rec.date)
    if iso_date is None or rec.amount is None:
        return None

    direction: P2PDirection | None = rec.direction if rec.direction in _DIRECTIONS else None  # type: ignore[assignment]
    is_income = rec.type == "income" or direction == "received"
    if direction is None:
        direction = "received" if is_income else "sent"

    counterparty = (rec.p2p_counterparty or "").strip() or None
    merchant = (rec.merchant or "").strip() or counterparty or UNKNOWN_COUNTERPARTY
    currency = (rec.currency or "").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        currency = DEFAULT_CURRENCY

    return ParsedTransaction(
        date=iso_date,
        merchant_raw=merchant,
        amount=abs(rec.amount),
        currency=currency,
        type="income" if is_income else "expense",
        p2p_direction=direction,
        p2p_counterparty=counterparty or merchant,
        p2p_memo=(rec.p2p_memo or "").strip() or None,
    )


def parse_image(
    file_name: str,
    data: bytes,
    mime_type: str,
    *,
    classifier: VisionClassifier | None = None,
) -> ParseResult:
    """Classify a screenshot and normalize the returned records.

    Raises
    ------
    ClassifierError
        When the classifier fails; nothing is returned for the file.
    """

    active = classifier if classifier is not None else OpenAIVisionClassifier()
    image_b64 = base64.b64encode(data).decode("ascii")
    try:
        records = active.classify(image_b64, mime_type)
    except ClassifierError:
        raise
    except Exception as e:
        raise ClassifierError(f"Vision classifier failed for {file_name!r}: {e}") from e

    out: list[ParsedTransaction] = []
    errors = 0
    for raw in records:
        tx = normalize_vision_record(raw)
        if tx is None:
            errors += 1
            continue
        out.append(tx)

    _logger.info(
        "image_parse:done file=%s records=%d valid=%d errors=%d",
        file_name,
        len(records),
        len(out),
        errors,
    )
    return ParseResult(
        file_name=file_name,
        source_type="screenshot",
        transactions=tuple(out),
        total_rows=len(records),
        valid_rows=len(out),
        error_rows=errors,
    )


__all__ = ["UNKNOWN_COUNTERPARTY", "normalize_vision_record", "parse_image"]
