"""Parser for Israeli credit-card SMS charge notifications.

Each issuer words its notification differently, so extraction is a table of
per-provider regular expressions. The result carries a confidence score; a
receipt is considered valid once it has at least a card ending and an
amount (score >= 70).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Literal, NamedTuple

from ...logging_setup import get_logger
from ...models import ParsedTransaction, ParseResult
from ..heuristics import DEFAULT_CURRENCY

type CardProvider = Literal["isracard", "cal", "max", "leumi", "unknown"]

SMS_TRIGGERS: tuple[str, ...] = (
    "אושרה עסקה",
    "בוצעה עסקה",
    "עסקה אושרה",
    "בוצע חיוב",
    "חיוב בכרטיס",
)

_VALID_THRESHOLD: int = 70

_logger = get_logger("household_ledger.ingest.sms")


class _ProviderPatterns(NamedTuple):
    card_ending: re.Pattern[str]
    amount: re.Pattern[str]
    merchant: re.Pattern[str]
    date: re.Pattern[str] | None = None


_PATTERNS: dict[str, _ProviderPatterns] = {
    "isracard": _ProviderPatterns(
        card_ending=re.compile(r"בכרטיסך(?:\s+המסתיים\s+ב-)?\s*(\d{4})"),
        amount=re.compile(r"בסך\s+([\d,]+\.?\d*)\s*(ש\"ח|ILS)?"),
        merchant=re.compile(r"ב-?([^.]+?)(?:\s*\.|\s*למידע|$)"),
        date=re.compile(r"ב-?\s*(\d{1,2})/(\d{1,2})"),
    ),
    "cal": _ProviderPatterns(
        card_ending=re.compile(r"\*(\d{4})"),
        amount=re.compile(r"בסך\s+([\d,]+\.?\d*)\s*ש\"ח"),
        merchant=re.compile(r"ב-([^*]+?)(?:\s*\*|\s*$)"),
        date=re.compile(r"(\d{1,2})/(\d{1,2})"),
    ),
    "max": _ProviderPatterns(
        card_ending=re.compile(r"\*(\d{4})"),
        amount=re.compile(r"בסך\s+([\d,]+\.?\d*)\s*ש\"ח"),
        merchant=re.compile(r"ב([^*]+?)\s*\*"),
    ),
    "leumi": _ProviderPatterns(
        card_ending=re.compile(r"כרטיס\s*(\d{4})"),
        amount=re.compile(r"([\d,]+\.?\d*)\s*ש\"ח"),
        merchant=re.compile(r"ש\"ח\s*-\s*(.+?)(?:\s*$|\s*\.)"),
    ),
    "unknown": _ProviderPatterns(
        card_ending=re.compile(r"(\d{4})"),
        amount=re.compile(r"([\d,]+\.?\d*)\s*(ש\"ח|ILS)"),
        merchant=re.compile(r"ב-?([א-ת\w\s.\-]+)"),
    ),
}

_FOREIGN_CURRENCY: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"USD|\$"), "USD"),
    (re.compile(r"EUR|€"), "EUR"),
    (re.compile(r"GBP|£"), "GBP"),
)


@dataclass(frozen=True, slots=True)
class ParsedSmsReceipt:
    is_valid: bool
    card_ending: str | None
    merchant_name: str | None
    amount: Decimal | None
    currency: str
    transaction_date: str | None
    provider: CardProvider
    raw_message: str
    confidence: int


def is_credit_card_sms(text: str) -> bool:
    return any(trigger in text for trigger in SMS_TRIGGERS)


def detect_provider(text: str) -> CardProvider:
    lower = text.lower()
    if "isracard" in lower or "בכרטיסך" in text:
        return "isracard"
    if "cal" in lower or "ויזה כאל" in text or "כאל" in text:
        return "cal"
    if "max" in lower or "מקס" in text:
        return "max"
    if "לאומי קארד" in text or "לאומי card" in text or "leumi" in lower:
        return "leumi"
    return "unknown"


def _parse_amount(raw: str) -> Decimal | None:
    try:
        return Decimal(raw.replace(",", "").strip())
    except InvalidOperation:
        return None


def _infer_date(day: str, month: str, today: date) -> str | None:
    d, m = int(day), int(month)
    year = today.year - 1 if m > today.month else today.year
    try:
        return date(year, m, d).isoformat()
    except ValueError:
        return None


def _clean_merchant(raw: str) -> str | None:
    cleaned = re.sub(r"[\s.]+$", "", raw.strip())
    cleaned = re.sub(r"\s*למידע.*$", "", cleaned)
    cleaned = re.sub(r"\s*לפרטים.*$", "", cleaned).strip()
    return cleaned or None


def parse_sms(text: str, *, today: date | None = None) -> ParsedSmsReceipt:
    """Parse one SMS notification.

    Parameters
    ----------
    text:
        Raw message body.
    today:
        Reference date for year inference and the missing-date fallback.
        Notifications carry ``DD/MM`` only; a month later than ``today``'s
        belongs to the previous year.
    """

    ref = today or date.today()
    body = text.strip()
    if not is_credit_card_sms(body):
        _logger.info("sms_parse:not_card_sms length=%d", len(body))
        return ParsedSmsReceipt(
            is_valid=False,
            card_ending=None,
            merchant_name=None,
            amount=None,
            currency=DEFAULT_CURRENCY,
            transaction_date=None,
            provider="unknown",
            raw_message=body,
            confidence=0,
        )

    provider = detect_provider(body)
    patterns = _PATTERNS[provider]

    card_match = patterns.card_ending.search(body)
    card_ending = card_match.group(1) if card_match else None

    amount_match = patterns.amount.search(body)
    amount = _parse_amount(amount_match.group(1)) if amount_match else None

    currency = DEFAULT_CURRENCY
    for pattern, code in _FOREIGN_CURRENCY:
        if pattern.search(body):
            currency = code
            break

    tx_date: str | None = None
    if patterns.date is not None:
        date_match = patterns.date.search(body)
        if date_match:
            tx_date = _infer_date(date_match.group(1), date_match.group(2), ref)
    if tx_date is None:
        tx_date = ref.isoformat()

    merchant: str | None = None
    merchant_match = patterns.merchant.search(body)
    if merchant_match:
        merchant = _clean_merchant(merchant_match.group(1))
    if not merchant and re.search(r"BIT|ביט", body):
        merchant = "BIT Transfer" if re.search(r"העברה\s*ב\s*BIT", body, re.IGNORECASE) else "BIT"

    confidence = (
        (30 if card_ending else 0)
        + (40 if amount is not None else 0)
        + (20 if merchant else 0)
        + (10 if tx_date else 0)
    )

    _logger.info(
        "sms_parse:done provider=%s card_ending=%s amount=%s confidence=%d",
        provider,
        card_ending,
        amount,
        confidence,
    )
    return ParsedSmsReceipt(
        is_valid=confidence >= _VALID_THRESHOLD,
        card_ending=card_ending,
        merchant_name=merchant,
        amount=amount,
        currency=currency,
        transaction_date=tx_date,
        provider=provider,
        raw_message=body,
        confidence=confidence,
    )


def sms_to_parsed_transaction(receipt: ParsedSmsReceipt) -> ParsedTransaction | None:
    """Convert a valid receipt into an expense candidate; ``None`` otherwise."""

    if not receipt.is_valid or receipt.amount is None or receipt.transaction_date is None:
        return None
    return ParsedTransaction(
        date=receipt.transaction_date,
        merchant_raw=receipt.merchant_name or "Unknown Merchant",
        amount=abs(receipt.amount),
        currency=receipt.currency,
        type="expense",
        confidence=receipt.confidence / 100,
    )


def parse_sms_batch(
    messages: Iterable[str], *, name: str = "sms", today: date | None = None
) -> ParseResult:
    """Parse a batch of notifications into a :class:`ParseResult`.

    Messages that are not card notifications, or lack a card ending and
    amount, count as error rows.
    """

    out: list[ParsedTransaction] = []
    total = 0
    for message in messages:
        total += 1
        tx = sms_to_parsed_transaction(parse_sms(message, today=today))
        if tx is not None:
            out.append(tx)
    return ParseResult(
        file_name=name,
        source_type="sms",
        transactions=tuple(out),
        total_rows=total,
        valid_rows=len(out),
        error_rows=total - len(out),
    )


__all__ = [
    "CardProvider",
    "SMS_TRIGGERS",
    "ParsedSmsReceipt",
    "is_credit_card_sms",
    "detect_provider",
    "parse_sms",
    "sms_to_parsed_transaction",
    "parse_sms_batch",
]
