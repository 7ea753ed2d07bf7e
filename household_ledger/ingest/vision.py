"""Screenshot classifier collaborator (OpenAI Responses API).

The image adapter depends only on the :class:`VisionClassifier` protocol;
:class:`OpenAIVisionClassifier` is the default implementation. The payload
it returns is untrusted and re-validated by the adapter.

Environment
-----------
- ``OPENAI_API_KEY``: read by the OpenAI SDK.
- ``HOUSEHOLD_LEDGER_VISION_MODEL``: model override (default ``gpt-4o-mini``).
"""

from __future__ import annotations

import json
import os
import re
import time
from collections.abc import Mapping
from typing import Any, Protocol

from openai import OpenAI, OpenAIError

from ..errors import ClassifierError
from ..logging_setup import get_logger

_DEFAULT_MODEL: str = "gpt-4o-mini"
_MODEL_ENV_VAR = "HOUSEHOLD_LEDGER_VISION_MODEL"
_CODE_FENCE_RE = re.compile(r"```(?:json)?")

_logger = get_logger("household_ledger.ingest.vision")

SCREENSHOT_PROMPT = """\
Analyze this screenshot of a payment app transaction list (BIT, Paybox, or a bank app).
Extract every visible transaction into a JSON array.

For each transaction return:
- date: string, normalized to YYYY-MM-DD. Infer the year from context when it is missing.
  Hebrew month abbreviations: ינו=Jan, פבר=Feb, מרץ=Mar, אפר=Apr, מאי=May, יונ=Jun,
  יול=Jul, אוג=Aug, ספט=Sep, אוק=Oct, נוב=Nov, דצמ=Dec.
- merchant: string, the display name shown for the transaction.
- amount: number, positive, without a currency symbol.
- direction: "sent", "received" or "withdrawal" (money moved from the app to a bank
  account). Use arrows, colors and Hebrew labels such as שליחה/שלחת/קבלה/קיבלת/משיכה.
- type: "expense" when sent, "income" when received.
- currency: ISO code when shown, otherwise omit.
- p2p_counterparty: the person or business on the other side, e.g. "יוסי כהן".
- p2p_memo: the note attached to the payment, or null. Keep Hebrew text and emojis as shown.

Return ONLY the raw JSON array. No markdown, no code blocks.
"""


class VisionClassifier(Protocol):
    """Turns a base64 image into loosely-typed transaction records."""

    def classify(self, image_b64: str, mime_type: str) -> list[Mapping[str, Any]]: ...


def _create_client() -> OpenAI:
    return OpenAI()


def _response_text(resp: Any) -> str:
    text: str | None = getattr(resp, "output_text", None)
    if not text:
        first = resp.output[0] if getattr(resp, "output", None) else None
        content = getattr(first, "content", None)
        if content:
            maybe = getattr(content[0], "text", None)
            text = maybe if isinstance(maybe, str) else getattr(maybe, "value", None)
    if not text or not isinstance(text, str):
        raise ClassifierError("Unexpected Responses API shape; unable to locate text output")
    return text


def decode_records(text: str) -> list[Mapping[str, Any]]:
    """Decode the classifier's JSON array, tolerating markdown code fences.

    A top-level object with a ``transactions`` array is accepted as well.
    Non-mapping elements are discarded.
    """

    cleaned = _CODE_FENCE_RE.sub("", text).strip()
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassifierError("Classifier output was not valid JSON") from e
    if isinstance(decoded, Mapping):
        decoded = decoded.get("transactions")
    if not isinstance(decoded, list):
        raise ClassifierError("Classifier output was not a JSON array")
    return [item for item in decoded if isinstance(item, Mapping)]


class OpenAIVisionClassifier:
    """:class:`VisionClassifier` backed by the OpenAI Responses API.

    Parameters
    ----------
    client:
        Optional pre-built client (tests pass a stub). Created lazily.
    model:
        Model name; defaults to ``HOUSEHOLD_LEDGER_VISION_MODEL`` or
        ``gpt-4o-mini``.
    """

    def __init__(self, *, client: Any | None = None, model: str | None = None) -> None:
        self._client = client
        self._model = model or os.getenv(_MODEL_ENV_VAR) or _DEFAULT_MODEL

    def classify(self, image_b64: str, mime_type: str) -> list[Mapping[str, Any]]:
        if self._client is None:
            self._client = _create_client()

        t0 = time.perf_counter()
        try:
            resp = self._client.responses.create(
                model=self._model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": SCREENSHOT_PROMPT},
                            {
                                "type": "input_image",
                                "image_url": f"data:{mime_type};base64,{image_b64}",
                            },
                        ],
                    }
                ],
            )
        except OpenAIError as e:
            _logger.error("vision:request_failed model=%s error=%s", self._model, e)
            raise ClassifierError(f"Vision classifier request failed: {e}") from e

        records = decode_records(_response_text(resp))
        _logger.info(
            "vision:classified model=%s records=%d latency_ms=%.2f",
            self._model,
            len(records),
            (time.perf_counter() - t0) * 1000.0,
        )
        return records


__all__ = [
    "SCREENSHOT_PROMPT",
    "VisionClassifier",
    "OpenAIVisionClassifier",
    "decode_records",
]
