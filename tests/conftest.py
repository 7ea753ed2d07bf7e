"""Pytest configuration for test isolation.

The database client keeps a process-wide engine bound to the first URL it
sees, and several code paths read configuration from the environment. To
keep tests hermetic, an autouse fixture clears the relevant variables and
disposes the shared engine and any logging handler around every test.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from household_ledger.db.client import reset_engine
from household_ledger.logging_setup import reset_logging

_ISOLATED_ENV_VARS = (
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "HOUSEHOLD_LEDGER_VISION_MODEL",
    "HOUSEHOLD_LEDGER_HOUSEHOLD_ID",
    "HOUSEHOLD_LEDGER_LOG_LEVEL",
    "HOUSEHOLD_LEDGER_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start each test without ambient configuration or a cached engine."""

    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_engine()
    yield
    reset_engine()
    reset_logging()
