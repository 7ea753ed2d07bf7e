"""Logging for ``household_ledger``.

Library modules log through ``get_logger("household_ledger.<module>")`` and
never attach handlers. Entry points (the CLI) call ``configure_logging``
once. Events are written as ``area:event key=value`` so imports and
reconciliation runs can be grepped by household, file or strategy.

Environment
-----------
``HOUSEHOLD_LEDGER_LOG_LEVEL``
    Level name or number used when ``configure_logging`` gets no level.
``HOUSEHOLD_LEDGER_LOG_FORMAT``
    Format string used when ``configure_logging`` gets no ``fmt``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "household_ledger"
_LEVEL_ENV_VAR = "HOUSEHOLD_LEDGER_LOG_LEVEL"
_FORMAT_ENV_VAR = "HOUSEHOLD_LEDGER_LOG_FORMAT"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# pdfplumber (through pdfminer) and the OpenAI HTTP client log every page and
# request at INFO/DEBUG; they are held at WARNING unless we run at DEBUG.
_NOISY_LIBRARY_LOGGERS = ("pdfminer", "httpx", "httpcore", "openai")

_handler: logging.Handler | None = None


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(_LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    numeric = logging.getLevelName(name)
    if isinstance(numeric, int):
        return numeric
    raise ValueError(f"Unknown log level: {level!r}")


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach the package handler and quiet the parsing/HTTP libraries.

    Parameters
    ----------
    level:
        Level for the package logger. Defaults to ``HOUSEHOLD_LEDGER_LOG_LEVEL``
        and then ``INFO``. Unknown level names raise ``ValueError``.
    fmt:
        Record format; defaults to ``HOUSEHOLD_LEDGER_LOG_FORMAT`` and then
        ``"%(asctime)s %(name)s %(levelname)s %(message)s"``.
    stream:
        Destination of the single ``StreamHandler``.

    Returns
    -------
    logging.Logger
        The ``household_ledger`` package logger. Calling again after a
        successful configuration is a no-op.
    """

    global _handler
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is not None:
        return logger

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or os.getenv(_FORMAT_ENV_VAR) or _DEFAULT_FORMAT))

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False

    library_level = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    _handler = handler
    return logger


def reset_logging() -> None:
    """Detach the handler installed by ``configure_logging``."""

    global _handler
    if _handler is None:
        return
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    logger.removeHandler(_handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    _handler = None


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if _handler is None and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "reset_logging"]
