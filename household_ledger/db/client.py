"""Engine and session helpers for the ledger database.

The ledger runs on PostgreSQL in production and on a SQLite file for local
use and tests. ``DATABASE_URL`` (or an explicit ``database_url``) selects the
backend; SQLite connections get foreign keys switched on and a ``now()``
function so the ``server_default=now()`` columns work on both.

Usage
-----
from household_ledger.db.client import session_scope

with session_scope() as s:
    run_p2p_reconciliation(s, household_id)
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from ..logging_setup import get_logger

_logger = get_logger("household_ledger.db.client")

_ENGINE: Engine | None = None
_SESSION_MAKER: sessionmaker[Session] | None = None
_DB_URL: str | None = None


def _database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot open the ledger database")
    return url


def _sqlite_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _prepare_sqlite_connection(dbapi_conn, _record) -> None:
    dbapi_conn.execute("PRAGMA foreign_keys = ON")
    dbapi_conn.create_function("now", 0, _sqlite_now)


def _create_engine(url: str) -> Engine:
    backend = make_url(url).get_backend_name()
    engine = create_engine(url, pool_pre_ping=True)
    if backend == "sqlite":
        event.listen(engine, "connect", _prepare_sqlite_connection)
    _logger.debug("db:engine_created backend=%s", backend)
    return engine


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the process-wide engine, creating it on first use.

    A second call with a different URL raises ``RuntimeError`` until
    ``reset_engine`` is called.
    """

    global _ENGINE, _SESSION_MAKER, _DB_URL
    url = _database_url(database_url)
    if _ENGINE is None:
        _ENGINE = _create_engine(url)
        _SESSION_MAKER = sessionmaker(bind=_ENGINE, expire_on_commit=False, class_=Session)
        _DB_URL = url
        return _ENGINE
    if url != _DB_URL:
        raise RuntimeError(
            "Ledger database already opened with a different URL; call reset_engine() first"
        )
    return _ENGINE


def reset_engine() -> None:
    """Dispose the shared engine so the next call may bind a different URL."""

    global _ENGINE, _SESSION_MAKER, _DB_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None
    _DB_URL = None


def get_session(*, database_url: str | None = None) -> Session:
    get_engine(database_url=database_url)
    assert _SESSION_MAKER is not None  # bound by get_engine
    return _SESSION_MAKER()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error.

    Objects stay readable after the scope closes (``expire_on_commit=False``).
    """

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        _logger.warning("db:rollback error=%s", type(e).__name__)
        raise
    finally:
        session.close()


__all__ = [
    "get_engine",
    "reset_engine",
    "get_session",
    "session_scope",
]
