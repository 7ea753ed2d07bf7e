"""db: storage layer for ``household_ledger`` (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``household_ledger.db.models`` (re-exported for convenience)
- Engine/session helpers in ``household_ledger.db.client``
"""

from __future__ import annotations

from .models import Base, Household, LedgerTransaction, MerchantMemory

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "Household",
    "LedgerTransaction",
    "MerchantMemory",
]
