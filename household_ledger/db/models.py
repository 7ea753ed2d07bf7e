from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


# ---------------------------
# Tenancy: households
# ---------------------------


class Household(Base):
    __tablename__ = "households"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


# ---------------------------
# Core: transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("type IN ('income','expense')", name="ck_transactions_type"),
        CheckConstraint(
            "status IN ('pending','categorized','skipped','verified')",
            name="ck_transactions_status",
        ),
        CheckConstraint(
            "p2p_direction IS NULL OR p2p_direction IN ('sent','received','withdrawal')",
            name="ck_transactions_p2p_direction",
        ),
        CheckConstraint(
            "reconciliation_status IS NULL OR reconciliation_status IN "
            "('pending','matched','balance_paid','withdrawal_matched','reimbursement')",
            name="ck_transactions_reconciliation_status",
        ),
        Index("ix_transactions_household_date", "household_id", "date"),
        Index("ix_transactions_reconciliation_group", "reconciliation_group_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    merchant_raw: Mapped[str] = mapped_column(Text, nullable=False)
    merchant_normalized: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Reimbursements are stored negated so they net against their category.
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'ILS'"))
    type: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'upload'"))
    is_reimbursement: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    is_installment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    installment_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Wallet-app metadata, populated from screenshots.
    p2p_direction: Mapped[str | None] = mapped_column(String, nullable=True)
    p2p_counterparty: Mapped[str | None] = mapped_column(Text, nullable=True)
    p2p_memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconciliation_status: Mapped[str | None] = mapped_column(String, nullable=True)
    reconciliation_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # Legacy duplicate links kept alongside reconciliation groups.
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    duplicate_of: Mapped[str | None] = mapped_column(String(36), nullable=True)
    linked_to_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )


# ---------------------------
# Learned categories: merchant_memory
# ---------------------------


class MerchantMemory(Base):
    __tablename__ = "merchant_memory"
    __table_args__ = (
        UniqueConstraint(
            "household_id", "merchant_normalized", name="uq_merchant_memory_household_merchant"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    household_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    merchant_normalized: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, server_default=text("1.0"))
    correction_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
