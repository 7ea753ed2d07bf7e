# ruff: noqa: I001
"""Households, transactions and merchant memory.

Revision ID: 0001_household_ledger_core
Revises: None
Create Date: 2026-03-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_household_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "households",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "household_id",
            sa.String(36),
            sa.ForeignKey("households.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("merchant_raw", sa.Text(), nullable=False),
        sa.Column("merchant_normalized", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'ILS'")),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'upload'")),
        sa.Column(
            "is_reimbursement", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "is_installment", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("installment_total", sa.Integer(), nullable=True),
        sa.Column("p2p_direction", sa.String(), nullable=True),
        sa.Column("p2p_counterparty", sa.Text(), nullable=True),
        sa.Column("p2p_memo", sa.Text(), nullable=True),
        sa.Column("reconciliation_status", sa.String(), nullable=True),
        sa.Column("reconciliation_group_id", sa.String(36), nullable=True),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("duplicate_of", sa.String(36), nullable=True),
        sa.Column("linked_to_transaction_id", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("type IN ('income','expense')", name="ck_transactions_type"),
        sa.CheckConstraint(
            "status IN ('pending','categorized','skipped','verified')",
            name="ck_transactions_status",
        ),
        sa.CheckConstraint(
            "p2p_direction IS NULL OR p2p_direction IN ('sent','received','withdrawal')",
            name="ck_transactions_p2p_direction",
        ),
        sa.CheckConstraint(
            "reconciliation_status IS NULL OR reconciliation_status IN "
            "('pending','matched','balance_paid','withdrawal_matched','reimbursement')",
            name="ck_transactions_reconciliation_status",
        ),
    )
    op.create_index(
        "ix_transactions_household_date", "transactions", ["household_id", "date"], unique=False
    )
    op.create_index(
        "ix_transactions_reconciliation_group",
        "transactions",
        ["reconciliation_group_id"],
        unique=False,
    )

    op.create_table(
        "merchant_memory",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "household_id",
            sa.String(36),
            sa.ForeignKey("households.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("merchant_normalized", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("correction_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "last_seen",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint(
            "household_id", "merchant_normalized", name="uq_merchant_memory_household_merchant"
        ),
    )


def downgrade() -> None:
    op.drop_table("merchant_memory")
    op.drop_index("ix_transactions_reconciliation_group", table_name="transactions")
    op.drop_index("ix_transactions_household_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("households")
