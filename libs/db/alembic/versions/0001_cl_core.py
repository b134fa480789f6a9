# ruff: noqa: I001
"""Ledger core table.

Revision ID: 0001_cl_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_cl_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "cl_transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("sequence_number", sa.String(), nullable=False),
        sa.Column("account_number", sa.String(), nullable=False),
        sa.Column("execution_date", sa.Date(), nullable=False),
        sa.Column("value_date", sa.Date(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("counterparty_name", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("communication", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("is_parent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        # No FK: orphaned children must remain representable.
        sa.Column("parent_transaction_id", sa.String(), nullable=True),
        sa.Column("dedup_fingerprint", sa.String(), nullable=False),
        sa.Column("matched_entities", sa.JSON(), nullable=False),
        sa.Column("bank_reference", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("child_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("child_index", sa.Integer(), nullable=True),
        sa.Column("fiscal_year_id", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint(
            "NOT (is_parent AND parent_transaction_id IS NOT NULL)",
            name="ck_cl_tx_role_exclusive",
        ),
        sa.CheckConstraint("child_count >= 0", name="ck_cl_tx_child_count_nonneg"),
    )

    op.create_index("ix_cl_tx_parent", "cl_transactions", ["parent_transaction_id"])
    op.create_index(
        "ix_cl_tx_account_fingerprint",
        "cl_transactions",
        ["account_number", "dedup_fingerprint"],
    )
    op.create_index("ix_cl_tx_execution_date", "cl_transactions", ["execution_date"])
    op.create_index("ix_cl_tx_fiscal_year", "cl_transactions", ["fiscal_year_id"])


def downgrade() -> None:
    op.drop_index("ix_cl_tx_fiscal_year", table_name="cl_transactions")
    op.drop_index("ix_cl_tx_execution_date", table_name="cl_transactions")
    op.drop_index("ix_cl_tx_account_fingerprint", table_name="cl_transactions")
    op.drop_index("ix_cl_tx_parent", table_name="cl_transactions")
    op.drop_table("cl_transactions")
