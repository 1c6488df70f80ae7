# ruff: noqa: I001
"""Ledger core tables: accounts, categories, category rules, ledger entries.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'EUR'")),
        sa.Column(
            "current_balance", sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")
        ),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_id", "accounts", ["user_id"], unique=False)

    op.create_table(
        "categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("direction", sa.String(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "direction IS NULL OR direction in ('INCOME','EXPENSE')",
            name="ck_categories_direction",
        ),
    )
    op.create_index("ix_categories_user_id", "categories", ["user_id"], unique=False)

    op.create_table(
        "category_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("keyword", sa.Text(), nullable=False),
        sa.Column("match_mode", sa.String(), nullable=False, server_default=sa.text("'contains'")),
        sa.Column("direction_scope", sa.String(), nullable=False, server_default=sa.text("'ALL'")),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint(
            "match_mode in ('contains','startsWith','endsWith')",
            name="ck_category_rules_match_mode",
        ),
        sa.CheckConstraint(
            "direction_scope in ('ALL','INCOME','EXPENSE')",
            name="ck_category_rules_direction_scope",
        ),
    )
    op.create_index("ix_category_rules_user_id", "category_rules", ["user_id"], unique=False)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "account_id",
            sa.BigInteger(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("fingerprint", sa.CHAR(64), nullable=False),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False),
        sa.Column("running_balance", sa.Numeric(18, 4), nullable=True),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("source", sa.String(), nullable=False, server_default=sa.text("'import'")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_ledger_entries_amount_non_negative"),
        sa.CheckConstraint(
            "direction in ('INCOME','EXPENSE')", name="ck_ledger_entries_direction"
        ),
        sa.CheckConstraint("source in ('import','manual')", name="ck_ledger_entries_source"),
    )
    # Partial unique index: a fingerprint is imported at most once per account
    # among live rows.
    op.create_index(
        "uq_ledger_entries_account_fingerprint",
        "ledger_entries",
        ["account_id", "fingerprint"],
        unique=True,
        postgresql_where=sa.text("NOT is_deleted"),
        sqlite_where=sa.text("is_deleted = 0"),
    )
    op.create_index(
        "ix_ledger_entries_account_occurred_on",
        "ledger_entries",
        ["account_id", "occurred_on"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_entries_account_occurred_on", table_name="ledger_entries")
    op.drop_index("uq_ledger_entries_account_fingerprint", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_category_rules_user_id", table_name="category_rules")
    op.drop_table("category_rules")
    op.drop_index("ix_categories_user_id", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user_id", table_name="accounts")
    op.drop_table("accounts")
