from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only autoincrements ``INTEGER PRIMARY KEY`` (rowid) columns.
_PK = BigInteger().with_variant(Integer, "sqlite")
_MONEY = Numeric(18, 4)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: accounts
# ---------------------------


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'EUR'"))
    # Must always equal the opening balance plus the signed sum of this
    # account's non-deleted ledger entries. Only the commit path mutates it.
    current_balance: Mapped[Decimal] = mapped_column(
        _MONEY, nullable=False, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


# ---------------------------
# Reference: categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # NULL means the category applies to both directions.
    direction: Mapped[str | None] = mapped_column(String, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint(
            "direction IS NULL OR direction in ('INCOME','EXPENSE')",
            name="ck_categories_direction",
        ),
    )


class CategoryRule(Base):
    __tablename__ = "category_rules"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    keyword: Mapped[str] = mapped_column(Text, nullable=False)
    match_mode: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'contains'")
    )
    direction_scope: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'ALL'")
    )
    category_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    # Evaluation order; lower positions are tried first.
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint(
            "match_mode in ('contains','startsWith','endsWith')",
            name="ck_category_rules_match_mode",
        ),
        CheckConstraint(
            "direction_scope in ('ALL','INCOME','EXPENSE')",
            name="ck_category_rules_direction_scope",
        ),
    )


# ---------------------------
# Core: ledger_entries
# ---------------------------


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Magnitude only; the sign lives in ``direction``.
    amount: Mapped[Decimal] = mapped_column(_MONEY, nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    running_balance: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    source: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'import'"))
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_entries_amount_non_negative"),
        CheckConstraint("direction in ('INCOME','EXPENSE')", name="ck_ledger_entries_direction"),
        CheckConstraint("source in ('import','manual')", name="ck_ledger_entries_source"),
        # Final guard against double import; soft-deleted rows may be re-imported.
        Index(
            "uq_ledger_entries_account_fingerprint",
            "account_id",
            "fingerprint",
            unique=True,
            postgresql_where=text("NOT is_deleted"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_ledger_entries_account_occurred_on", "account_id", "occurred_on"),
    )


__all__ = [
    "Base",
    "Account",
    "Category",
    "CategoryRule",
    "LedgerEntry",
]
