"""DB helpers for tests: bootstrap a temporary SQLite DB and seed fixtures."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from db import Base
from db.client import get_engine, session_scope
from db.models.ledger import Account, Category, CategoryRule, LedgerEntry
from sqlalchemy import event, func, select


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    # Ensure parent exists before engine creation attempts any writes
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    # Enforce FKs (off by default in SQLite)
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)

    # Make it the default for any code paths that read from the environment
    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


@dataclass(frozen=True, slots=True)
class Seeded:
    account_id: int
    other_account_id: int
    categories: dict[str, int]
    rules: dict[str, int]


# (name, direction) pairs; direction None applies to both.
DEFAULT_CATEGORIES: Sequence[tuple[str, str | None]] = (
    ("Salary", "INCOME"),
    ("Groceries", "EXPENSE"),
    ("Cafes", "EXPENSE"),
    ("Transfers", None),
)

# (keyword, match_mode, direction_scope, category name)
DEFAULT_RULES: Sequence[tuple[str, str, str, str]] = (
    ("nomina", "startsWith", "INCOME", "Salary"),
    ("supermercado", "contains", "EXPENSE", "Groceries"),
    ("cafe", "contains", "EXPENSE", "Cafes"),
    ("transferencia", "startsWith", "ALL", "Transfers"),
)


def seed_ledger(
    *,
    database_url: str,
    user_id: str = "user-1",
    opening_balance: Decimal = Decimal("1000.00"),
    currency: str = "EUR",
) -> Seeded:
    """Insert one account (plus a second one for isolation checks), categories and rules."""

    with session_scope(database_url=database_url) as session:
        account = Account(
            user_id=user_id,
            name="Cuenta corriente",
            currency=currency,
            current_balance=opening_balance,
        )
        other = Account(
            user_id=user_id, name="Ahorro", currency=currency, current_balance=Decimal("0")
        )
        session.add_all([account, other])
        session.flush()

        categories: dict[str, int] = {}
        for name, direction in DEFAULT_CATEGORIES:
            cat = Category(user_id=user_id, name=name, direction=direction)
            session.add(cat)
            session.flush()
            categories[name] = cat.id

        rules: dict[str, int] = {}
        for position, (keyword, mode, scope, cat_name) in enumerate(DEFAULT_RULES):
            rule = CategoryRule(
                user_id=user_id,
                keyword=keyword,
                match_mode=mode,
                direction_scope=scope,
                category_id=categories[cat_name],
                position=position,
            )
            session.add(rule)
            session.flush()
            rules[keyword] = rule.id

        return Seeded(
            account_id=account.id,
            other_account_id=other.id,
            categories=categories,
            rules=rules,
        )


def soft_delete_category(*, database_url: str, category_id: int) -> None:
    with session_scope(database_url=database_url) as session:
        session.get(Category, category_id).is_deleted = True


def account_balance(*, database_url: str, account_id: int) -> Decimal:
    with session_scope(database_url=database_url) as session:
        value = session.execute(
            select(Account.current_balance).where(Account.id == account_id)
        ).scalar_one()
        return Decimal(value)


def ledger_rows(*, database_url: str, account_id: int) -> list[LedgerEntry]:
    with session_scope(database_url=database_url) as session:
        rows = session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.id)
        ).scalars().all()
        session.expunge_all()
        return list(rows)


def signed_ledger_sum(*, database_url: str, account_id: int) -> Decimal:
    total = Decimal("0")
    for row in ledger_rows(database_url=database_url, account_id=account_id):
        if row.is_deleted:
            continue
        amount = Decimal(row.amount)
        total += amount if row.direction == "INCOME" else -amount
    return total


def count_entries(*, database_url: str) -> int:
    with session_scope(database_url=database_url) as session:
        return session.execute(select(func.count(LedgerEntry.id))).scalar_one()
