"""SQLAlchemy implementations of the store interfaces.

Each class wraps one ``Session`` owned by the caller (usually
``db.client.session_scope``); nothing here commits. ORM models come from
``db.models.ledger``.

Scope:
- ``SqlAccountStore``: account lookup (optionally row-locked) and balance
  updates.
- ``SqlTransactionLedger``: fingerprint lookups over non-deleted entries and
  inserts of imported entries.
- ``SqlCategoryRuleStore``: active keyword rules in evaluation order, the
  user's category names, and recent categorized entries to learn from.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from db.models.ledger import Account, Category, CategoryRule, LedgerEntry
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .categories import KeywordRule
from .errors import AccountNotFound
from .logging_setup import get_logger
from .models import NormalizedTransaction
from .stores import AccountSnapshot

_log = get_logger("statement_import.persistence")

# Keeps ``IN (...)`` lists well under SQLite's bound-parameter limit.
_LOOKUP_CHUNK = 500


def _chunks(values: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class SqlAccountStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_account(self, account_id: int, *, for_update: bool = False) -> AccountSnapshot:
        stmt = select(Account).where(Account.id == account_id)
        if for_update:
            # Ignored by SQLite, where the write transaction serializes instead.
            # A locked read must not be served from the identity map.
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise AccountNotFound(account_id)
        return AccountSnapshot(
            id=row.id,
            user_id=row.user_id,
            currency=row.currency,
            current_balance=Decimal(row.current_balance),
        )

    def apply_balance_delta(self, account_id: int, signed_delta: Decimal) -> Decimal:
        current = self.session.execute(
            select(Account.current_balance).where(Account.id == account_id)
        ).scalar_one_or_none()
        if current is None:
            raise AccountNotFound(account_id)
        # Computed in Python so the arithmetic stays in Decimal on every backend.
        new_balance = Decimal(current) + signed_delta
        self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(current_balance=new_balance, updated_at=func.now())
        )
        return new_balance


class SqlTransactionLedger:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists_by_fingerprint(self, account_id: int, fingerprint: str) -> bool:
        stmt = (
            select(LedgerEntry.id)
            .where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.fingerprint == fingerprint,
                LedgerEntry.is_deleted.is_(False),
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def find_by_fingerprints(
        self, account_id: int, fingerprints: Iterable[str]
    ) -> dict[str, int]:
        wanted = sorted(set(fingerprints))
        found: dict[str, int] = {}
        for chunk in _chunks(wanted, _LOOKUP_CHUNK):
            stmt = select(LedgerEntry.fingerprint, LedgerEntry.id).where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.fingerprint.in_(chunk),
                LedgerEntry.is_deleted.is_(False),
            )
            for fingerprint, entry_id in self.session.execute(stmt).all():
                found.setdefault(fingerprint, entry_id)
        return found

    def insert(
        self,
        account_id: int,
        tx: NormalizedTransaction,
        category_id: int | None,
        *,
        currency: str,
    ) -> int:
        entry = LedgerEntry(
            account_id=account_id,
            fingerprint=tx.fingerprint,
            occurred_on=tx.occurred_on,
            description=tx.description,
            amount=tx.amount,
            direction=tx.direction,
            currency=currency,
            running_balance=tx.running_balance,
            reference=tx.reference,
            category_id=category_id,
            source="import",
        )
        self.session.add(entry)
        # Flush so the id is assigned and the unique index is checked now.
        self.session.flush()
        return entry.id

    def has_category(self, category_id: int, *, user_id: str | None = None) -> bool:
        stmt = select(Category.id).where(
            Category.id == category_id,
            Category.is_deleted.is_(False),
        )
        if user_id is not None:
            stmt = stmt.where(Category.user_id == user_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none() is not None


class SqlCategoryRuleStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_rules(self, user_id: str) -> list[KeywordRule]:
        stmt = (
            select(CategoryRule)
            .join(Category, Category.id == CategoryRule.category_id)
            .where(
                CategoryRule.user_id == user_id,
                CategoryRule.is_active.is_(True),
                Category.is_deleted.is_(False),
            )
            .order_by(CategoryRule.position, CategoryRule.id)
        )
        rules = [
            KeywordRule(
                rule_id=row.id,
                keyword=row.keyword,
                category_id=row.category_id,
                match_mode=row.match_mode,  # type: ignore[arg-type]
                direction_scope=row.direction_scope,  # type: ignore[arg-type]
            )
            for row in self.session.execute(stmt).scalars()
        ]
        _log.debug("user %s: %d active category rule(s)", user_id, len(rules))
        return rules

    def list_categories(self, user_id: str) -> dict[str, int]:
        stmt = (
            select(Category.name, Category.id)
            .where(Category.user_id == user_id, Category.is_deleted.is_(False))
            .order_by(Category.id)
        )
        categories: dict[str, int] = {}
        for name, category_id in self.session.execute(stmt).all():
            categories.setdefault(name, category_id)
        return categories

    def categorized_history(self, user_id: str, *, limit: int) -> list[tuple[str, int]]:
        stmt = (
            select(LedgerEntry.description, LedgerEntry.category_id)
            .join(Account, Account.id == LedgerEntry.account_id)
            .join(Category, Category.id == LedgerEntry.category_id)
            .where(
                Account.user_id == user_id,
                LedgerEntry.is_deleted.is_(False),
                Category.is_deleted.is_(False),
            )
            .order_by(LedgerEntry.id.desc())
            .limit(limit)
        )
        rows = [(row.description, row.category_id) for row in self.session.execute(stmt)]
        _log.debug("user %s: %d categorized ledger entries to learn from", user_id, len(rows))
        return rows


__all__ = [
    "SqlAccountStore",
    "SqlCategoryRuleStore",
    "SqlTransactionLedger",
]
