"""Interfaces to the collaborators that own persistent state.

The pipeline never touches tables directly: previews read through these
protocols and the commit coordinator writes through them. SQLAlchemy-backed
implementations live in :mod:`statement_import.persistence`; tests may supply
in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from .categories import KeywordRule
from .models import NormalizedTransaction


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    id: int
    user_id: str
    currency: str
    current_balance: Decimal


class AccountStore(Protocol):
    def get_account(self, account_id: int, *, for_update: bool = False) -> AccountSnapshot:
        """Return the account; raise ``AccountNotFound`` when it does not exist.

        ``for_update`` takes a row lock held until the surrounding transaction
        ends.
        """
        ...

    def apply_balance_delta(self, account_id: int, signed_delta: Decimal) -> Decimal:
        """Add ``signed_delta`` to the current balance and return the new balance."""
        ...


class TransactionLedger(Protocol):
    def exists_by_fingerprint(self, account_id: int, fingerprint: str) -> bool: ...

    def find_by_fingerprints(
        self, account_id: int, fingerprints: Iterable[str]
    ) -> dict[str, int]:
        """Map each fingerprint already present (non-deleted) to its ledger id."""
        ...

    def insert(
        self,
        account_id: int,
        tx: NormalizedTransaction,
        category_id: int | None,
        *,
        currency: str,
    ) -> int: ...

    def has_category(self, category_id: int, *, user_id: str | None = None) -> bool:
        """True when the category exists, is not deleted and (optionally) belongs to ``user_id``."""
        ...


class CategoryRuleStore(Protocol):
    def list_rules(self, user_id: str) -> list[KeywordRule]:
        """Active rules for ``user_id`` in evaluation order."""
        ...

    def list_categories(self, user_id: str) -> dict[str, int]:
        """Live categories of ``user_id`` as name → id."""
        ...

    def categorized_history(self, user_id: str, *, limit: int) -> list[tuple[str, int]]:
        """``(description, category_id)`` of the newest categorized entries."""
        ...


__all__ = [
    "AccountSnapshot",
    "AccountStore",
    "CategoryRuleStore",
    "TransactionLedger",
]
