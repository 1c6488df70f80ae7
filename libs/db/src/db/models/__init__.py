"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the account ledger models used by ``statement_import``.
"""

from .ledger import Account, Base, Category, CategoryRule, LedgerEntry

__all__ = [
    "Base",
    "Account",
    "Category",
    "CategoryRule",
    "LedgerEntry",
]
