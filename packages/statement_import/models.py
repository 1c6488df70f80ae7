"""Data models and type aliases for ``statement_import``.

The pipeline moves through these shapes strictly left to right:

``RawDocument`` → ``RawRecord`` (per extracted row) → ``CanonicalRecord``
(normalized, no identity yet) → ``NormalizedTransaction`` (fingerprinted for an
account) → ``PreviewEntry`` (duplicate flag + category suggestion) →
``ImportDecision`` (user approval) → ``CommitResult``.

Everything here is immutable and lives for a single request; nothing is
persisted except through the ledger interface in :mod:`statement_import.stores`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Enumerations (as Literal aliases)
# ---------------------------------------------------------------------------

type DocumentShape = Literal["tabular", "grid", "pattern"]
"""How a document stores its rows: delimited text, a cell grid, or free text."""

type Direction = Literal["INCOME", "EXPENSE"]

type CommitState = Literal["RECEIVED", "VALIDATING", "APPLYING", "COMMITTED", "FAILED"]

DIRECTIONS: tuple[str, ...] = ("INCOME", "EXPENSE")
SHAPES: tuple[str, ...] = ("tabular", "grid", "pattern")


# ---------------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawDocument:
    """An uploaded statement file: bytes, declared filename, optional profile hint."""

    content: bytes
    filename: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One extracted row before normalization.

    ``values`` holds raw cell values in locator order as produced by the
    parser: strings for text documents, and strings/numbers/native dates for
    spreadsheets. ``row_index`` is the 0-based position within the source and is
    only used for diagnostics.
    """

    row_index: int
    values: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class CanonicalRecord:
    """A normalized row that has not yet been bound to an account."""

    row_index: int
    occurred_on: date
    description: str
    amount: Decimal
    direction: Direction
    running_balance: Decimal | None = None
    reference: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """A canonical transaction carrying its account-scoped fingerprint.

    ``amount`` is always non-negative; the sign lives only in ``direction``.
    """

    occurred_on: date
    description: str
    amount: Decimal
    direction: Direction
    fingerprint: str
    running_balance: Decimal | None = None
    reference: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("NormalizedTransaction.amount must be non-negative")
        if self.direction not in DIRECTIONS:
            raise ValueError(f"unknown direction: {self.direction!r}")

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == "INCOME" else -self.amount


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SuggestedCategory:
    """A rule-based category suggestion.

    Confidence is boolean: a suggestion exists only when a rule matched.
    ``rule_id`` is ``None`` for built-in and learned rules.
    """

    category_id: int
    rule_id: int | None
    matched: bool = True


@dataclass(frozen=True, slots=True)
class PreviewEntry:
    transaction: NormalizedTransaction
    is_duplicate: bool = False
    duplicate_of: int | None = None
    suggested_category: SuggestedCategory | None = None

    @property
    def fingerprint(self) -> str:
        return self.transaction.fingerprint


@dataclass(frozen=True, slots=True)
class Preview:
    """The annotated, not-yet-persisted result of parsing one document."""

    account_id: int
    filename: str
    format_key: str
    format_name: str
    currency: str
    entries: tuple[PreviewEntry, ...]
    date_range: tuple[date, date] | None
    total_income: Decimal
    total_expenses: Decimal
    duplicates_found: int
    skipped_rows: int = 0
    skipped_by_reason: Mapping[str, int] = field(default_factory=dict)
    collapsed_rows: int = 0

    @property
    def net_amount(self) -> Decimal:
        return self.total_income - self.total_expenses

    def entry_for(self, fingerprint: str) -> PreviewEntry | None:
        for entry in self.entries:
            if entry.fingerprint == fingerprint:
                return entry
        return None


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportDecision:
    """User approval for one preview entry, keyed by fingerprint."""

    fingerprint: str
    category_id: int | None = None
    skip: bool = False


@dataclass(frozen=True, slots=True)
class RowError:
    fingerprint: str
    reason: str


@dataclass(frozen=True, slots=True)
class CommitResult:
    imported: int
    skipped: int
    duplicates: int
    errored: int
    ledger_ids: tuple[int, ...] = ()
    errors: tuple[RowError, ...] = ()
    state: CommitState = "COMMITTED"
    new_balance: Decimal | None = None


__all__ = [
    "DIRECTIONS",
    "SHAPES",
    "CanonicalRecord",
    "CommitResult",
    "CommitState",
    "Direction",
    "DocumentShape",
    "ImportDecision",
    "NormalizedTransaction",
    "Preview",
    "PreviewEntry",
    "RawDocument",
    "RawRecord",
    "RowError",
    "SuggestedCategory",
]
