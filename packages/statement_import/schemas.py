"""Typed JSON payloads for previews, decisions and commit results.

The pipeline works on frozen dataclasses (:mod:`statement_import.models`);
these pydantic models are the wire form used by the CLI (``--output`` /
``--preview`` / ``--decisions`` files) and by any transport layer in front of
the API. Each payload converts to and from its domain counterpart.

Amounts serialize as decimal strings so no precision is lost in JSON.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .models import (
    CommitResult,
    ImportDecision,
    NormalizedTransaction,
    Preview,
    PreviewEntry,
    RowError,
    SuggestedCategory,
)

_FINGERPRINT = r"^[0-9a-f]{64}$"


class SuggestedCategoryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: int
    rule_id: int | None = None
    matched: bool = True


class PreviewEntryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    occurred_on: date
    description: str
    amount: Decimal = Field(ge=0)
    direction: Literal["INCOME", "EXPENSE"]
    fingerprint: str = Field(pattern=_FINGERPRINT)
    running_balance: Decimal | None = None
    reference: str | None = None
    is_duplicate: bool = False
    duplicate_of: int | None = None
    suggested_category: SuggestedCategoryPayload | None = None

    @field_validator("description")
    @classmethod
    def _description_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("description must be non-empty")
        return v

    @classmethod
    def from_entry(cls, entry: PreviewEntry) -> PreviewEntryPayload:
        tx = entry.transaction
        suggestion = entry.suggested_category
        return cls(
            occurred_on=tx.occurred_on,
            description=tx.description,
            amount=tx.amount,
            direction=tx.direction,
            fingerprint=tx.fingerprint,
            running_balance=tx.running_balance,
            reference=tx.reference,
            is_duplicate=entry.is_duplicate,
            duplicate_of=entry.duplicate_of,
            suggested_category=(
                SuggestedCategoryPayload(
                    category_id=suggestion.category_id,
                    rule_id=suggestion.rule_id,
                    matched=suggestion.matched,
                )
                if suggestion is not None
                else None
            ),
        )

    def to_entry(self) -> PreviewEntry:
        suggestion = self.suggested_category
        return PreviewEntry(
            transaction=NormalizedTransaction(
                occurred_on=self.occurred_on,
                description=self.description,
                amount=self.amount,
                direction=self.direction,
                fingerprint=self.fingerprint,
                running_balance=self.running_balance,
                reference=self.reference,
            ),
            is_duplicate=self.is_duplicate,
            duplicate_of=self.duplicate_of,
            suggested_category=(
                SuggestedCategory(
                    category_id=suggestion.category_id,
                    rule_id=suggestion.rule_id,
                    matched=suggestion.matched,
                )
                if suggestion is not None
                else None
            ),
        )


class PreviewPayload(BaseModel):
    """Top-level schema for a preview JSON file."""

    model_config = ConfigDict(extra="forbid")

    account_id: int
    filename: str
    format_key: str
    format_name: str
    currency: str = Field(min_length=3, max_length=3)
    date_range: tuple[date, date] | None = None
    total_income: Decimal
    total_expenses: Decimal
    # Derived; written for readers of the JSON and ignored on the way back in.
    net_amount: Decimal | None = None
    duplicates_found: int = 0
    skipped_rows: int = 0
    skipped_by_reason: dict[str, int] = Field(default_factory=dict)
    collapsed_rows: int = 0
    entries: list[PreviewEntryPayload]

    @classmethod
    def from_preview(cls, preview: Preview) -> PreviewPayload:
        return cls(
            account_id=preview.account_id,
            filename=preview.filename,
            format_key=preview.format_key,
            format_name=preview.format_name,
            currency=preview.currency,
            date_range=preview.date_range,
            total_income=preview.total_income,
            total_expenses=preview.total_expenses,
            net_amount=preview.net_amount,
            duplicates_found=preview.duplicates_found,
            skipped_rows=preview.skipped_rows,
            skipped_by_reason=dict(preview.skipped_by_reason),
            collapsed_rows=preview.collapsed_rows,
            entries=[PreviewEntryPayload.from_entry(e) for e in preview.entries],
        )

    def to_preview(self) -> Preview:
        return Preview(
            account_id=self.account_id,
            filename=self.filename,
            format_key=self.format_key,
            format_name=self.format_name,
            currency=self.currency,
            entries=tuple(e.to_entry() for e in self.entries),
            date_range=self.date_range,
            total_income=self.total_income,
            total_expenses=self.total_expenses,
            duplicates_found=self.duplicates_found,
            skipped_rows=self.skipped_rows,
            skipped_by_reason=dict(self.skipped_by_reason),
            collapsed_rows=self.collapsed_rows,
        )


class ImportDecisionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    fingerprint: str = Field(pattern=_FINGERPRINT)
    category_id: int | None = None
    skip: bool = False

    @classmethod
    def from_decision(cls, decision: ImportDecision) -> ImportDecisionPayload:
        return cls(
            fingerprint=decision.fingerprint,
            category_id=decision.category_id,
            skip=decision.skip,
        )

    def to_decision(self) -> ImportDecision:
        return ImportDecision(
            fingerprint=self.fingerprint, category_id=self.category_id, skip=self.skip
        )


DecisionList = TypeAdapter(list[ImportDecisionPayload])


class RowErrorPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fingerprint: str
    reason: str


class CommitResultPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imported: int
    skipped: int
    duplicates: int
    errored: int
    ledger_ids: list[int] = Field(default_factory=list)
    errors: list[RowErrorPayload] = Field(default_factory=list)
    state: Literal["RECEIVED", "VALIDATING", "APPLYING", "COMMITTED", "FAILED"] = "COMMITTED"
    new_balance: Decimal | None = None

    @classmethod
    def from_result(cls, result: CommitResult) -> CommitResultPayload:
        return cls(
            imported=result.imported,
            skipped=result.skipped,
            duplicates=result.duplicates,
            errored=result.errored,
            ledger_ids=list(result.ledger_ids),
            errors=[
                RowErrorPayload(fingerprint=e.fingerprint, reason=e.reason) for e in result.errors
            ],
            state=result.state,
            new_balance=result.new_balance,
        )

    def to_result(self) -> CommitResult:
        return CommitResult(
            imported=self.imported,
            skipped=self.skipped,
            duplicates=self.duplicates,
            errored=self.errored,
            ledger_ids=tuple(self.ledger_ids),
            errors=tuple(RowError(e.fingerprint, e.reason) for e in self.errors),
            state=self.state,
            new_balance=self.new_balance,
        )


__all__ = [
    "CommitResultPayload",
    "DecisionList",
    "ImportDecisionPayload",
    "PreviewEntryPayload",
    "PreviewPayload",
    "RowErrorPayload",
    "SuggestedCategoryPayload",
]
