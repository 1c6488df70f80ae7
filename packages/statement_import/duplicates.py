"""Deduplication Engine: fingerprints, in-batch collapse, history lookup.

Public surface:
- ``description_key``: the description form that participates in identity.
- ``compute_fingerprint``: stable SHA-256 over the canonical identity fields
  of a record, scoped to one account.
- ``fingerprint_records``: bind canonical records to an account.
- ``collapse_batch``: keep the first record per fingerprint within a batch.
- ``mark_history``: flag records whose fingerprint already exists in the
  ledger (one batched lookup) without removing them.
"""

from __future__ import annotations

import hashlib
import json
import unicodedata
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal

from .logging_setup import get_logger
from .models import CanonicalRecord, Direction, NormalizedTransaction, PreviewEntry
from .normalizers import amount_key
from .stores import TransactionLedger

_log = get_logger("statement_import.duplicates")


def description_key(description: str) -> str:
    """NFKC-normalized, whitespace-collapsed, case-folded description."""

    s = unicodedata.normalize("NFKC", description or "")
    return " ".join(s.split()).casefold()


def compute_fingerprint(
    *,
    account_id: int,
    occurred_on: date,
    description: str,
    amount: Decimal,
    direction: Direction,
) -> str:
    """Compute a stable SHA-256 fingerprint over canonical fields.

    Fields used: account id, ISO date, description key, amount as a fixed-point
    magnitude and direction.
    """

    payload = {
        "account": int(account_id),
        "date": occurred_on.isoformat(),
        "description": description_key(description),
        "amount": amount_key(amount),
        "direction": direction,
    }
    # Ensure deterministic JSON serialization
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def fingerprint_of(account_id: int, tx: NormalizedTransaction | CanonicalRecord) -> str:
    return compute_fingerprint(
        account_id=account_id,
        occurred_on=tx.occurred_on,
        description=tx.description,
        amount=tx.amount,
        direction=tx.direction,
    )


def fingerprint_records(
    account_id: int, records: Iterable[CanonicalRecord]
) -> list[NormalizedTransaction]:
    return [
        NormalizedTransaction(
            occurred_on=r.occurred_on,
            description=r.description,
            amount=r.amount,
            direction=r.direction,
            fingerprint=fingerprint_of(account_id, r),
            running_balance=r.running_balance,
            reference=r.reference,
        )
        for r in records
    ]


def collapse_batch(
    transactions: Iterable[NormalizedTransaction],
) -> tuple[list[NormalizedTransaction], int]:
    """Drop repeats of a fingerprint within one batch; return survivors and count."""

    seen: set[str] = set()
    kept: list[NormalizedTransaction] = []
    collapsed = 0
    for tx in transactions:
        if tx.fingerprint in seen:
            collapsed += 1
            continue
        seen.add(tx.fingerprint)
        kept.append(tx)
    if collapsed:
        _log.info("collapsed %d repeated row(s) within the batch", collapsed)
    return kept, collapsed


def mark_history(
    ledger: TransactionLedger,
    account_id: int,
    transactions: Sequence[NormalizedTransaction],
) -> list[PreviewEntry]:
    """Annotate each transaction with ``is_duplicate``/``duplicate_of``.

    Duplicates stay in the result so the user can still see them.
    """

    if not transactions:
        return []
    existing = ledger.find_by_fingerprints(account_id, [tx.fingerprint for tx in transactions])
    entries = [
        PreviewEntry(
            transaction=tx,
            is_duplicate=tx.fingerprint in existing,
            duplicate_of=existing.get(tx.fingerprint),
        )
        for tx in transactions
    ]
    _log.debug(
        "account %s: %d of %d row(s) already in the ledger",
        account_id,
        len(existing),
        len(transactions),
    )
    return entries


__all__ = [
    "collapse_batch",
    "compute_fingerprint",
    "description_key",
    "fingerprint_of",
    "fingerprint_records",
    "mark_history",
]
