"""Commit Coordinator: apply user-approved preview entries to one account.

State machine (each transition is logged)::

    RECEIVED → VALIDATING → APPLYING → COMMITTED
                    └───────────┴──────→ FAILED

Validating
    The preview must belong to the target account. Decisions naming an unknown
    fingerprint, or an entry whose recomputed fingerprint no longer matches,
    are rejected as errored rows before anything is written.

Applying
    The account row is locked first so concurrent commits on one account run
    one after another. Each non-skipped decision is re-checked against the
    ledger (now a duplicate → counted, not inserted), its category resolved
    (override, then suggestion, then none) and verified, and the entry
    inserted. The balance moves by the signed sum of inserted amounts.

All writes share the caller's transaction. Any ``SQLAlchemyError`` becomes a
``CommitError`` and the caller's session scope rolls everything back, so a
failed commit can simply be retried.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from .duplicates import fingerprint_of
from .errors import CommitError
from .logging_setup import get_logger
from .models import CommitResult, CommitState, ImportDecision, Preview, PreviewEntry, RowError
from .stores import AccountStore, TransactionLedger

_log = get_logger("statement_import.commit")


class CommitCoordinator:
    """Single-use coordinator for one commit request."""

    def __init__(self, *, accounts: AccountStore, ledger: TransactionLedger) -> None:
        self.accounts = accounts
        self.ledger = ledger
        self.state: CommitState = "RECEIVED"
        self.imported = 0
        self.skipped = 0
        self.duplicates = 0
        self.ledger_ids: list[int] = []
        self.errors: list[RowError] = []

    @property
    def errored(self) -> int:
        return len(self.errors)

    def _transition(self, state: CommitState) -> None:
        _log.info("commit: %s → %s", self.state, state)
        self.state = state

    def _failure(self, message: str, *, at: CommitState) -> CommitError:
        self._transition("FAILED")
        return CommitError(
            message,
            state=at,
            imported=self.imported,
            skipped=self.skipped,
            duplicates=self.duplicates,
            errored=self.errored,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _validate(
        self, account_id: int, decisions: Iterable[ImportDecision], preview: Preview
    ) -> list[tuple[ImportDecision, PreviewEntry]]:
        if preview.account_id != account_id:
            raise self._failure(
                f"preview belongs to account {preview.account_id}, not {account_id}",
                at="VALIDATING",
            )

        by_fingerprint = {e.fingerprint: e for e in preview.entries}
        planned: list[tuple[ImportDecision, PreviewEntry]] = []
        for decision in decisions:
            entry = by_fingerprint.get(decision.fingerprint)
            if entry is None:
                self.errors.append(RowError(decision.fingerprint, "unknown fingerprint"))
                continue
            if fingerprint_of(account_id, entry.transaction) != decision.fingerprint:
                self.errors.append(
                    RowError(decision.fingerprint, "entry does not match its fingerprint")
                )
                continue
            if decision.skip:
                self.skipped += 1
                continue
            planned.append((decision, entry))
        if self.errors:
            _log.warning("commit: %d decision(s) rejected during validation", self.errored)
        return planned

    def _apply(
        self,
        account_id: int,
        planned: list[tuple[ImportDecision, PreviewEntry]],
        currency: str,
    ) -> Decimal:
        account = self.accounts.get_account(account_id, for_update=True)
        delta = Decimal("0")
        for decision, entry in planned:
            tx = entry.transaction
            # Also catches a fingerprint repeated within the same request,
            # since inserts are flushed immediately.
            if self.ledger.exists_by_fingerprint(account_id, tx.fingerprint):
                self.duplicates += 1
                continue

            category_id = decision.category_id
            if category_id is None and entry.suggested_category is not None:
                category_id = entry.suggested_category.category_id
            if category_id is not None and not self.ledger.has_category(
                category_id, user_id=account.user_id
            ):
                self.errors.append(
                    RowError(tx.fingerprint, f"category {category_id} no longer exists")
                )
                continue

            ledger_id = self.ledger.insert(account_id, tx, category_id, currency=currency)
            self.ledger_ids.append(ledger_id)
            self.imported += 1
            delta += tx.signed_amount

        if not self.ledger_ids:
            return account.current_balance
        return self.accounts.apply_balance_delta(account_id, delta)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        account_id: int,
        decisions: Iterable[ImportDecision],
        preview: Preview,
    ) -> CommitResult:
        if self.state != "RECEIVED":
            raise RuntimeError("CommitCoordinator instances are single-use")

        self._transition("VALIDATING")
        planned = self._validate(account_id, decisions, preview)

        self._transition("APPLYING")
        try:
            new_balance = self._apply(account_id, planned, preview.currency)
        except SQLAlchemyError as exc:
            _log.error("commit: database failure while applying: %s", exc)
            raise self._failure(
                "the import could not be saved; nothing was written", at="APPLYING"
            ) from exc
        except Exception:
            self._transition("FAILED")
            raise

        self._transition("COMMITTED")
        result = self.result(new_balance=new_balance)
        _log.info(
            "commit for account %s: imported=%d skipped=%d duplicates=%d errored=%d",
            account_id,
            result.imported,
            result.skipped,
            result.duplicates,
            result.errored,
        )
        return result

    def result(self, *, new_balance: Decimal | None = None) -> CommitResult:
        return CommitResult(
            imported=self.imported,
            skipped=self.skipped,
            duplicates=self.duplicates,
            errored=self.errored,
            ledger_ids=tuple(self.ledger_ids),
            errors=tuple(self.errors),
            state=self.state,
            new_balance=new_balance,
        )


def commit_import(
    account_id: int,
    decisions: Iterable[ImportDecision],
    preview: Preview,
    *,
    database_url: str | None = None,
) -> CommitResult:
    """Apply ``decisions`` in a single database transaction."""

    from db.client import session_scope

    from .persistence import SqlAccountStore, SqlTransactionLedger

    coordinator: CommitCoordinator | None = None
    try:
        with session_scope(database_url=database_url) as session:
            coordinator = CommitCoordinator(
                accounts=SqlAccountStore(session), ledger=SqlTransactionLedger(session)
            )
            return coordinator.run(account_id, decisions, preview)
    except SQLAlchemyError as exc:
        # The final COMMIT itself failed; everything was rolled back.
        _log.error("commit for account %s: transaction failed: %s", account_id, exc)
        counts = coordinator.result() if coordinator is not None else None
        raise CommitError(
            "the import could not be saved; nothing was written",
            state="APPLYING",
            imported=counts.imported if counts else 0,
            skipped=counts.skipped if counts else 0,
            duplicates=counts.duplicates if counts else 0,
            errored=counts.errored if counts else 0,
        ) from exc


__all__ = ["CommitCoordinator", "commit_import"]
