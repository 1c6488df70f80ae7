from __future__ import annotations

import dataclasses
from decimal import Decimal
from pathlib import Path

import pytest
from db.client import get_session, session_scope
from sqlalchemy.exc import OperationalError

from statement_import import api
from statement_import.commit import CommitCoordinator
from statement_import.errors import AccountNotFound, CommitError, NoTransactionsExtracted
from statement_import.models import ImportDecision
from statement_import.persistence import (
    SqlAccountStore,
    SqlCategoryRuleStore,
    SqlTransactionLedger,
)
from statement_import.preview import build_preview
from statement_import.stores import AccountSnapshot

from tests.helpers.db import (
    Seeded,
    account_balance,
    bootstrap_sqlite_db,
    count_entries,
    ledger_rows,
    seed_ledger,
    signed_ledger_sum,
    soft_delete_category,
)

FILENAME = "santander_marzo.csv"
STATEMENT = (
    "Fecha;Concepto;Importe;Saldo\n"
    "01/03/2025;Nómina Empresa SA;3.500,00;4.500,00\n"
    "05/03/2025;Supermercado Día;-45,50;4.454,50\n"
    "01/03/2025;Nómina Empresa SA;3.500,00;4.500,00\n"
).encode()
OPENING = Decimal("1000.00")


@pytest.fixture()
def ledger_db(tmp_path: Path) -> tuple[str, Seeded]:
    url = bootstrap_sqlite_db(tmp_path / "ledger.db")
    return url, seed_ledger(database_url=url, opening_balance=OPENING)


def _approve_all(preview) -> list[ImportDecision]:
    return [ImportDecision(fingerprint=e.fingerprint) for e in preview.entries]


# ---- Preview -----------------------------------------------------------------


def test_preview_annotates_without_writing(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)

    assert preview.format_key == "santander_es"
    assert preview.currency == "EUR"
    assert preview.collapsed_rows == 1
    assert preview.skipped_rows == 0
    assert preview.duplicates_found == 0
    assert [e.transaction.description for e in preview.entries] == [
        "Nómina Empresa SA",
        "Supermercado Día",
    ]
    salary, groceries = preview.entries
    assert salary.suggested_category.category_id == seeded.categories["Salary"]
    assert groceries.suggested_category.category_id == seeded.categories["Groceries"]
    assert (preview.total_income, preview.total_expenses) == (
        Decimal("3500.00"),
        Decimal("45.50"),
    )
    assert preview.net_amount == Decimal("3454.50")
    assert [d.isoformat() for d in preview.date_range] == ["2025-03-01", "2025-03-05"]

    assert count_entries(database_url=url) == 0
    assert account_balance(database_url=url, account_id=seeded.account_id) == OPENING


def test_preview_unknown_account(ledger_db):
    url, _ = ledger_db
    with pytest.raises(AccountNotFound):
        api.preview(STATEMENT, FILENAME, 999, database_url=url)


def test_preview_header_only_file(ledger_db):
    url, seeded = ledger_db
    with pytest.raises(NoTransactionsExtracted) as exc:
        api.preview(
            b"Fecha;Concepto;Importe;Saldo\n", FILENAME, seeded.account_id, database_url=url
        )
    assert exc.value.stage == "extraction"


def test_preview_with_only_unreadable_rows(ledger_db):
    url, seeded = ledger_db
    content = b"Fecha;Concepto;Importe;Saldo\nnot a date;Algo;1,00;\n"
    with pytest.raises(NoTransactionsExtracted) as exc:
        api.preview(content, FILENAME, seeded.account_id, database_url=url)
    assert "1 row(s) were unreadable" in exc.value.message


# ---- Commit ------------------------------------------------------------------


def test_commit_imports_and_moves_balance(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)

    result = api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    assert result.state == "COMMITTED"
    assert (result.imported, result.skipped, result.duplicates, result.errored) == (2, 0, 0, 0)
    assert len(result.ledger_ids) == 2
    assert result.new_balance == OPENING + Decimal("3454.50")
    balance = account_balance(database_url=url, account_id=seeded.account_id)
    assert balance == OPENING + Decimal("3454.50")
    assert balance == OPENING + signed_ledger_sum(database_url=url, account_id=seeded.account_id)

    rows = ledger_rows(database_url=url, account_id=seeded.account_id)
    assert [r.category_id for r in rows] == [
        seeded.categories["Salary"],
        seeded.categories["Groceries"],
    ]
    assert all(r.source == "import" and r.currency == "EUR" for r in rows)
    assert rows[0].running_balance == Decimal("4500.00")


def test_commit_is_idempotent(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    again = api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    assert (again.imported, again.duplicates) == (0, 2)
    assert again.new_balance == OPENING + Decimal("3454.50")
    assert count_entries(database_url=url) == 2


def test_second_preview_flags_history_duplicates(ledger_db):
    url, seeded = ledger_db
    first = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    result = api.commit(seeded.account_id, _approve_all(first), first, database_url=url)

    second = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)

    assert second.duplicates_found == 2
    assert [e.duplicate_of for e in second.entries] == list(result.ledger_ids)
    # Totals still cover duplicates.
    assert second.total_income == Decimal("3500.00")

    # Fingerprints are per account.
    other = api.preview(STATEMENT, FILENAME, seeded.other_account_id, database_url=url)
    assert other.duplicates_found == 0


def test_commit_rolls_back_everything_on_database_failure(ledger_db, monkeypatch):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)

    original = SqlTransactionLedger.insert
    calls = {"n": 0}

    def flaky_insert(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OperationalError("INSERT INTO ledger_entries", {}, Exception("disk I/O error"))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(SqlTransactionLedger, "insert", flaky_insert)

    with pytest.raises(CommitError) as exc:
        api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    assert exc.value.state == "APPLYING"
    assert exc.value.imported == 1
    assert isinstance(exc.value.__cause__, OperationalError)
    assert count_entries(database_url=url) == 0
    assert account_balance(database_url=url, account_id=seeded.account_id) == OPENING

    # Retrying after the failure goes through cleanly.
    monkeypatch.setattr(SqlTransactionLedger, "insert", original)
    retry = api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)
    assert retry.imported == 2


def test_commit_rejects_unknown_and_tampered_entries(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    salary, groceries = preview.entries

    tampered_tx = dataclasses.replace(groceries.transaction, amount=Decimal("4.55"))
    tampered = dataclasses.replace(
        preview, entries=(salary, dataclasses.replace(groceries, transaction=tampered_tx))
    )
    decisions = [
        ImportDecision(fingerprint="0" * 64),
        ImportDecision(fingerprint=salary.fingerprint),
        ImportDecision(fingerprint=groceries.fingerprint),
    ]

    result = api.commit(seeded.account_id, decisions, tampered, database_url=url)

    assert (result.imported, result.errored) == (1, 2)
    reasons = {e.fingerprint: e.reason for e in result.errors}
    assert reasons["0" * 64] == "unknown fingerprint"
    assert reasons[groceries.fingerprint] == "entry does not match its fingerprint"
    assert result.new_balance == OPENING + Decimal("3500.00")


def test_deleted_category_errors_only_that_row(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    soft_delete_category(database_url=url, category_id=seeded.categories["Groceries"])

    result = api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    assert (result.imported, result.errored) == (1, 1)
    (error,) = result.errors
    assert error.fingerprint == preview.entries[1].fingerprint
    assert error.reason == f"category {seeded.categories['Groceries']} no longer exists"
    assert result.new_balance == OPENING + Decimal("3500.00")


def test_override_category_and_skip(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    salary, groceries = preview.entries
    decisions = [
        ImportDecision(fingerprint=salary.fingerprint, category_id=seeded.categories["Transfers"]),
        ImportDecision(fingerprint=groceries.fingerprint, skip=True),
    ]

    result = api.commit(seeded.account_id, decisions, preview, database_url=url)

    assert (result.imported, result.skipped) == (1, 1)
    (row,) = ledger_rows(database_url=url, account_id=seeded.account_id)
    assert row.category_id == seeded.categories["Transfers"]
    assert account_balance(database_url=url, account_id=seeded.account_id) == Decimal("4500.00")


def test_commit_for_another_account_fails_validation(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)

    with pytest.raises(CommitError) as exc:
        api.commit(seeded.other_account_id, _approve_all(preview), preview, database_url=url)

    assert exc.value.state == "VALIDATING"
    assert count_entries(database_url=url) == 0


def test_empty_decision_list_leaves_balance(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    result = api.commit(seeded.account_id, [], preview, database_url=url)
    assert result.imported == 0
    assert result.new_balance == OPENING


def test_rule_store_exposes_categories_and_history(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)
    soft_delete_category(database_url=url, category_id=seeded.categories["Cafes"])

    with session_scope(database_url=url) as session:
        store = SqlCategoryRuleStore(session)
        categories = store.list_categories("user-1")
        history = store.categorized_history("user-1", limit=10)
        newest = store.categorized_history("user-1", limit=1)
        other_user = (
            store.list_categories("someone-else"),
            store.categorized_history("someone-else", limit=10),
        )

    assert categories == {
        "Salary": seeded.categories["Salary"],
        "Groceries": seeded.categories["Groceries"],
        "Transfers": seeded.categories["Transfers"],
    }
    assert history == [
        ("Supermercado Día", seeded.categories["Groceries"]),
        ("Nómina Empresa SA", seeded.categories["Salary"]),
    ]
    assert newest == history[:1]
    assert other_user == ({}, [])


def test_headerless_generic_csv_end_to_end(ledger_db):
    url, seeded = ledger_db
    content = (
        b"15/01/2025,Grocery Store,-45.50,1000.00\n"
        b"16/01/2025,Salary,3500.00,4500.00\n"
        b"15/01/2025,Grocery Store,-45.50,1000.00\n"
    )
    preview = api.preview(content, "export.csv", seeded.account_id, database_url=url)

    assert preview.format_key == "generic_comma"
    assert len(preview.entries) == 2
    assert preview.collapsed_rows == 1
    assert preview.skipped_rows == 0
    assert [d.isoformat() for d in preview.date_range] == ["2025-01-15", "2025-01-16"]
    grocery, salary = preview.entries
    # No user rule matches these English descriptions; the built-in catalog does.
    assert grocery.suggested_category.category_id == seeded.categories["Groceries"]
    assert salary.suggested_category.category_id == seeded.categories["Salary"]
    assert salary.suggested_category.rule_id is None

    result = api.commit(seeded.account_id, _approve_all(preview), preview, database_url=url)

    assert (result.imported, result.duplicates) == (2, 0)
    assert account_balance(database_url=url, account_id=seeded.account_id) == (
        OPENING + Decimal("3454.50")
    )


# ---- Concurrent commits ------------------------------------------------------


def _coordinator(session) -> CommitCoordinator:
    return CommitCoordinator(
        accounts=SqlAccountStore(session), ledger=SqlTransactionLedger(session)
    )


def test_overlapping_commits_apply_the_preview_once(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    decisions = _approve_all(preview)

    first, second = get_session(database_url=url), get_session(database_url=url)
    try:
        # The second request reads the account before the first one lands.
        second_account = SqlAccountStore(second).get_account(seeded.account_id)
        assert second_account.current_balance == OPENING

        first_result = _coordinator(first).run(seeded.account_id, decisions, preview)
        first.commit()

        second_result = _coordinator(second).run(seeded.account_id, decisions, preview)
        second.commit()
    finally:
        first.close()
        second.close()

    assert first_result.imported == 2
    assert (second_result.imported, second_result.duplicates) == (0, 2)
    assert second_result.new_balance == OPENING + Decimal("3454.50")
    assert count_entries(database_url=url) == 2
    balance = account_balance(database_url=url, account_id=seeded.account_id)
    assert balance == OPENING + Decimal("3454.50")
    assert balance == OPENING + signed_ledger_sum(database_url=url, account_id=seeded.account_id)


def test_commit_blocked_by_an_open_write_fails_cleanly(ledger_db):
    url, seeded = ledger_db
    preview = api.preview(STATEMENT, FILENAME, seeded.account_id, database_url=url)
    decisions = _approve_all(preview)

    first, second = get_session(database_url=url), get_session(database_url=url)
    try:
        # Keep the lock wait short; the default is several seconds.
        second.connection().exec_driver_sql("PRAGMA busy_timeout = 50")

        first_result = _coordinator(first).run(seeded.account_id, decisions, preview)
        # ``first`` now holds the write lock without having committed.
        blocked = _coordinator(second)
        with pytest.raises(CommitError) as exc:
            blocked.run(seeded.account_id, decisions, preview)
        second.rollback()
        first.commit()
    finally:
        first.close()
        second.close()

    assert first_result.imported == 2
    assert exc.value.state == "APPLYING"
    assert blocked.state == "FAILED"
    assert count_entries(database_url=url) == 2
    assert account_balance(database_url=url, account_id=seeded.account_id) == (
        OPENING + Decimal("3454.50")
    )


# ---- In-memory collaborators -------------------------------------------------


class _Accounts:
    def __init__(self) -> None:
        self.balance = Decimal("10.00")

    def get_account(self, account_id: int, *, for_update: bool = False) -> AccountSnapshot:
        if account_id != 1:
            raise AccountNotFound(account_id)
        return AccountSnapshot(id=1, user_id="u", currency="GBP", current_balance=self.balance)

    def apply_balance_delta(self, account_id: int, signed_delta: Decimal) -> Decimal:
        self.balance += signed_delta
        return self.balance


class _Ledger:
    def __init__(self) -> None:
        self.rows: dict[str, int] = {}

    def exists_by_fingerprint(self, account_id, fingerprint):
        return fingerprint in self.rows

    def find_by_fingerprints(self, account_id, fingerprints):
        return {fp: self.rows[fp] for fp in fingerprints if fp in self.rows}

    def insert(self, account_id, tx, category_id, *, currency):
        self.rows[tx.fingerprint] = len(self.rows) + 1
        return self.rows[tx.fingerprint]

    def has_category(self, category_id, *, user_id=None):
        return True


class _Rules:
    def list_rules(self, user_id):
        return []

    def list_categories(self, user_id):
        return {"Refunds": 7, "Eating out": 8}

    def categorized_history(self, user_id, *, limit):
        return [("Coffee corner", 8), ("COFFEE CORNER 2", 8)]


def test_pipeline_with_in_memory_stores():
    accounts, ledger = _Accounts(), _Ledger()
    content = b"date,description,amount\n2025-03-02,Refund,5.00\n2025-03-01,Coffee,-2.50\n"

    preview = build_preview(
        content, "export.csv", 1, accounts=accounts, ledger=ledger, rules=_Rules()
    )
    assert preview.format_key == "generic_comma"
    # No currency in the document or profile: the account's is used.
    assert preview.currency == "GBP"
    assert [e.transaction.description for e in preview.entries] == ["Coffee", "Refund"]
    coffee, refund = preview.entries
    # Learned from history, then the built-in catalog.
    assert (coffee.suggested_category.category_id, coffee.suggested_category.rule_id) == (8, None)
    assert refund.suggested_category.category_id == 7

    coordinator = CommitCoordinator(accounts=accounts, ledger=ledger)
    result = coordinator.run(1, _approve_all(preview), preview)
    assert result.new_balance == Decimal("12.50")
    assert coordinator.state == "COMMITTED"
    with pytest.raises(RuntimeError):
        coordinator.run(1, [], preview)
