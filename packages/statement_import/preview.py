"""Preview orchestration: bytes → annotated, not-yet-persisted batch.

Runs the read-only half of the pipeline for one document and one account:
read → detect → extract → normalize → fingerprint → collapse in-batch repeats
→ flag history duplicates → suggest categories. Nothing is written.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, Sequence
from decimal import Decimal

from .categories import build_rule_chain, suggest_all
from .detect import detect_profile
from .duplicates import collapse_batch, fingerprint_records, mark_history
from .errors import NoTransactionsExtracted
from .ingest.utils import extract_records, load_document
from .ingest.view import DocumentView
from .logging_setup import get_logger
from .models import Preview, PreviewEntry
from .normalizers import normalize_records, sniff_currency
from .profiles import FormatProfile
from .settings import ImportSettings, load_settings
from .stores import AccountStore, CategoryRuleStore, TransactionLedger

_log = get_logger("statement_import.preview")


def _document_text(view: DocumentView) -> str:
    if view.shape != "grid":
        return view.text
    return "\n".join(
        " ".join(str(c) for c in row if isinstance(c, str) and c.strip()) for row in view.rows
    )


def resolve_currency(view: DocumentView, profile: FormatProfile, account_currency: str) -> str:
    """Document evidence first, then the profile default, then the account's currency."""

    return sniff_currency(_document_text(view)) or profile.default_currency or account_currency


def _merge_counts(*counts: Mapping[str, int]) -> dict[str, int]:
    total: Counter[str] = Counter()
    for c in counts:
        total.update(c)
    return dict(total)


def summarize(entries: Sequence[PreviewEntry]) -> tuple[Decimal, Decimal]:
    """Income and expense totals over every entry, duplicates included."""

    income = sum(
        (e.transaction.amount for e in entries if e.transaction.direction == "INCOME"),
        Decimal("0"),
    )
    expenses = sum(
        (e.transaction.amount for e in entries if e.transaction.direction == "EXPENSE"),
        Decimal("0"),
    )
    return income, expenses


def build_preview(
    content: bytes,
    filename: str,
    account_id: int,
    *,
    accounts: AccountStore,
    ledger: TransactionLedger,
    rules: CategoryRuleStore,
    hint: str | None = None,
    settings: ImportSettings | None = None,
    statement_year: int | None = None,
) -> Preview:
    """Parse ``content`` and annotate it against ``account_id``'s ledger.

    Raises ``AccountNotFound`` for an unknown account, ``ParseError`` when the
    document cannot be read, and ``NoTransactionsExtracted`` when no row
    survives normalization.
    """

    settings = settings or load_settings()
    account = accounts.get_account(account_id)

    view = load_document(content, filename, settings, hint=hint)
    profile = detect_profile(view, hint=hint, settings=settings)
    extraction = extract_records(view, profile, settings)
    if not extraction.records:
        raise NoTransactionsExtracted()

    normalized = normalize_records(
        extraction.records, profile, settings=settings, statement_year=statement_year
    )
    if not normalized.records:
        raise NoTransactionsExtracted(
            f"no transaction rows found in this file ({len(extraction.records)} row(s) "
            "were unreadable)"
        )

    transactions, collapsed = collapse_batch(fingerprint_records(account_id, normalized.records))
    entries = mark_history(ledger, account_id, transactions)
    chain = build_rule_chain(
        rules.list_rules(account.user_id),
        rules.list_categories(account.user_id),
        rules.categorized_history(account.user_id, limit=settings.history_window),
    )
    entries = suggest_all(entries, chain)

    skipped = _merge_counts(extraction.skipped, normalized.skipped)
    income, expenses = summarize(entries)
    dates = [e.transaction.occurred_on for e in entries]
    preview = Preview(
        account_id=account_id,
        filename=filename,
        format_key=profile.key,
        format_name=profile.name,
        currency=resolve_currency(view, profile, account.currency),
        entries=tuple(entries),
        date_range=(min(dates), max(dates)),
        total_income=income,
        total_expenses=expenses,
        duplicates_found=sum(1 for e in entries if e.is_duplicate),
        skipped_rows=sum(skipped.values()),
        skipped_by_reason=skipped,
        collapsed_rows=collapsed,
    )
    _log.info(
        "preview %r for account %s: format=%s entries=%d duplicates=%d skipped=%d collapsed=%d",
        filename,
        account_id,
        profile.key,
        len(preview.entries),
        preview.duplicates_found,
        preview.skipped_rows,
        collapsed,
    )
    return preview


def preview_import(
    content: bytes,
    filename: str,
    account_id: int,
    hint: str | None = None,
    *,
    database_url: str | None = None,
    settings: ImportSettings | None = None,
    statement_year: int | None = None,
) -> Preview:
    """Build a preview using the shared database session helpers."""

    # Local imports keep ``db`` off the import path for DB-less callers.
    from db.client import session_scope

    from .persistence import SqlAccountStore, SqlCategoryRuleStore, SqlTransactionLedger

    with session_scope(database_url=database_url) as session:
        return build_preview(
            content,
            filename,
            account_id,
            accounts=SqlAccountStore(session),
            ledger=SqlTransactionLedger(session),
            rules=SqlCategoryRuleStore(session),
            hint=hint,
            settings=settings,
            statement_year=statement_year,
        )


__all__ = ["build_preview", "preview_import", "resolve_currency", "summarize"]
