"""Public API for the ``statement_import`` package.

Three entry points cover the whole pipeline:

- :func:`detect`: which profile reads this file.
- :func:`preview`: parse, deduplicate and annotate a file for one account
  without writing anything.
- :func:`commit`: apply the user-approved subset of a preview.

DB and persistence imports stay local to the functions that need them so that
detection works without a configured database.
"""

from __future__ import annotations

from collections.abc import Iterable

from .detect import detect_format
from .models import CommitResult, ImportDecision, Preview
from .profiles import FormatProfile, list_profiles
from .settings import ImportSettings


def detect(
    content: bytes,
    filename: str,
    hint: str | None = None,
    *,
    settings: ImportSettings | None = None,
) -> FormatProfile:
    """Return the format profile for ``content``.

    Raises :class:`~statement_import.errors.NoFormatDetected` when the
    document cannot be read at all; otherwise a generic profile is the last
    resort.
    """

    return detect_format(content, filename, hint, settings=settings)


def preview(
    content: bytes,
    filename: str,
    account_id: int,
    hint: str | None = None,
    *,
    database_url: str | None = None,
    settings: ImportSettings | None = None,
    statement_year: int | None = None,
) -> Preview:
    """Parse ``content`` into an annotated preview for ``account_id``.

    Output
    ------
    A :class:`~statement_import.models.Preview`: entries oldest first, each
    with its fingerprint, duplicate flag and optional category suggestion,
    plus totals and per-reason skipped-row counts.

    Notes
    -----
    - ``statement_year`` completes dates printed without a year (``DD/MM``);
      the current year is used when omitted.
    - Nothing is persisted.
    """

    from .preview import preview_import

    return preview_import(
        content,
        filename,
        account_id,
        hint,
        database_url=database_url,
        settings=settings,
        statement_year=statement_year,
    )


def commit(
    account_id: int,
    decisions: Iterable[ImportDecision],
    preview: Preview,
    *,
    database_url: str | None = None,
) -> CommitResult:
    """Apply ``decisions`` against ``preview`` in one transaction.

    Re-running the same commit is safe: rows already in the ledger are counted
    as duplicates instead of being inserted again.
    """

    from .commit import commit_import

    return commit_import(account_id, decisions, preview, database_url=database_url)


def supported_formats() -> list[FormatProfile]:
    """Every profile in the catalog, in detection order."""

    return list_profiles()


__all__ = ["commit", "detect", "preview", "supported_formats"]
