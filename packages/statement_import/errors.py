"""Error taxonomy for ``statement_import``.

Row-level defects (a bad date, an unparsable amount) are never raised; they
are counted on the preview. Only whole-document and whole-commit failures
surface as exceptions, all deriving from :class:`StatementImportError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import CommitState


class StatementImportError(Exception):
    """Base class for every error raised by this package."""


class ParseError(StatementImportError):
    """A preview failed before any transaction could be produced.

    ``stage`` names where it failed: ``"read"``, ``"detection"`` or
    ``"extraction"``. The message is meant to be shown to an end user.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message


class NoFormatDetected(ParseError):
    def __init__(self, message: str = "could not recognize this file layout") -> None:
        super().__init__("detection", message)


class NoTransactionsExtracted(ParseError):
    def __init__(self, message: str = "no transaction rows found in this file") -> None:
        super().__init__("extraction", message)


class AccountNotFound(StatementImportError):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"account not found: {account_id}")
        self.account_id = account_id


class CommitError(StatementImportError):
    """The whole commit was rolled back.

    Carries the state the coordinator had reached and the per-outcome counts
    accumulated up to the failure, for diagnostics. None of those rows were
    written.
    """

    def __init__(
        self,
        message: str,
        *,
        state: CommitState,
        imported: int = 0,
        skipped: int = 0,
        duplicates: int = 0,
        errored: int = 0,
    ) -> None:
        super().__init__(message)
        self.state = state
        self.imported = imported
        self.skipped = skipped
        self.duplicates = duplicates
        self.errored = errored


__all__ = [
    "AccountNotFound",
    "CommitError",
    "NoFormatDetected",
    "NoTransactionsExtracted",
    "ParseError",
    "StatementImportError",
]
