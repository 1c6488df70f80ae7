"""Bank statement import pipeline.

Public API
----------
- :func:`detect`: choose the format profile for a statement file.
- :func:`preview`: parse, deduplicate and annotate a file for one account.
- :func:`commit`: apply the approved subset of a preview to the ledger.
- :func:`supported_formats`: the profile catalog.
"""

from .api import commit, detect, preview, supported_formats
from .errors import (
    AccountNotFound,
    CommitError,
    NoFormatDetected,
    NoTransactionsExtracted,
    ParseError,
    StatementImportError,
)
from .models import (
    CommitResult,
    ImportDecision,
    NormalizedTransaction,
    Preview,
    PreviewEntry,
    SuggestedCategory,
)
from .profiles import FormatProfile

__all__ = [
    "AccountNotFound",
    "CommitError",
    "CommitResult",
    "FormatProfile",
    "ImportDecision",
    "NoFormatDetected",
    "NoTransactionsExtracted",
    "NormalizedTransaction",
    "ParseError",
    "Preview",
    "PreviewEntry",
    "StatementImportError",
    "SuggestedCategory",
    "commit",
    "detect",
    "preview",
    "supported_formats",
]
