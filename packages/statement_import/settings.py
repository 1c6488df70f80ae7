"""Runtime limits for the import pipeline, read from the environment.

All knobs are optional integers; invalid or non-positive values fall back to
the defaults so a typo in ``.env`` never disables a safety limit.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .logging_setup import get_logger

_log = get_logger("statement_import.settings")


@dataclass(frozen=True, slots=True)
class ImportSettings:
    max_document_bytes: int = 20 * 1024 * 1024
    # Characters of decoded text searched for bank markers during detection.
    content_sniff_chars: int = 4096
    # Leading lines/rows searched for a header or bank markers.
    sniff_rows: int = 10
    max_pattern_matches: int = 20_000
    description_max_length: int = 500
    # Newest categorized ledger entries mined for learned keyword rules.
    history_window: int = 500


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        _log.warning("ignoring non-integer %s=%r; using %d", name, raw, default)
        return default
    if value <= 0:
        _log.warning("ignoring non-positive %s=%r; using %d", name, raw, default)
        return default
    return value


def load_settings() -> ImportSettings:
    """Build :class:`ImportSettings` from ``STATEMENT_IMPORT_*`` variables."""

    d = ImportSettings()
    return ImportSettings(
        max_document_bytes=_int_env("STATEMENT_IMPORT_MAX_DOCUMENT_BYTES", d.max_document_bytes),
        content_sniff_chars=_int_env("STATEMENT_IMPORT_SNIFF_CHARS", d.content_sniff_chars),
        sniff_rows=_int_env("STATEMENT_IMPORT_SNIFF_ROWS", d.sniff_rows),
        max_pattern_matches=_int_env(
            "STATEMENT_IMPORT_MAX_PATTERN_MATCHES", d.max_pattern_matches
        ),
        description_max_length=_int_env(
            "STATEMENT_IMPORT_DESCRIPTION_MAX_LENGTH", d.description_max_length
        ),
        history_window=_int_env("STATEMENT_IMPORT_HISTORY_WINDOW", d.history_window),
    )


__all__ = ["ImportSettings", "load_settings"]
