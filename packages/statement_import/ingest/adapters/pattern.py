"""Parser for statements flattened to free text (PDF text layers, ``.txt``).

The profile's regular expression is applied repeatedly over the whitespace
normalized text; each match is one record, with capture groups as field
locators. Identical (date, description, amount) matches are kept once, which
absorbs page headers/footers repeated by the PDF text layer.

Every call compiles its own matcher from the profile, so no regex state leaks
between documents or between detection and extraction.
"""

from __future__ import annotations

import re
from itertools import islice

from ...logging_setup import get_logger
from ...models import RawRecord
from ...profiles import FIELD_ORDER, FormatProfile, Locator
from ...settings import ImportSettings
from ..view import DocumentView, Extraction

_log = get_logger("statement_import.ingest.adapters.pattern")

_RUNS_OF_SPACES = re.compile(r" {2,}")


def normalize_text(text: str) -> str:
    """CRLF → LF, tabs → spaces, collapse runs of spaces; line structure is kept."""

    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    return _RUNS_OF_SPACES.sub(" ", text)


def count_matches(profile: FormatProfile, text: str, *, limit: int) -> int:
    """Count matches of the profile's pattern, stopping at ``limit``."""

    matcher = profile.compile_pattern()
    return sum(1 for _ in islice(matcher.finditer(normalize_text(text)), limit))


def _group(match: re.Match[str], locator: Locator | None) -> str | None:
    if locator is None or not isinstance(locator, int) or locator > (match.re.groups or 0):
        return None
    value = match.group(locator)
    if value is None:
        return None
    value = value.strip()
    return value or None


def extract(view: DocumentView, profile: FormatProfile, settings: ImportSettings) -> Extraction:
    matcher = profile.compile_pattern()
    text = normalize_text(view.text)
    locators = profile.fields.locators()

    records: list[RawRecord] = []
    seen: set[tuple[str | None, str | None, str | None]] = set()
    repeated = 0
    for idx, match in enumerate(islice(matcher.finditer(text), settings.max_pattern_matches)):
        values = tuple(_group(match, loc) for loc in locators)
        key = (values[0], values[1], values[2])
        if key in seen:
            repeated += 1
            continue
        seen.add(key)
        records.append(RawRecord(row_index=idx, values=values))

    if len(records) + repeated >= settings.max_pattern_matches:
        _log.warning(
            "profile %s: stopped after %d matches (STATEMENT_IMPORT_MAX_PATTERN_MATCHES)",
            profile.key,
            settings.max_pattern_matches,
        )
    _log.debug("profile %s: %d matches, %d repeated", profile.key, len(records), repeated)

    columns = {
        name: (loc if isinstance(loc, int) else None)
        for name, loc in zip(FIELD_ORDER, locators, strict=True)
    }
    skipped = {"repeated_match": repeated} if repeated else {}
    return Extraction(records=tuple(records), columns=columns, skipped=skipped)


__all__ = ["count_matches", "extract", "normalize_text"]
