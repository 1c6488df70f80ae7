"""Parser for delimited-text statements (CSV and friends).

Bank exports frequently put a few human-readable lines (account holder, IBAN,
period) above the real header, so the header is located rather than assumed:
the first of the leading lines whose cells contain the profile's date and
description columns is taken as the header and everything below it is data.

Column names are matched flexibly: exact, then case/accent-insensitive, then
by containment in either direction ("Fecha" finds "Fecha operación").

Profiles whose locators are all positional (``int``) skip header location and
read every row after ``skip_rows``. Profiles that carry ``fallback_fields`` read
the whole file by position when no header line turns up.
"""

from __future__ import annotations

import csv
import io
import unicodedata
from collections.abc import Sequence

from ...errors import ParseError
from ...logging_setup import get_logger
from ...models import RawRecord
from ...profiles import FIELD_ORDER, FieldMap, FormatProfile, Locator
from ...settings import ImportSettings
from ..view import DocumentView, Extraction

_log = get_logger("statement_import.ingest.adapters.tabular")

CANDIDATE_DELIMITERS = ";,\t|"


def fold(value: str) -> str:
    """Accent-stripped, case-folded, whitespace-collapsed form for header matching."""

    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.split()).casefold()


def sniff_delimiter(text: str, *, sample_lines: int = 10) -> str:
    """Guess the delimiter from the leading lines, preferring ``csv.Sniffer``."""

    lines = [ln for ln in text.split("\n") if ln.strip()][:sample_lines]
    sample = "\n".join(lines)
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        # Sniffer gives up on ragged preambles; fall back to raw frequency.
        counts = {d: sample.count(d) for d in CANDIDATE_DELIMITERS}
        best = max(counts, key=lambda d: counts[d])
        return best if counts[best] else ","


def find_column(header: Sequence[str], name: str) -> int | None:
    """Return the index of ``name`` within ``header`` using flexible matching."""

    for idx, cell in enumerate(header):
        if cell == name:
            return idx
    target = fold(name)
    if not target:
        return None
    folded = [fold(cell) for cell in header]
    for idx, cell in enumerate(folded):
        if cell == target:
            return idx
    for idx, cell in enumerate(folded):
        if cell and (target in cell or cell in target):
            return idx
    return None


def resolve_columns(
    profile: FormatProfile, header: Sequence[str]
) -> dict[str, int | None] | None:
    """Map every field to a column index, or ``None`` if the header doesn't fit.

    A header fits when date, description and at least one amount column
    resolve.
    """

    columns: dict[str, int | None] = {}
    for name, locator in zip(FIELD_ORDER, profile.fields.locators(), strict=True):
        columns[name] = _resolve(locator, header)
    if columns["date"] is None or columns["description"] is None:
        return None
    if all(columns[n] is None for n in ("amount", "income", "expense")):
        return None
    return columns


def header_signature_matches(profile: FormatProfile, header: Sequence[str]) -> bool:
    """True when every named column of ``profile`` appears in ``header``.

    Unlike :func:`find_column` this requires equality after folding, so a
    generic ``date,description,amount`` header is not mistaken for a bank
    layout that merely contains those words.
    """

    names = [loc for loc in profile.fields.locators() if isinstance(loc, str)]
    if not names:
        return False
    folded = {fold(cell) for cell in header if cell.strip()}
    return all(fold(name) in folded for name in names)


def _resolve(locator: Locator | None, header: Sequence[str]) -> int | None:
    if locator is None:
        return None
    if isinstance(locator, int):
        return locator
    return find_column(header, locator)


def _is_positional(fields: FieldMap) -> bool:
    return all(loc is None or isinstance(loc, int) for loc in fields.locators())


def _positional_columns(fields: FieldMap) -> dict[str, int | None]:
    return dict(zip(FIELD_ORDER, fields.locators(), strict=True))  # type: ignore[arg-type]


def _is_blank(row: Sequence[str]) -> bool:
    return all(not (cell or "").strip() for cell in row)


def _cell(row: Sequence[str], idx: int | None) -> str | None:
    if idx is None or idx >= len(row):
        return None
    value = row[idx].strip()
    return value or None


def read_rows(text: str, *, delimiter: str, skip_rows: int = 0) -> list[list[str]]:
    """Parse delimited text into rows, honoring quoted fields with newlines."""

    lines = text.split("\n")
    remainder = "\n".join(lines[skip_rows:]).replace("\x00", "")
    try:
        return list(csv.reader(io.StringIO(remainder), delimiter=delimiter))
    except csv.Error as exc:
        raise ParseError("read", f"could not parse delimited text: {exc}") from exc


def locate_header(
    profile: FormatProfile,
    rows: Sequence[Sequence[str]],
    *,
    search_rows: int,
) -> tuple[int, dict[str, int | None]] | None:
    """Find the header among the first ``search_rows`` non-blank rows."""

    seen = 0
    for idx, row in enumerate(rows):
        if _is_blank(row):
            continue
        columns = resolve_columns(profile, [c.strip() for c in row])
        if columns is not None:
            return idx, columns
        seen += 1
        if seen >= search_rows:
            break
    return None


def extract(view: DocumentView, profile: FormatProfile, settings: ImportSettings) -> Extraction:
    delimiter = profile.delimiter or sniff_delimiter(view.text, sample_lines=settings.sniff_rows)
    rows = read_rows(view.text, delimiter=delimiter, skip_rows=profile.skip_rows)

    located = None
    if not _is_positional(profile.fields):
        located = locate_header(profile, rows, search_rows=settings.sniff_rows)

    if located is not None:
        header_idx, columns = located
        start = header_idx + 1
    elif _is_positional(profile.fields):
        start, columns = 0, _positional_columns(profile.fields)
    elif profile.fallback_fields is not None:
        _log.info("profile %s: no header found; reading columns by position", profile.key)
        start, columns = 0, _positional_columns(profile.fallback_fields)
    else:
        _log.warning(
            "profile %s: no header with its date/description columns in the first %d rows",
            profile.key,
            settings.sniff_rows,
        )
        return Extraction(records=())

    positions = [columns[name] for name in FIELD_ORDER]
    records: list[RawRecord] = []
    for idx in range(start, len(rows)):
        row = rows[idx]
        if _is_blank(row):
            continue
        records.append(RawRecord(row_index=idx, values=tuple(_cell(row, p) for p in positions)))

    _log.debug(
        "profile %s: %d rows extracted (delimiter=%r, columns=%s)",
        profile.key,
        len(records),
        delimiter,
        columns,
    )
    return Extraction(records=tuple(records), columns=columns)


__all__ = [
    "CANDIDATE_DELIMITERS",
    "extract",
    "find_column",
    "fold",
    "header_signature_matches",
    "locate_header",
    "read_rows",
    "resolve_columns",
    "sniff_delimiter",
]
