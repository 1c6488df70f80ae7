"""Parser for spreadsheet statements (``.xlsx``).

Rows below the profile's header row become records. Column locators are
0-based indexes or spreadsheet letters (``A`` → 0, ``AA`` → 26). When the
profile lists header markers, the real header row is searched for among the
leading rows, since some exports push it down under a block of account
details.

Cell values are passed through untouched (numbers, ``datetime`` values and
strings); the normalizer owns every interpretation.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ...logging_setup import get_logger
from ...models import RawRecord
from ...profiles import FIELD_ORDER, FormatProfile, Locator
from ...settings import ImportSettings
from ..readers import GridRow, read_grid
from ..view import DocumentView, Extraction

_log = get_logger("statement_import.ingest.adapters.grid")


def column_index(locator: Locator) -> int:
    """Convert an int index or a column letter (``"C"``, ``"AB"``) to a 0-based index."""

    if isinstance(locator, int):
        if locator < 0:
            raise ValueError(f"negative column index: {locator}")
        return locator
    letters = locator.strip().upper()
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"invalid column letter: {locator!r}")
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def _row_text(row: GridRow) -> str:
    return " ".join(str(c) for c in row if c is not None).casefold()


def find_header_row(
    rows: Sequence[GridRow], markers: Sequence[str], *, search_rows: int
) -> int | None:
    for idx, row in enumerate(rows[:search_rows]):
        text = _row_text(row)
        if any(marker in text for marker in markers):
            return idx
    return None


def _is_blank(row: GridRow) -> bool:
    return all(c is None or (isinstance(c, str) and not c.strip()) for c in row)


def _cell(row: GridRow, idx: int | None) -> Any:
    if idx is None or idx >= len(row):
        return None
    value = row[idx]
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _rows_for(view: DocumentView, profile: FormatProfile) -> list[GridRow]:
    if profile.sheet_name is None and profile.sheet_index == 0:
        return list(view.rows)
    return read_grid(view.content, sheet_index=profile.sheet_index, sheet_name=profile.sheet_name)


def extract(view: DocumentView, profile: FormatProfile, settings: ImportSettings) -> Extraction:
    rows = _rows_for(view, profile)

    header_idx = profile.header_row
    if profile.header_markers:
        found = find_header_row(rows, profile.header_markers, search_rows=settings.sniff_rows)
        if found is not None:
            header_idx = found

    columns = {
        name: (column_index(loc) if loc is not None else None)
        for name, loc in zip(FIELD_ORDER, profile.fields.locators(), strict=True)
    }
    positions = [columns[name] for name in FIELD_ORDER]

    records: list[RawRecord] = []
    for idx in range(header_idx + 1, len(rows)):
        row = rows[idx]
        if _is_blank(row):
            continue
        records.append(RawRecord(row_index=idx, values=tuple(_cell(row, p) for p in positions)))

    _log.debug(
        "profile %s: %d rows extracted below header row %d",
        profile.key,
        len(records),
        header_idx,
    )
    return Extraction(records=tuple(records), columns=columns)


__all__ = ["column_index", "extract", "find_header_row"]
