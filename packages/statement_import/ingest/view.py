"""Shared shapes passed between document readers, the detector and parsers."""

from __future__ import annotations

import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..models import DocumentShape, RawRecord
from ..settings import ImportSettings
from .readers import GridRow


@dataclass(frozen=True, slots=True)
class DocumentView:
    """A document read once into the form its parser consumes.

    ``text`` is populated for tabular and pattern documents; ``rows`` holds the
    first worksheet of a grid document.
    """

    shape: DocumentShape
    filename: str
    content: bytes
    text: str = ""
    rows: tuple[GridRow, ...] = ()

    def haystack(self, settings: ImportSettings) -> str:
        """Case-folded leading slice of the document used for keyword detection."""

        if self.shape == "grid":
            lines = [
                " ".join(str(c) for c in row if c is not None and str(c).strip())
                for row in self.rows[: settings.sniff_rows]
            ]
            prefix = "\n".join(lines)
        else:
            prefix = self.text[: settings.content_sniff_chars]
        return unicodedata.normalize("NFC", prefix).casefold()


@dataclass(frozen=True, slots=True)
class Extraction:
    """Parser output: raw records plus what the parser resolved and dropped.

    ``columns`` maps each field name to the position the parser read it from
    (``None`` when the profile does not locate that field).
    """

    records: tuple[RawRecord, ...]
    columns: Mapping[str, int | None] = field(default_factory=dict)
    skipped: Mapping[str, int] = field(default_factory=dict)


__all__ = ["DocumentView", "Extraction"]
