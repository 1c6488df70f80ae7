"""Ingest utilities shared by detection, preview and the CLI.

- ``detect_shape``: decide whether a document is tabular, grid or pattern.
- ``load_document``: read the bytes once into a :class:`DocumentView`.
- ``extract_records``: dispatch a view to the parser for a profile's shape.
"""

from __future__ import annotations

from pathlib import PurePath

from ..errors import ParseError
from ..logging_setup import get_logger
from ..models import DocumentShape
from ..profiles import FormatProfile, get_profile
from ..settings import ImportSettings
from .adapters import grid, pattern, tabular
from .readers import CFB_MAGIC, PDF_MAGIC, ZIP_MAGIC, decode_text, extract_pdf_text, read_grid
from .view import DocumentView, Extraction

_log = get_logger("statement_import.ingest.utils")

GRID_EXTENSIONS = (".xlsx", ".xlsm", ".xltx", ".xltm", ".xls")
PATTERN_EXTENSIONS = (".pdf", ".txt")


def detect_shape(content: bytes, filename: str, hint: str | None = None) -> DocumentShape:
    """Return the document shape.

    Precedence: an explicit hint naming a known profile, then magic bytes,
    then the filename extension; anything else is delimited text.
    """

    if hint:
        profile = get_profile(hint)
        if profile is not None:
            return profile.shape
    if content.startswith(PDF_MAGIC):
        return "pattern"
    if content.startswith(ZIP_MAGIC) or content.startswith(CFB_MAGIC):
        return "grid"
    suffix = PurePath(filename or "").suffix.lower()
    if suffix in GRID_EXTENSIONS:
        return "grid"
    if suffix in PATTERN_EXTENSIONS:
        return "pattern"
    return "tabular"


def load_document(
    content: bytes,
    filename: str,
    settings: ImportSettings,
    *,
    hint: str | None = None,
) -> DocumentView:
    """Read ``content`` once into the representation its parser needs."""

    if not content:
        raise ParseError("read", "the file is empty")
    if len(content) > settings.max_document_bytes:
        raise ParseError(
            "read",
            f"the file is too large ({len(content)} bytes; limit {settings.max_document_bytes})",
        )

    shape = detect_shape(content, filename, hint)
    _log.debug("document %r: shape=%s size=%d", filename, shape, len(content))
    if shape == "grid":
        return DocumentView(
            shape=shape, filename=filename, content=content, rows=tuple(read_grid(content))
        )
    if shape == "pattern" and content.startswith(PDF_MAGIC):
        text = extract_pdf_text(content)
    else:
        text = decode_text(content)
    if not text.strip():
        raise ParseError("read", "the document has no readable text")
    return DocumentView(shape=shape, filename=filename, content=content, text=text)


def extract_records(
    view: DocumentView, profile: FormatProfile, settings: ImportSettings
) -> Extraction:
    """Run the parser matching ``profile.shape`` over ``view``."""

    if profile.shape != view.shape:
        raise ParseError(
            "detection",
            f"format {profile.name!r} reads {profile.shape} documents, "
            f"but this file is {view.shape}",
        )
    if profile.shape == "tabular":
        return tabular.extract(view, profile, settings)
    if profile.shape == "grid":
        return grid.extract(view, profile, settings)
    return pattern.extract(view, profile, settings)


__all__ = [
    "GRID_EXTENSIONS",
    "PATTERN_EXTENSIONS",
    "detect_shape",
    "extract_records",
    "load_document",
]
