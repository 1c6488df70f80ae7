"""Low-level readers turning uploaded bytes into text or a cell grid.

- Delimited text is decoded as UTF-8 (BOM stripped), falling back to cp1252
  and finally latin-1, which is what many Spanish bank exports use.
- Spreadsheets are read with ``openpyxl`` in read-only, values-only mode.
- PDF statements are flattened to text with ``pdfplumber``; scanned images
  without a text layer yield no text (OCR is out of scope).

Every failure to read a document at all is raised as
:class:`~statement_import.errors.ParseError` with ``stage="read"``.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any

import pdfplumber
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import ParseError
from ..logging_setup import get_logger

_log = get_logger("statement_import.ingest.readers")

PDF_MAGIC = b"%PDF"
ZIP_MAGIC = b"PK\x03\x04"
# Compound File Binary header used by legacy .xls workbooks.
CFB_MAGIC = b"\xd0\xcf\x11\xe0"

type GridRow = tuple[Any, ...]


def decode_text(content: bytes) -> str:
    """Decode delimited/plain text and normalize line endings to ``\\n``."""

    text: str | None = None
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            text = content.decode(encoding)
            break
        except UnicodeDecodeError:
            continue
    if text is None:
        # latin-1 maps every byte, so this never fails.
        text = content.decode("latin-1")
    text = text.lstrip("\ufeff")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def extract_pdf_text(content: bytes) -> str:
    """Return the concatenated text layer of every page of a PDF."""

    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        raise ParseError("read", f"could not read this PDF document: {exc}") from exc
    text = "\n".join(pages)
    _log.debug("extracted %d characters from %d PDF pages", len(text), len(pages))
    return text


def read_grid(
    content: bytes,
    *,
    sheet_index: int = 0,
    sheet_name: str | None = None,
) -> list[GridRow]:
    """Read one worksheet as a list of row tuples (cell values, ``None`` for blanks).

    ``sheet_name`` wins when the workbook has a sheet by that name; otherwise
    ``sheet_index`` selects the sheet (clamped to the first sheet).
    """

    if content.startswith(CFB_MAGIC):
        raise ParseError(
            "read", "legacy .xls workbooks are not supported; re-save the file as .xlsx"
        )
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ParseError("read", f"could not open this spreadsheet: {exc}") from exc
    try:
        if sheet_name is not None and sheet_name in wb.sheetnames:
            ws = wb[sheet_name]
        else:
            sheets = wb.worksheets
            if not sheets:
                raise ParseError("read", "the spreadsheet has no worksheets")
            ws = sheets[sheet_index] if 0 <= sheet_index < len(sheets) else sheets[0]
        rows = [tuple(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()
    _log.debug("read %d rows from sheet %r", len(rows), getattr(ws, "title", sheet_index))
    return rows


__all__ = [
    "CFB_MAGIC",
    "PDF_MAGIC",
    "ZIP_MAGIC",
    "GridRow",
    "decode_text",
    "extract_pdf_text",
    "read_grid",
]
