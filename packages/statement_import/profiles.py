"""Format Profile Registry: the static catalog of bank export layouts.

A :class:`FormatProfile` is pure data. It says which document shape it reads,
where each transaction field lives, and how dates and numbers are written.
Supporting a new bank layout means appending a profile here; no parser or
detector code changes.

Locators
--------
A field locator is interpreted per shape:

- ``tabular``: a header name (``str``) matched flexibly against the header
  line, or a 0-based column position (``int``).
- ``grid``: a 0-based column index (``int``) or a spreadsheet column letter
  (``"A"``, ``"AA"``).
- ``pattern``: a regex capture-group number (``int``).

Variants
--------
Profiles of the same ``bank`` and shape are ordered: variants carrying
``requires_all``/``requires_any`` content markers come before the plain
profile, so detection can pick the most specific layout once the bank is
known. Profiles flagged ``hint_only`` are never auto-detected.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

from .models import DocumentShape

type Locator = int | str
# ``AUTO`` picks one order per date column from the values themselves.
type DateOrder = Literal["DMY", "MDY", "YMD", "AUTO"]
# ``AUTO`` infers the decimal separator per value (last separator wins).
type NumberConvention = Literal["EUROPEAN", "AMERICAN", "AUTO"]

# Order of values in every ``RawRecord.values`` tuple.
FIELD_ORDER: tuple[str, ...] = (
    "date",
    "description",
    "amount",
    "income",
    "expense",
    "balance",
    "reference",
)


@dataclass(frozen=True, slots=True)
class FieldMap:
    date: Locator
    description: Locator
    amount: Locator | None = None
    income: Locator | None = None
    expense: Locator | None = None
    balance: Locator | None = None
    reference: Locator | None = None

    def __post_init__(self) -> None:
        if self.amount is None and self.income is None and self.expense is None:
            raise ValueError("FieldMap needs an amount locator or an income/expense pair")

    def locators(self) -> tuple[Locator | None, ...]:
        return tuple(getattr(self, name) for name in FIELD_ORDER)

    @property
    def has_split_amounts(self) -> bool:
        return self.income is not None or self.expense is not None


@dataclass(frozen=True, slots=True)
class BankMarkers:
    """Evidence used to recognize a bank family from a filename or content."""

    key: str
    filename_keywords: tuple[str, ...]
    content_keywords: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FormatProfile:
    key: str
    name: str
    shape: DocumentShape
    fields: FieldMap
    bank: str | None = None
    version: int = 1
    date_order: DateOrder = "DMY"
    number_convention: NumberConvention = "EUROPEAN"
    default_currency: str | None = None
    # Variant selection inside a bank family (lower-cased substrings).
    requires_all: tuple[str, ...] = ()
    requires_any: tuple[str, ...] = ()
    hint_only: bool = False
    generic: bool = False
    # Tabular
    delimiter: str | None = None
    skip_rows: int = 0
    # Positional locators read from the first row when no header line is found.
    fallback_fields: FieldMap | None = None
    # Grid
    header_row: int = 0
    header_markers: tuple[str, ...] = ()
    sheet_index: int = 0
    sheet_name: str | None = None
    # Pattern
    pattern: str | None = None
    pattern_flags: int = 0

    def compile_pattern(self) -> re.Pattern[str]:
        """Return a freshly compiled matcher; callers never share match state."""

        if self.pattern is None:
            raise ValueError(f"profile {self.key!r} has no pattern")
        return re.compile(self.pattern, self.pattern_flags)

    def matches_variant(self, haystack: str) -> bool:
        """True when lower-cased ``haystack`` carries this profile's markers."""

        if any(marker not in haystack for marker in self.requires_all):
            return False
        if self.requires_any and not any(marker in haystack for marker in self.requires_any):
            return False
        return True


# ---------------------------------------------------------------------------
# Bank families (detection order)
# ---------------------------------------------------------------------------

BANKS: tuple[BankMarkers, ...] = (
    BankMarkers("santander", ("santander",), ("banco santander", "santander")),
    BankMarkers("bbva", ("bbva",), ("bbva",)),
    BankMarkers("caixabank", ("caixa", "lacaixa", "caixabank"), ("caixabank", "la caixa")),
    BankMarkers("sabadell", ("sabadell",), ("banc sabadell", "sabadell")),
    BankMarkers("ing", ("ing",), ("ing direct", "ing españa", "ing bank")),
    BankMarkers("bankinter", ("bankinter",), ("bankinter",)),
    BankMarkers("unicaja", ("unicaja",), ("unicaja",)),
    BankMarkers("openbank", ("openbank",), ("openbank",)),
    BankMarkers("revolut", ("revolut",), ("revolut",)),
    BankMarkers("n26", ("n26",), ("n26",)),
    BankMarkers("wise", ("wise", "transferwise"), ("transferwise", "wise")),
)


# ---------------------------------------------------------------------------
# Pattern building blocks
# ---------------------------------------------------------------------------

_D_DMY = r"(\d{2}/\d{2}/\d{4})"
_EU_SIGNED = r"([\-\+]?\d{1,3}(?:\.\d{3})*,\d{2})"
_EU_BALANCE = r"(\d{1,3}(?:\.\d{3})*,\d{2})"

_FOUR_COLUMN_LINE = _D_DMY + r"\s+(.+?)\s+" + _EU_SIGNED + r"\s+" + _EU_BALANCE
_PATTERN_FIELDS = FieldMap(date=1, description=2, amount=3, balance=4)
_PATTERN_FIELDS_NO_BALANCE = FieldMap(date=1, description=2, amount=3)


# date, description, signed amount, balance
_POSITIONAL = FieldMap(date=0, description=1, amount=2, balance=3)


def _tabular(key: str, name: str, bank: str | None, fields: FieldMap, **kw) -> FormatProfile:
    return FormatProfile(key=key, name=name, shape="tabular", bank=bank, fields=fields, **kw)


def _grid(key: str, name: str, bank: str | None, fields: FieldMap, **kw) -> FormatProfile:
    kw.setdefault("default_currency", "EUR")
    return FormatProfile(key=key, name=name, shape="grid", bank=bank, fields=fields, **kw)


def _pattern(
    key: str, name: str, bank: str | None, pattern: str, fields: FieldMap, **kw
) -> FormatProfile:
    kw.setdefault("default_currency", "EUR")
    return FormatProfile(
        key=key, name=name, shape="pattern", bank=bank, fields=fields, pattern=pattern, **kw
    )


_EU_CSV = {
    "delimiter": ";",
    "date_order": "DMY",
    "number_convention": "EUROPEAN",
    "default_currency": "EUR",
}

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

CATALOG: tuple[FormatProfile, ...] = (
    # -- Delimited text -----------------------------------------------------
    _tabular(
        "santander_es",
        "Santander España",
        "santander",
        FieldMap(date="Fecha", description="Concepto", amount="Importe", balance="Saldo"),
        **_EU_CSV,
    ),
    _tabular(
        "bbva_es",
        "BBVA España",
        "bbva",
        FieldMap(
            date="Fecha", description="Descripción", income="Abono", expense="Cargo",
            balance="Saldo",
        ),
        **_EU_CSV,
    ),
    _tabular(
        "caixabank_es",
        "CaixaBank",
        "caixabank",
        FieldMap(
            date="Fecha Operación", description="Concepto", amount="Importe", balance="Saldo"
        ),
        **_EU_CSV,
    ),
    _tabular(
        "ing_es",
        "ING España",
        "ing",
        FieldMap(
            date="F. Valor", description="Descripción", amount="Importe (€)",
            balance="Saldo (€)",
        ),
        **_EU_CSV,
    ),
    _tabular(
        "sabadell_es",
        "Banco Sabadell",
        "sabadell",
        FieldMap(date="Fecha", description="Concepto", amount="Importe", balance="Saldo"),
        **_EU_CSV,
    ),
    _tabular(
        "revolut",
        "Revolut",
        "revolut",
        FieldMap(
            date="Started Date", description="Description", amount="Amount", balance="Balance"
        ),
        delimiter=",",
        date_order="YMD",
        number_convention="AMERICAN",
    ),
    _tabular(
        "n26",
        "N26",
        "n26",
        FieldMap(
            date="Date", description="Payee", amount="Amount (EUR)", balance="Account balance"
        ),
        delimiter=",",
        date_order="YMD",
        number_convention="AMERICAN",
        default_currency="EUR",
    ),
    _tabular(
        "wise",
        "Wise (TransferWise)",
        "wise",
        FieldMap(
            date="Date", description="Description", amount="Amount", balance="Running Balance",
            reference="TransferWise ID",
        ),
        delimiter=",",
        date_order="DMY",
        number_convention="AMERICAN",
    ),
    _tabular(
        "generic_comma",
        "Generic CSV (comma)",
        None,
        FieldMap(date="date", description="description", amount="amount", balance="balance"),
        delimiter=",",
        date_order="AUTO",
        number_convention="AUTO",
        generic=True,
        fallback_fields=_POSITIONAL,
    ),
    _tabular(
        "generic_semicolon",
        "Generic CSV (semicolon)",
        None,
        FieldMap(date="fecha", description="descripcion", amount="importe", balance="saldo"),
        delimiter=";",
        date_order="AUTO",
        number_convention="EUROPEAN",
        generic=True,
        fallback_fields=_POSITIONAL,
    ),
    # -- Spreadsheets ---------------------------------------------------------
    _grid(
        "santander_es_excel_v3",
        "Santander España (Excel, income/expense columns)",
        "santander",
        FieldMap(date=0, description=1, income=2, expense=3, balance=4),
        version=3,
        requires_any=("ingresos", "gastos"),
    ),
    _grid(
        "santander_es_excel",
        "Santander España (Excel)",
        "santander",
        FieldMap(date=0, description=2, amount=3, balance=4),
        header_markers=("fecha", "concepto"),
    ),
    _grid(
        "santander_es_excel_v2",
        "Santander España (Excel, extended header)",
        "santander",
        FieldMap(date=0, description=2, amount=3, balance=4),
        version=2,
        header_row=4,
        header_markers=("fecha", "concepto"),
        hint_only=True,
    ),
    _grid(
        "bbva_es_excel",
        "BBVA España (Excel)",
        "bbva",
        FieldMap(date=0, description=2, amount=3, balance=4),
    ),
    _grid(
        "bbva_es_excel_v2",
        "BBVA España (Excel, value date)",
        "bbva",
        FieldMap(date="A", description="C", amount="D", balance="E"),
        version=2,
        hint_only=True,
    ),
    _grid(
        "caixabank_excel",
        "CaixaBank (Excel)",
        "caixabank",
        FieldMap(date=0, description=1, amount=2, balance=3),
    ),
    _grid(
        "sabadell_excel",
        "Banco Sabadell (Excel)",
        "sabadell",
        FieldMap(date=0, description=2, amount=3, balance=4),
    ),
    _grid(
        "ing_es_excel",
        "ING España (Excel)",
        "ing",
        FieldMap(date=0, description=1, income=2, expense=3, balance=4),
    ),
    _grid(
        "bankinter_excel",
        "Bankinter (Excel)",
        "bankinter",
        FieldMap(date=0, description=2, amount=3, balance=4),
    ),
    _grid(
        "unicaja_excel",
        "Unicaja (Excel)",
        "unicaja",
        FieldMap(date=0, description=1, amount=2, balance=3),
    ),
    _grid(
        "openbank_excel",
        "Openbank (Excel)",
        "openbank",
        FieldMap(date=0, description=1, amount=2, balance=3),
    ),
    _grid(
        "generic_excel",
        "Generic spreadsheet",
        None,
        _POSITIONAL,
        date_order="AUTO",
        default_currency=None,
        generic=True,
    ),
    # -- Extracted document text ---------------------------------------------
    _pattern(
        "santander_es_pdf_v2",
        "Santander España (PDF, operation + value date)",
        "santander",
        _D_DMY + r"\s+\d{2}/\d{2}/\d{4}\s+(.+?)\s+" + _EU_SIGNED + r"$",
        _PATTERN_FIELDS_NO_BALANCE,
        version=2,
        pattern_flags=re.MULTILINE,
        requires_all=("fecha operación", "fecha valor"),
    ),
    _pattern(
        "santander_es_pdf",
        "Santander España (PDF)",
        "santander",
        _FOUR_COLUMN_LINE,
        _PATTERN_FIELDS,
    ),
    _pattern(
        "bbva_es_pdf_v2",
        "BBVA España (PDF, value date)",
        "bbva",
        r"(\d{2}/\d{2})\s+(.+?)\s+\d{4}\s+([\-\+]?\d{1,3}(?:\.\d{3})*,\d{2}[\-\+]?)\s+"
        + _EU_BALANCE,
        _PATTERN_FIELDS,
        version=2,
        requires_any=("f.oper", "f.valor"),
    ),
    _pattern(
        "bbva_es_pdf",
        "BBVA España (PDF)",
        "bbva",
        _FOUR_COLUMN_LINE,
        _PATTERN_FIELDS,
    ),
    _pattern(
        "caixabank_pdf",
        "CaixaBank (PDF)",
        "caixabank",
        _D_DMY + r"\s+(.+?)\s+" + _EU_SIGNED + r"\s*€?\s+" + _EU_BALANCE,
        _PATTERN_FIELDS,
    ),
    _pattern(
        "sabadell_pdf",
        "Banco Sabadell (PDF)",
        "sabadell",
        _D_DMY + r"\s+(\d{2}/\d{2}/\d{4})\s+(.+?)\s+" + _EU_SIGNED + r"\s+" + _EU_BALANCE,
        FieldMap(date=1, description=3, amount=4, balance=5),
    ),
    _pattern("ing_es_pdf", "ING España (PDF)", "ing", _FOUR_COLUMN_LINE, _PATTERN_FIELDS),
    _pattern(
        "bankinter_pdf", "Bankinter (PDF)", "bankinter", _FOUR_COLUMN_LINE, _PATTERN_FIELDS
    ),
    _pattern(
        "unicaja_pdf",
        "Unicaja (PDF)",
        "unicaja",
        _D_DMY + r"\s+(.+?)\s+" + _EU_SIGNED,
        _PATTERN_FIELDS_NO_BALANCE,
    ),
    _pattern(
        "generic_es_pdf",
        "Generic Spanish bank statement (PDF)",
        None,
        r"(\d{2}/\d{2}/(?:\d{2}|\d{4}))\s+(.{10,60}?)\s+" + _EU_SIGNED,
        _PATTERN_FIELDS_NO_BALANCE,
    ),
    _pattern(
        "generic_pdf",
        "Generic statement (PDF)",
        None,
        r"(\d{1,2}[/\-\.]\d{1,2}[/\-\.]\d{2,4})\s+(.+?)\s+"
        r"([\-\+]?\d{1,3}(?:[,\.]\d{3})*[,\.]\d{2}|[\-\+]?\d+[,\.]\d{2})(?!\d)",
        _PATTERN_FIELDS_NO_BALANCE,
        number_convention="AUTO",
        default_currency=None,
        generic=True,
    ),
)

# Candidates tried, in order, when a pattern document names no known bank.
PATTERN_TRIAL_ORDER: tuple[str, ...] = (
    "generic_es_pdf",
    "santander_es_pdf",
    "bbva_es_pdf",
    "generic_pdf",
)

_BY_KEY: dict[str, FormatProfile] = {p.key: p for p in CATALOG}
if len(_BY_KEY) != len(CATALOG):  # pragma: no cover - catalog authoring guard
    raise RuntimeError("duplicate profile keys in CATALOG")


def get_profile(key: str) -> FormatProfile | None:
    return _BY_KEY.get(key.strip().lower()) if key else None


def list_profiles() -> list[FormatProfile]:
    return list(CATALOG)


def profiles_for_shape(shape: DocumentShape) -> Iterator[FormatProfile]:
    return (p for p in CATALOG if p.shape == shape)


def bank_profiles(bank: str, shape: DocumentShape) -> list[FormatProfile]:
    """Profiles of one bank family for a shape, in variant-first order."""

    return [p for p in CATALOG if p.bank == bank and p.shape == shape]


def generic_profile(shape: DocumentShape, *, delimiter: str | None = None) -> FormatProfile:
    """Return the fallback profile for a shape.

    Delimited text picks between the comma and semicolon generics using the
    sniffed delimiter.
    """

    if shape == "tabular":
        return _BY_KEY["generic_semicolon" if delimiter == ";" else "generic_comma"]
    if shape == "grid":
        return _BY_KEY["generic_excel"]
    return _BY_KEY["generic_pdf"]


__all__ = [
    "BANKS",
    "CATALOG",
    "FIELD_ORDER",
    "PATTERN_TRIAL_ORDER",
    "BankMarkers",
    "DateOrder",
    "FieldMap",
    "FormatProfile",
    "Locator",
    "NumberConvention",
    "bank_profiles",
    "generic_profile",
    "get_profile",
    "list_profiles",
    "profiles_for_shape",
]
