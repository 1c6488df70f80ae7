"""Field Normalizer: raw extracted values → canonical records.

Turns the loosely typed tuples produced by the parsers into
:class:`~statement_import.models.CanonicalRecord` values:

- dates from native ``date``/``datetime`` cells, spreadsheet serial numbers
  (1899-12-30 epoch) or ``/ - .`` delimited strings in the profile's order,
  which generic profiles infer per date column;
- amounts from native numbers or strings written in the profile's number
  convention, with currency symbols, parentheses and trailing signs resolved;
- a direction (``INCOME``/``EXPENSE``) with the amount kept as a magnitude.

Row defects are counted per reason and never raised: ``bad_date``,
``bad_amount``, ``zero_amount`` and ``empty_description``.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .logging_setup import get_logger
from .models import CanonicalRecord, Direction, RawRecord
from .profiles import FIELD_ORDER, DateOrder, FormatProfile, NumberConvention
from .settings import ImportSettings, load_settings

_log = get_logger("statement_import.normalizers")

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_EXCEL_EPOCH = date(1899, 12, 30)
# 9999-12-31 as a spreadsheet serial.
_EXCEL_MAX_SERIAL = 2_958_465
_DATE_SEPARATORS = re.compile(r"[/\-.]")
MIN_YEAR = 1900
MAX_YEAR = 2100


def _expand_year(year: int) -> int:
    if year < 100:
        # Two-digit years: 00-49 → 2000s, 50-99 → 1900s.
        return year + (1900 if year >= 50 else 2000)
    return year


def _date_parts(value: str) -> list[str] | None:
    s = value.strip()
    if not s:
        return None
    token = s.split()[0].split("T", 1)[0]
    parts = _DATE_SEPARATORS.split(token)
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        return None
    return parts


def infer_date_order(values: Iterable[Any]) -> DateOrder:
    """Pick the day/month order of a date column from its own values.

    The first value with unambiguous evidence decides: a four-digit first part
    is ``YMD``, a first part above 12 can only be a day (``DMY``) and a second
    part above 12 can only be a day too (``MDY``). A column with no such value
    is read day-first.
    """

    for value in values:
        if not isinstance(value, str):
            continue
        parts = _date_parts(value)
        if parts is None:
            continue
        if len(parts[0]) == 4:
            return "YMD"
        if int(parts[0]) > 12:
            return "DMY"
        if int(parts[1]) > 12:
            return "MDY"
    return "DMY"


def parse_date(
    value: Any,
    *,
    order: DateOrder = "DMY",
    default_year: int | None = None,
) -> date:
    """Parse a statement date; raise ``ValueError`` when it is not a real date.

    A four-digit first component always reads as year-month-day, whatever
    ``order`` says, and ``AUTO`` decides from this value alone (see
    :func:`infer_date_order`). Two-component dates (``DD/MM``) take
    ``default_year``, or the current year when none is given. A trailing time
    of day is ignored.
    """

    if value is None:
        raise ValueError("date is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid date: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        serial = int(value)
        if not 1 <= serial <= _EXCEL_MAX_SERIAL:
            raise ValueError(f"date serial out of range: {value!r}")
        d = _EXCEL_EPOCH + timedelta(days=serial)
        if not MIN_YEAR <= d.year <= MAX_YEAR:
            raise ValueError(f"date out of range: {d.isoformat()}")
        return d

    s = str(value).strip()
    if not s:
        raise ValueError("date is empty")
    parts = _date_parts(s)
    if parts is None:
        raise ValueError(f"invalid date: {value!r}")

    nums = [int(p) for p in parts]
    if order == "AUTO":
        order = infer_date_order([s])
    if len(parts[0]) == 4:
        order = "YMD"
    if len(nums) == 2:
        if order == "YMD":
            raise ValueError(f"incomplete date: {value!r}")
        year = default_year if default_year is not None else date.today().year
        day, month = (nums[0], nums[1]) if order == "DMY" else (nums[1], nums[0])
    elif order == "DMY":
        day, month, year = nums
    elif order == "MDY":
        month, day, year = nums
    else:
        year, month, day = nums

    year = _expand_year(year)
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValueError(f"year out of range: {value!r}")
    # ``date`` rejects impossible calendar dates (31/02, month 13, ...).
    return date(year, month, day)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

_CURRENCY_TOKENS = re.compile(r"[€$£¥]|\b(?:EUR|USD|GBP)\b", re.IGNORECASE)
_PLAIN_NUMBER = re.compile(r"(?:\d+(?:\.\d*)?|\.\d+)")
_CENT = Decimal("0.01")
_KEY_PLACES = Decimal("0.0001")


def _apply_convention(s: str, convention: NumberConvention) -> str:
    if convention == "EUROPEAN":
        return s.replace(".", "").replace(",", ".")
    if convention == "AMERICAN":
        return s.replace(",", "")
    # AUTO: the last separator present is the decimal point.
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") == 1 and 0 < len(tail) <= 2:
            return f"{head}.{tail}"
        return s.replace(",", "")
    if s.count(".") > 1:
        return s.replace(".", "")
    return s


def parse_amount(value: Any, *, convention: NumberConvention = "EUROPEAN") -> Decimal | None:
    """Parse a signed amount; ``None`` when the cell is empty.

    Raises ``ValueError`` for anything that is present but not a number.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # str() avoids carrying the binary expansion of the float.
        return Decimal(str(value))

    raw = str(value)
    s = "".join(_CURRENCY_TOKENS.sub("", raw).split())
    if not s:
        return None

    negative = False
    # Strip leading/trailing signs and surrounding parentheses in any order,
    # e.g. "-(1.234,56)" or "1.234,56-".
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:]
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:]
            changed = True
        if s.endswith("+"):
            s = s[:-1]
            changed = True
        elif s.endswith("-"):
            negative = True
            s = s[:-1]
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1]
            changed = True
        if not changed:
            break

    s = _apply_convention(s, convention)
    if not _PLAIN_NUMBER.fullmatch(s):
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:  # pragma: no cover - guarded by the regex
        raise ValueError(f"invalid amount: {raw!r}") from exc
    return -d if negative else d


def to_minor_units(d: Decimal) -> Decimal:
    """Keep between two and four decimal places, the precision the ledger stores."""

    exponent = d.as_tuple().exponent
    if not isinstance(exponent, int):
        return d
    if exponent > -2:
        return d.quantize(_CENT, rounding=ROUND_HALF_UP)
    if exponent < -4:
        return d.quantize(_KEY_PLACES, rounding=ROUND_HALF_UP)
    return d


def amount_key(d: Decimal) -> str:
    """Canonical fixed-point text for an amount: ``45.5`` and ``45.5000`` → ``"45.50"``."""

    text = f"{abs(d).quantize(_KEY_PLACES, rounding=ROUND_HALF_UP):f}"
    whole, _, frac = text.partition(".")
    frac = frac.rstrip("0").ljust(2, "0")
    return f"{whole}.{frac}"


def resolve_amount(
    fields: Mapping[str, Any], *, convention: NumberConvention
) -> tuple[Decimal, Direction] | None:
    """Return ``(magnitude, direction)`` or ``None`` for a zero/absent amount.

    Split income/expense columns take precedence: a positive income wins,
    otherwise a non-zero expense is used as a magnitude. A single signed
    column maps positive to income and negative to expense.
    """

    income = parse_amount(fields.get("income"), convention=convention)
    expense = parse_amount(fields.get("expense"), convention=convention)
    if income is not None and income > 0:
        return to_minor_units(income), "INCOME"
    if expense is not None and expense != 0:
        return to_minor_units(abs(expense)), "EXPENSE"
    if income is not None and income < 0:
        # A negative credit is a reversal.
        return to_minor_units(-income), "EXPENSE"

    amount = parse_amount(fields.get("amount"), convention=convention)
    if amount is None or amount == 0:
        return None
    if amount > 0:
        return to_minor_units(amount), "INCOME"
    return to_minor_units(-amount), "EXPENSE"


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def clean_description(value: Any, *, max_length: int = 500) -> str:
    """Strip control characters, collapse whitespace and cap the length."""

    if value is None:
        return ""
    s = _CONTROL_CHARS.sub(" ", str(value))
    s = " ".join(s.split())
    return s[:max_length].rstrip()


_CURRENCY_SNIFF: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("EUR", re.compile(r"€|\bEUR\b", re.IGNORECASE)),
    ("USD", re.compile(r"\$|\bUSD\b", re.IGNORECASE)),
    ("GBP", re.compile(r"£|\bGBP\b", re.IGNORECASE)),
)


def sniff_currency(text: str) -> str | None:
    """Return the first currency evidenced in ``text`` (EUR, then USD, then GBP)."""

    for code, pattern in _CURRENCY_SNIFF:
        if pattern.search(text):
            return code
    return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    records: tuple[CanonicalRecord, ...]
    skipped: Mapping[str, int] = field(default_factory=dict)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())


def normalize_record(
    raw: RawRecord,
    profile: FormatProfile,
    *,
    max_description: int = 500,
    statement_year: int | None = None,
    date_order: DateOrder | None = None,
) -> CanonicalRecord | str:
    """Normalize one record, or return the skip reason as a string.

    ``date_order`` overrides the profile's order, typically with one already
    inferred for the whole column.
    """

    fields = dict(zip(FIELD_ORDER, raw.values, strict=False))
    try:
        occurred_on = parse_date(
            fields.get("date"),
            order=date_order or profile.date_order,
            default_year=statement_year,
        )
    except ValueError:
        return "bad_date"
    try:
        resolved = resolve_amount(fields, convention=profile.number_convention)
    except ValueError:
        return "bad_amount"
    if resolved is None or resolved[0] == 0:
        # Includes amounts that round to zero at the ledger's precision.
        return "zero_amount"
    description = clean_description(fields.get("description"), max_length=max_description)
    if not description:
        return "empty_description"

    try:
        balance = parse_amount(fields.get("balance"), convention=profile.number_convention)
        if balance is not None:
            balance = to_minor_units(balance)
    except ValueError:
        # The running balance is informational only.
        balance = None
    reference = clean_description(fields.get("reference"), max_length=max_description) or None

    amount, direction = resolved
    return CanonicalRecord(
        row_index=raw.row_index,
        occurred_on=occurred_on,
        description=description,
        amount=amount,
        direction=direction,
        running_balance=balance,
        reference=reference,
    )


def normalize_records(
    records: Iterable[RawRecord],
    profile: FormatProfile,
    *,
    settings: ImportSettings | None = None,
    statement_year: int | None = None,
) -> NormalizationResult:
    """Normalize every record, oldest first; defects are counted by reason."""

    settings = settings or load_settings()
    records = list(records)
    date_order: DateOrder | None = None
    if profile.date_order == "AUTO":
        date_idx = FIELD_ORDER.index("date")
        date_order = infer_date_order(
            r.values[date_idx] for r in records if len(r.values) > date_idx
        )
        _log.debug("profile %s: date column read as %s", profile.key, date_order)

    counts: Counter[str] = Counter()
    out: list[CanonicalRecord] = []
    for raw in records:
        result = normalize_record(
            raw,
            profile,
            max_description=settings.description_max_length,
            statement_year=statement_year,
            date_order=date_order,
        )
        if isinstance(result, str):
            counts[result] += 1
            _log.debug("profile %s: row %d skipped (%s)", profile.key, raw.row_index, result)
            continue
        out.append(result)

    # Stable: same-day rows keep their document order.
    out.sort(key=lambda r: r.occurred_on)
    if counts:
        _log.info("profile %s: skipped rows %s", profile.key, dict(counts))
    return NormalizationResult(records=tuple(out), skipped=dict(counts))


__all__ = [
    "MAX_YEAR",
    "MIN_YEAR",
    "NormalizationResult",
    "amount_key",
    "clean_description",
    "infer_date_order",
    "normalize_record",
    "normalize_records",
    "parse_amount",
    "parse_date",
    "resolve_amount",
    "sniff_currency",
    "to_minor_units",
]
