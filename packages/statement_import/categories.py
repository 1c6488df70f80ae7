"""Category Suggestion Engine.

Keyword rules are evaluated in order against a transaction description and the
first matching rule wins. Matching is accent- and case-insensitive: both sides
go through :func:`normalize_text` before comparison.

A user's rule chain has three tiers, tried in this order:

1. the user's own rules, in their stored order;
2. the built-in catalog (:data:`DEFAULT_RULES`), bound to the user's categories
   by name, so a catalog entry only fires when the user has a category it names;
3. keywords learned from the user's already-categorized ledger entries.

Rules from the last two tiers carry ``rule_id=None``.

Exports
-------
- ``KeywordRule``: one rule (keyword, mode, direction scope).
- ``CatalogRule`` / ``DEFAULT_RULES``: the built-in rules, keyed by category name.
- ``normalize_text(...)``: the comparison form shared by rules and descriptions.
- ``validate_rule(...)``: lightweight checks used before rules are stored.
- ``resolve_catalog(...)`` / ``learn_rules(...)`` / ``build_rule_chain(...)``.
- ``suggest_category(...)`` / ``suggest_all(...)``: apply rules to entries.
"""

from __future__ import annotations

import re
import unicodedata
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Literal

from .logging_setup import get_logger
from .models import Direction, PreviewEntry, SuggestedCategory

_log = get_logger("statement_import.categories")

type MatchMode = Literal["contains", "startsWith", "endsWith"]
type DirectionScope = Literal["ALL", "INCOME", "EXPENSE"]

MATCH_MODES: tuple[str, ...] = ("contains", "startsWith", "endsWith")
DIRECTION_SCOPES: tuple[str, ...] = ("ALL", "INCOME", "EXPENSE")


@dataclass(frozen=True, slots=True)
class KeywordRule:
    rule_id: int | None
    keyword: str
    category_id: int
    match_mode: MatchMode = "contains"
    direction_scope: DirectionScope = "ALL"


def normalize_text(value: str) -> str:
    """Lower-cased, accent-stripped (NFD minus combining marks), single-spaced."""

    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


@dataclass(frozen=True, slots=True)
class RuleValidation:
    ok: bool
    reason: str | None = None


def validate_rule(rule: KeywordRule, *, max_len: int = 100) -> RuleValidation:
    keyword = normalize_text(rule.keyword)
    if not keyword:
        return RuleValidation(False, "Keyword cannot be empty")
    if len(keyword) > max_len:
        return RuleValidation(False, f"Keyword must be at most {max_len} characters")
    if rule.match_mode not in MATCH_MODES:
        return RuleValidation(False, f"Unsupported match mode: {rule.match_mode!r}")
    if rule.direction_scope not in DIRECTION_SCOPES:
        return RuleValidation(False, f"Unsupported direction scope: {rule.direction_scope!r}")
    return RuleValidation(True, None)


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CatalogRule:
    """A built-in rule naming its target category instead of an id.

    ``category_names`` are candidate names in preference order; the first one
    the user has a category for is used.
    """

    keyword: str
    category_names: tuple[str, ...]
    match_mode: MatchMode = "contains"
    direction_scope: DirectionScope = "ALL"


def _rules(
    keywords: Iterable[str],
    names: tuple[str, ...],
    *,
    scope: DirectionScope = "ALL",
    mode: MatchMode = "contains",
) -> tuple[CatalogRule, ...]:
    return tuple(CatalogRule(k, names, mode, scope) for k in keywords)


_SALARY = ("salary", "salario", "nomina", "sueldo", "income", "ingresos")
_BIZUM = ("bizum", "transfers", "transferencias")
_TRANSFERS = ("transfers", "transferencias")
_GROCERIES = ("groceries", "supermercado", "alimentacion", "food")
_RESTAURANTS = ("restaurants", "restaurantes", "eating out", "cafes")
_TRANSPORT = ("transport", "transporte", "transporte publico")
_FUEL = ("fuel", "gasolina", "transport", "transporte")
_SUBSCRIPTIONS = ("subscriptions", "suscripciones")
_UTILITIES = ("utilities", "suministros", "electricidad/gas", "telefono/internet")
_HEALTH = ("pharmacy", "farmacia", "health", "salud")
_CASH = ("cash", "cajero", "efectivo")
_FEES = ("bank fees", "comisiones bancarias", "comisiones", "fees")
_HOUSING = ("rent", "alquiler", "housing", "vivienda", "hipoteca")
_REFUNDS = ("refunds", "reembolsos", "devoluciones")
_INVESTMENTS = ("investments", "inversiones")

# Ordered: specific phrases come before the generic keywords they contain.
DEFAULT_RULES: tuple[CatalogRule, ...] = (
    *_rules(
        ("nomina", "salary", "payroll", "sueldo", "haberes", "pension", "jubilacion"),
        _SALARY,
        scope="INCOME",
    ),
    *_rules(("bizum de",), ("bizum recibido", *_BIZUM), scope="INCOME"),
    *_rules(("bizum a favor de",), ("bizum enviado", *_BIZUM), scope="EXPENSE"),
    *_rules(("bizum",), _BIZUM),
    *_rules(("transferencia de",), ("transferencias recibidas", *_TRANSFERS), scope="INCOME"),
    *_rules(("transferencia a favor de",), ("transferencias enviadas", *_TRANSFERS)),
    *_rules(("transferencia", "transfer", "traspaso"), _TRANSFERS),
    *_rules(("dividendo", "dividend", "intereses"), _INVESTMENTS, scope="INCOME"),
    *_rules(("reembolso", "refund", "devolucion"), _REFUNDS, scope="INCOME"),
    *_rules(
        ("mercadona", "lidl", "aldi", "carrefour", "alcampo", "eroski", "supermercado",
         "supermarket", "grocery", "hipercor"),
        _GROCERIES,
    ),
    *_rules(
        ("uber eats", "just eat", "glovo", "deliveroo", "restaurante", "restaurant",
         "cafeteria", "starbucks", "telepizza", "burger king", "mcdonald"),
        _RESTAURANTS,
    ),
    *_rules(("repsol", "cepsa", "galp", "gasolinera", "plenoil", "ballenoil"), _FUEL),
    *_rules(("renfe", "cabify", "taxi", "metro de", "abono transporte"), _TRANSPORT),
    *_rules(
        ("netflix", "spotify", "hbo", "disney+", "amazon prime", "apple.com", "youtube premium"),
        _SUBSCRIPTIONS,
    ),
    *_rules(
        ("iberdrola", "endesa", "naturgy", "movistar", "vodafone", "orange", "canal de isabel"),
        _UTILITIES,
    ),
    *_rules(("farmacia", "pharmacy"), _HEALTH),
    *_rules(("alquiler", "hipoteca"), _HOUSING, scope="EXPENSE"),
    *_rules(("cajero", "retirada efectivo", "reintegro"), _CASH, scope="EXPENSE"),
    *_rules(("comision", "commission"), _FEES, scope="EXPENSE"),
)


def resolve_catalog(
    categories: Mapping[str, int], catalog: Iterable[CatalogRule] = DEFAULT_RULES
) -> list[KeywordRule]:
    """Bind catalog rules to ``categories`` (name → id); unmatched rules are dropped."""

    by_name = {normalize_text(name): category_id for name, category_id in categories.items()}
    bound: list[KeywordRule] = []
    for rule in catalog:
        category_id = next(
            (by_name[n] for n in map(normalize_text, rule.category_names) if n in by_name),
            None,
        )
        if category_id is None:
            continue
        bound.append(
            KeywordRule(
                rule_id=None,
                keyword=rule.keyword,
                category_id=category_id,
                match_mode=rule.match_mode,
                direction_scope=rule.direction_scope,
            )
        )
    return bound


# ---------------------------------------------------------------------------
# Rules learned from history
# ---------------------------------------------------------------------------

_STOP_WORDS = frozenset(
    {
        "para", "with", "from", "pago", "compra", "tarjeta", "card", "payment", "purchase",
        "fecha", "recibo", "cargo", "abono", "operacion", "transaccion", "movimiento",
        "contactless", "visa", "mastercard",
    }
)
_NON_WORD = re.compile(r"[^\w\s]|\d|_")


def description_keywords(description: str) -> list[str]:
    """Distinct words of at least four letters, minus digits and filler words."""

    words = _NON_WORD.sub(" ", normalize_text(description)).split()
    return list(dict.fromkeys(w for w in words if len(w) > 3 and w not in _STOP_WORDS))


def learn_rules(history: Iterable[tuple[str, int]], *, min_count: int = 2) -> list[KeywordRule]:
    """Rules mined from ``(description, category_id)`` pairs already in the ledger.

    A keyword is learned when it was seen at least ``min_count`` times and
    always with the same category. More frequent keywords come first.
    """

    seen: defaultdict[str, Counter[int]] = defaultdict(Counter)
    for description, category_id in history:
        for word in description_keywords(description):
            seen[word][category_id] += 1

    learned: list[tuple[int, str, int]] = []
    for word, counts in seen.items():
        if len(counts) != 1:
            continue
        ((category_id, count),) = counts.items()
        if count >= min_count:
            learned.append((count, word, category_id))
    learned.sort(key=lambda item: (-item[0], item[1]))
    return [KeywordRule(rule_id=None, keyword=w, category_id=c) for _, w, c in learned]


def build_rule_chain(
    user_rules: Sequence[KeywordRule],
    categories: Mapping[str, int],
    history: Iterable[tuple[str, int]] = (),
) -> list[KeywordRule]:
    """User rules, then the bound catalog, then learned keywords."""

    catalog = resolve_catalog(categories)
    learned = learn_rules(history)
    _log.debug(
        "rule chain: %d user, %d catalog, %d learned",
        len(user_rules),
        len(catalog),
        len(learned),
    )
    return [*user_rules, *catalog, *learned]


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _matches(rule: KeywordRule, text: str) -> bool:
    keyword = normalize_text(rule.keyword)
    if not keyword:
        return False
    if rule.match_mode == "startsWith":
        return text.startswith(keyword)
    if rule.match_mode == "endsWith":
        return text.endswith(keyword)
    if rule.match_mode == "contains":
        return keyword in text
    return False


def suggest_category(
    description: str,
    direction: Direction,
    rules: Sequence[KeywordRule],
) -> SuggestedCategory | None:
    """Return the first rule that applies to ``description``, or ``None``."""

    text = normalize_text(description)
    if not text:
        return None
    for rule in rules:
        if rule.direction_scope != "ALL" and rule.direction_scope != direction:
            continue
        if _matches(rule, text):
            return SuggestedCategory(category_id=rule.category_id, rule_id=rule.rule_id)
    return None


def suggest_all(
    entries: Iterable[PreviewEntry], rules: Sequence[KeywordRule]
) -> list[PreviewEntry]:
    out: list[PreviewEntry] = []
    hits = 0
    for entry in entries:
        tx = entry.transaction
        suggestion = suggest_category(tx.description, tx.direction, rules)
        if suggestion is not None:
            hits += 1
        out.append(replace(entry, suggested_category=suggestion))
    _log.debug("category rules: %d of %d entries matched", hits, len(out))
    return out


__all__ = [
    "DEFAULT_RULES",
    "DIRECTION_SCOPES",
    "MATCH_MODES",
    "CatalogRule",
    "DirectionScope",
    "KeywordRule",
    "MatchMode",
    "RuleValidation",
    "build_rule_chain",
    "description_keywords",
    "learn_rules",
    "normalize_text",
    "resolve_catalog",
    "suggest_all",
    "suggest_category",
    "validate_rule",
]
