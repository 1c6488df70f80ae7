"""Format Detector: choose the profile that reads a document.

Detection is an ordered chain of small detector functions. Each inspects the
document and returns a profile or ``None``; the first hit wins:

1. explicit hint naming a known profile;
2. filename keywords (boundary-aware, so ``ing`` does not fire on "billing");
3. bank keywords in the leading slice of the content;
4. header signature (delimited text only): every named column of a bank
   layout is present in the header line;
5. trial extraction (free text only): the first candidate whose pattern
   matches at least twice;
6. the generic profile for the document shape.

Once a bank family is recognized, the most specific variant whose content
markers are present is chosen.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import PurePath

from .errors import NoFormatDetected, ParseError
from .ingest.adapters import pattern, tabular
from .ingest.utils import load_document
from .ingest.view import DocumentView
from .logging_setup import get_logger
from .profiles import (
    BANKS,
    PATTERN_TRIAL_ORDER,
    BankMarkers,
    FormatProfile,
    bank_profiles,
    generic_profile,
    get_profile,
    profiles_for_shape,
)
from .settings import ImportSettings, load_settings

_log = get_logger("statement_import.detect")

# A pattern that matches once may just be matching boilerplate.
MIN_TRIAL_MATCHES = 2


@dataclass(frozen=True, slots=True)
class _Probe:
    view: DocumentView
    hint: str | None
    settings: ImportSettings
    haystack: str


type Detector = Callable[[_Probe], FormatProfile | None]


@lru_cache(maxsize=256)
def _keyword_re(keyword: str) -> re.Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword.casefold()) + r"(?![a-z0-9])")


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    return any(_keyword_re(k).search(text) for k in keywords)


def _variant(bank: BankMarkers, probe: _Probe) -> FormatProfile | None:
    for profile in bank_profiles(bank.key, probe.view.shape):
        if profile.hint_only:
            continue
        if profile.matches_variant(probe.haystack):
            return profile
    return None


def _tabular_header_fits(profile: FormatProfile, probe: _Probe) -> bool:
    rows = tabular.read_rows(
        probe.view.text,
        delimiter=profile.delimiter or tabular.sniff_delimiter(probe.view.text),
        skip_rows=profile.skip_rows,
    )
    return tabular.locate_header(profile, rows, search_rows=probe.settings.sniff_rows) is not None


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


def by_hint(probe: _Probe) -> FormatProfile | None:
    if not probe.hint:
        return None
    profile = get_profile(probe.hint)
    if profile is None:
        _log.warning("ignoring unknown format hint %r", probe.hint)
        return None
    if profile.shape != probe.view.shape:
        _log.warning(
            "ignoring format hint %r: it reads %s documents, not %s",
            probe.hint,
            profile.shape,
            probe.view.shape,
        )
        return None
    return profile


def by_filename(probe: _Probe) -> FormatProfile | None:
    name = PurePath(probe.view.filename or "").name.casefold()
    if not name:
        return None
    for bank in BANKS:
        if _mentions(name, bank.filename_keywords):
            profile = _variant(bank, probe)
            if profile is not None:
                return profile
    return None


def by_content(probe: _Probe) -> FormatProfile | None:
    for bank in BANKS:
        if not _mentions(probe.haystack, bank.content_keywords):
            continue
        profile = _variant(bank, probe)
        if profile is None:
            continue
        # Delimited text names banks in descriptions too ("REVOLUT TOP-UP"),
        # so a content hit must also fit the header.
        if probe.view.shape == "tabular" and not _tabular_header_fits(profile, probe):
            continue
        return profile
    return None


def by_header_signature(probe: _Probe) -> FormatProfile | None:
    if probe.view.shape != "tabular":
        return None
    sniffed = tabular.sniff_delimiter(probe.view.text, sample_lines=probe.settings.sniff_rows)
    rows = tabular.read_rows(probe.view.text, delimiter=sniffed)
    leading = [r for r in rows if any(c.strip() for c in r)][: probe.settings.sniff_rows]
    headers = [[c.strip() for c in r] for r in leading]
    for profile in profiles_for_shape("tabular"):
        if profile.generic or profile.hint_only:
            continue
        if profile.delimiter is not None and profile.delimiter != sniffed:
            continue
        if any(tabular.header_signature_matches(profile, h) for h in headers):
            return profile
    return None


def by_trial_extraction(probe: _Probe) -> FormatProfile | None:
    if probe.view.shape != "pattern":
        return None
    for key in PATTERN_TRIAL_ORDER:
        profile = get_profile(key)
        if profile is None:  # pragma: no cover - catalog authoring guard
            continue
        hits = pattern.count_matches(profile, probe.view.text, limit=MIN_TRIAL_MATCHES)
        _log.debug("trial %s: %d match(es)", key, hits)
        if hits >= MIN_TRIAL_MATCHES:
            return profile
    return None


def by_generic_fallback(probe: _Probe) -> FormatProfile | None:
    delimiter = None
    if probe.view.shape == "tabular":
        delimiter = tabular.sniff_delimiter(probe.view.text, sample_lines=probe.settings.sniff_rows)
    return generic_profile(probe.view.shape, delimiter=delimiter)


DETECTORS: tuple[tuple[str, Detector], ...] = (
    ("hint", by_hint),
    ("filename", by_filename),
    ("content", by_content),
    ("header", by_header_signature),
    ("trial", by_trial_extraction),
    ("fallback", by_generic_fallback),
)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def detect_profile(
    view: DocumentView,
    *,
    hint: str | None = None,
    settings: ImportSettings | None = None,
) -> FormatProfile:
    """Run the detector chain over an already-read document."""

    settings = settings or load_settings()
    probe = _Probe(view=view, hint=hint, settings=settings, haystack=view.haystack(settings))
    for stage, detector in DETECTORS:
        profile = detector(probe)
        if profile is not None:
            _log.info("detected format %s for %r via %s", profile.key, view.filename, stage)
            return profile
    raise NoFormatDetected()  # pragma: no cover - the fallback always answers


def detect_format(
    content: bytes,
    filename: str,
    hint: str | None = None,
    *,
    settings: ImportSettings | None = None,
) -> FormatProfile:
    """Return the profile for ``content``; raise ``NoFormatDetected`` if unreadable."""

    settings = settings or load_settings()
    try:
        view = load_document(content, filename, settings, hint=hint)
    except ParseError as exc:
        if isinstance(exc, NoFormatDetected):
            raise
        raise NoFormatDetected(f"could not recognize this file layout: {exc.message}") from exc
    return detect_profile(view, hint=hint, settings=settings)


__all__ = [
    "DETECTORS",
    "MIN_TRIAL_MATCHES",
    "by_content",
    "by_filename",
    "by_generic_fallback",
    "by_header_signature",
    "by_hint",
    "by_trial_extraction",
    "detect_format",
    "detect_profile",
]
