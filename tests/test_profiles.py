from __future__ import annotations

import pytest

from statement_import.ingest.adapters.grid import column_index
from statement_import.profiles import (
    BANKS,
    CATALOG,
    PATTERN_TRIAL_ORDER,
    FieldMap,
    bank_profiles,
    generic_profile,
    get_profile,
    list_profiles,
)
from statement_import.settings import ImportSettings, load_settings


def test_catalog_keys_are_unique_and_lookup_is_case_insensitive():
    keys = [p.key for p in CATALOG]
    assert len(keys) == len(set(keys))
    assert get_profile("SANTANDER_ES") is get_profile("santander_es")
    assert get_profile("nope") is None
    assert get_profile("") is None


def test_every_profile_is_consistent_with_its_shape():
    for p in list_profiles():
        if p.shape == "pattern":
            assert p.pattern is not None, p.key
            pattern = p.compile_pattern()
            groups = [loc for loc in p.fields.locators() if loc is not None]
            assert all(isinstance(g, int) and g <= pattern.groups for g in groups), p.key
        elif p.shape == "grid":
            for loc in p.fields.locators():
                if loc is not None:
                    column_index(loc)
        else:
            assert p.pattern is None, p.key


def test_every_bank_has_a_profile_and_trial_candidates_exist():
    for bank in BANKS:
        assert any(p.bank == bank.key for p in CATALOG), bank.key
    for key in PATTERN_TRIAL_ORDER:
        assert get_profile(key) is not None
        assert get_profile(key).shape == "pattern"


def test_generic_profiles_infer_dates_and_fall_back_to_positions():
    for key in ("generic_comma", "generic_semicolon", "generic_excel"):
        assert get_profile(key).date_order == "AUTO", key
    for key in ("generic_comma", "generic_semicolon"):
        fallback = get_profile(key).fallback_fields
        assert (fallback.date, fallback.description, fallback.amount, fallback.balance) == (
            0,
            1,
            2,
            3,
        )
    assert all(p.fallback_fields is None for p in CATALOG if not p.generic)


def test_field_map_requires_some_amount_locator():
    with pytest.raises(ValueError):
        FieldMap(date="Fecha", description="Concepto")
    assert FieldMap(date=0, description=1, income=2, expense=3).has_split_amounts


def test_variants_come_before_plain_profile():
    keys = [p.key for p in bank_profiles("santander", "grid")]
    assert keys.index("santander_es_excel_v3") < keys.index("santander_es_excel")

    v3 = get_profile("santander_es_excel_v3")
    assert v3.matches_variant("fecha concepto ingresos gastos saldo")
    assert not v3.matches_variant("fecha concepto importe saldo")

    pdf_v2 = get_profile("santander_es_pdf_v2")
    assert pdf_v2.matches_variant("fecha operación fecha valor concepto")
    assert not pdf_v2.matches_variant("fecha operación concepto")


def test_generic_profile_per_shape():
    assert generic_profile("tabular", delimiter=";").key == "generic_semicolon"
    assert generic_profile("tabular", delimiter=",").key == "generic_comma"
    assert generic_profile("tabular").key == "generic_comma"
    assert generic_profile("grid").key == "generic_excel"
    assert generic_profile("pattern").key == "generic_pdf"


def test_compile_pattern_returns_fresh_matchers():
    p = get_profile("generic_pdf")
    assert p.compile_pattern() is not None
    with pytest.raises(ValueError):
        get_profile("santander_es").compile_pattern()


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch):
    assert load_settings() == ImportSettings()

    monkeypatch.setenv("STATEMENT_IMPORT_SNIFF_ROWS", "25")
    monkeypatch.setenv("STATEMENT_IMPORT_MAX_PATTERN_MATCHES", "oops")
    monkeypatch.setenv("STATEMENT_IMPORT_MAX_DOCUMENT_BYTES", "-5")
    s = load_settings()
    assert s.sniff_rows == 25
    assert s.max_pattern_matches == ImportSettings().max_pattern_matches
    assert s.max_document_bytes == ImportSettings().max_document_bytes
