from __future__ import annotations

import io
from datetime import datetime

import pytest
from openpyxl import Workbook

from statement_import.errors import ParseError
from statement_import.ingest.adapters import grid, pattern, tabular
from statement_import.ingest.readers import CFB_MAGIC, decode_text
from statement_import.ingest.utils import detect_shape, extract_records, load_document
from statement_import.profiles import FIELD_ORDER, get_profile
from statement_import.settings import ImportSettings

SETTINGS = ImportSettings()


def _xlsx(rows: list[list[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _field(record, name):
    return record.values[FIELD_ORDER.index(name)]


# ---- Readers / shape ---------------------------------------------------------


def test_decode_text_handles_bom_and_legacy_encodings():
    assert decode_text("\ufeffFecha;Concepto\r\n".encode()) == "Fecha;Concepto\n"
    assert decode_text("Nómina".encode("cp1252")) == "Nómina"


def test_detect_shape_precedence():
    assert detect_shape(b"%PDF-1.7 ...", "statement.csv") == "pattern"
    assert detect_shape(b"PK\x03\x04....", "statement.csv") == "grid"
    assert detect_shape(b"a,b", "movimientos.XLSX") == "grid"
    assert detect_shape(b"a,b", "extracto.txt") == "pattern"
    assert detect_shape(b"a,b", "extracto.csv") == "tabular"
    assert detect_shape(b"a,b", "noext") == "tabular"
    # A known hint decides, whatever the bytes look like.
    assert detect_shape(b"a,b", "x.csv", hint="generic_pdf") == "pattern"


def test_load_document_rejects_empty_and_oversized():
    with pytest.raises(ParseError) as exc:
        load_document(b"", "x.csv", SETTINGS)
    assert exc.value.stage == "read"
    with pytest.raises(ParseError):
        load_document(b"x" * 20, "x.csv", ImportSettings(max_document_bytes=10))
    with pytest.raises(ParseError):
        load_document(b"   \n  ", "x.csv", SETTINGS)


def test_legacy_xls_is_rejected():
    with pytest.raises(ParseError) as exc:
        load_document(CFB_MAGIC + b"\x00" * 64, "old.xls", SETTINGS)
    assert ".xlsx" in exc.value.message


def test_extract_records_rejects_shape_mismatch():
    view = load_document(b"Fecha;Concepto;Importe\n", "x.csv", SETTINGS)
    with pytest.raises(ParseError) as exc:
        extract_records(view, get_profile("generic_pdf"), SETTINGS)
    assert exc.value.stage == "detection"


# ---- Tabular -----------------------------------------------------------------


def test_tabular_finds_header_below_preamble():
    text = (
        "Titular: ANA GARCIA\n"
        "IBAN: ES12 0049 0000 0000 0000\n"
        "\n"
        "Fecha;Concepto;Importe;Saldo\n"
        "01/03/2025;Nómina;3.500,00;4.500,00\n"
        "\n"
        "05/03/2025;Supermercado;-45,50\n"
    )
    view = load_document(text.encode("utf-8"), "x.csv", SETTINGS)
    extraction = tabular.extract(view, get_profile("santander_es"), SETTINGS)

    assert len(extraction.records) == 2
    first, second = extraction.records
    assert _field(first, "date") == "01/03/2025"
    assert _field(first, "amount") == "3.500,00"
    # Short rows are tolerated.
    assert _field(second, "balance") is None
    assert extraction.columns["date"] == 0


def test_tabular_column_names_match_flexibly():
    header = ["Fecha operación", "CONCEPTO", "importe (€)"]
    assert tabular.find_column(header, "Fecha") == 0
    assert tabular.find_column(header, "Concepto") == 1
    assert tabular.find_column(header, "Importe") == 2
    assert tabular.find_column(header, "Saldo") is None


HEADERLESS = (
    b"15/01/2025,Grocery Store,-45.50,1000.00\n"
    b"16/01/2025,Salary,3500.00,4500.00\n"
    b"15/01/2025,Grocery Store,-45.50,1000.00\n"
)


def test_generic_tabular_without_header_reads_by_position():
    view = load_document(HEADERLESS, "export.csv", SETTINGS)
    extraction = tabular.extract(view, get_profile("generic_comma"), SETTINGS)

    assert len(extraction.records) == 3
    first = extraction.records[0]
    assert first.row_index == 0
    assert _field(first, "date") == "15/01/2025"
    assert _field(first, "description") == "Grocery Store"
    assert _field(first, "amount") == "-45.50"
    assert _field(first, "balance") == "1000.00"
    assert extraction.columns["amount"] == 2


def test_bank_tabular_without_header_yields_no_rows():
    # Bank layouts carry no positional fallback.
    view = load_document(b"a;b;c\n1;2;3\n", "x.csv", SETTINGS)
    assert tabular.extract(view, get_profile("santander_es"), SETTINGS).records == ()


def test_tabular_quoted_fields_and_sniffed_delimiter():
    text = 'date,description,amount\n2025-03-01,"Coffee, large",-4.50\n'
    assert tabular.sniff_delimiter(text) == ","
    view = load_document(text.encode(), "x.csv", SETTINGS)
    (record,) = tabular.extract(view, get_profile("generic_comma"), SETTINGS).records
    assert _field(record, "description") == "Coffee, large"


def test_header_signature_needs_exact_column_names():
    bbva = get_profile("bbva_es")
    header = ["Fecha", "Descripción", "Cargo", "Abono", "Saldo"]
    assert tabular.header_signature_matches(bbva, header)
    assert not tabular.header_signature_matches(bbva, ["date", "description", "amount"])


# ---- Grid --------------------------------------------------------------------


def test_column_letters():
    assert grid.column_index("A") == 0
    assert grid.column_index("c") == 2
    assert grid.column_index("AA") == 26
    assert grid.column_index(4) == 4
    with pytest.raises(ValueError):
        grid.column_index("A1")


def test_grid_locates_header_with_markers():
    content = _xlsx(
        [
            ["Banco Santander"],
            ["Titular: Ana Garcia"],
            ["Fecha", "Fecha valor", "Concepto", "Importe", "Saldo"],
            [datetime(2025, 3, 1), datetime(2025, 3, 1), "Nómina", 3500.0, 4500.0],
            [datetime(2025, 3, 5), datetime(2025, 3, 5), "Supermercado", -45.5, 4454.5],
        ]
    )
    view = load_document(content, "movimientos.xlsx", SETTINGS)
    extraction = grid.extract(view, get_profile("santander_es_excel"), SETTINGS)

    assert len(extraction.records) == 2
    first = extraction.records[0]
    assert _field(first, "date") == datetime(2025, 3, 1)
    assert _field(first, "description") == "Nómina"
    assert _field(first, "amount") == 3500.0


def test_grid_letter_locators():
    content = _xlsx(
        [
            ["Fecha", "F. Valor", "Concepto", "Importe", "Saldo"],
            ["01/03/2025", "02/03/2025", "Recibo luz", "-60,00", "940,00"],
        ]
    )
    view = load_document(content, "bbva.xlsx", SETTINGS)
    (record,) = grid.extract(view, get_profile("bbva_es_excel_v2"), SETTINGS).records
    assert _field(record, "description") == "Recibo luz"
    assert _field(record, "amount") == "-60,00"


# ---- Pattern -----------------------------------------------------------------


def test_pattern_normalizes_whitespace():
    assert pattern.normalize_text("a\t\tb   c\r\nd") == "a b c\nd"


def test_pattern_extraction_dedupes_repeated_matches():
    text = (
        "01/03/2025 NOMINA EMPRESA SA 3.500,00 4.500,00\n"
        "05/03/2025 SUPERMERCADO DIA -45,50 4.454,50\n"
        "Página 2\n"
        "05/03/2025 SUPERMERCADO DIA -45,50 4.454,50\n"
    )
    view = load_document(text.encode(), "extracto.txt", SETTINGS)
    extraction = pattern.extract(view, get_profile("santander_es_pdf"), SETTINGS)

    assert [_field(r, "description") for r in extraction.records] == [
        "NOMINA EMPRESA SA",
        "SUPERMERCADO DIA",
    ]
    assert extraction.skipped == {"repeated_match": 1}
    assert _field(extraction.records[1], "balance") == "4.454,50"


def test_pattern_extraction_is_capped():
    line = "{d:02d}/03/2025 Compra {d} -1,00 10,00\n"
    text = "".join(line.format(d=d) for d in range(1, 29))
    view = load_document(text.encode(), "extracto.txt", SETTINGS)
    capped = ImportSettings(max_pattern_matches=5)
    extraction = pattern.extract(view, get_profile("santander_es_pdf"), capped)
    assert len(extraction.records) == 5
