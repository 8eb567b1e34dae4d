import asyncio
from decimal import Decimal

import pytest

from imports import DataUtils, import_week, normalize_header, normalize_rows, read_csv_rows
from models import UnmappedImportEntry, WeeklyPlatformAggregate

D = Decimal


@pytest.mark.parametrize("raw,expected", [
    ("1.234,56", D("1234.56")),
    ("1,234.56", D("1234.56")),
    ("12,5 €", D("12.5")),
    ("€ 99", D("99")),
    ("-3,20", D("-3.20")),
    (7, D("7")),
    (2.5, D("2.5")),
    ("", None),
    ("abc", None),
    (None, None),
])
def test_parse_number(raw, expected):
    assert DataUtils.parse_number(raw) == expected


def test_normalize_header():
    assert normalize_header("  Pago   a SI ") == "pago a si"
    assert normalize_header(None) == ""


def test_uber_rows_with_portuguese_and_english_headers():
    rows, stats = normalize_rows("uber", [
        {"UUID do motorista": "uuid-1", "Nome do motorista": "Ana", "Pago a si": "1.020,40", "Viagens": "31"},
        {"Driver UUID": "uuid-2", "Paid to you": "88.10", "Trips": "4"},
    ])

    assert rows == [
        {"referenceKey": "uuid-1", "plate": None, "label": "Ana", "value": D("1020.40"), "trips": 31},
        {"referenceKey": "uuid-2", "plate": None, "label": "uuid-2", "value": D("88.10"), "trips": 4},
    ]
    assert stats.normalized == 2
    assert stats.errors == 0


def test_fuel_row_with_plate_only():
    rows, _ = normalize_rows("myprio", [{"DESC CARTAO": "AA-12-BB", "TOTAL": "45,90"}])

    assert rows[0]["referenceKey"] is None
    assert rows[0]["plate"] == "AA-12-BB"
    assert rows[0]["value"] == D("45.90")


def test_bad_rows_are_counted_with_line_numbers():
    rows, stats = normalize_rows("bolt", [
        {"Email": "a@example.com", "Ganhos brutos (total)": "oops"},
        {"Email": "", "Ganhos brutos (total)": "10"},
        {"Email": "", "Ganhos brutos (total)": ""},
        {"Email": "b@example.com", "Ganhos brutos (total)": "10"},
    ])

    assert len(rows) == 1
    assert stats.total == 4
    assert stats.errors == 2
    assert stats.skipped == 3
    assert [row for row, _ in stats.error_rows] == [2, 3]
    assert "Invalid amount" in stats.get_report()


def test_read_csv_rows_sniffs_semicolons(tmp_path):
    path = tmp_path / "uber.csv"
    path.write_text("UUID do motorista;Pago a si\nuuid-1;12,50\n", encoding="utf-8-sig")

    assert read_csv_rows(str(path)) == [{"UUID do motorista": "uuid-1", "Pago a si": "12,50"}]


def test_import_week_stores_a_pass(session, make_driver, tmp_path):
    ana = make_driver("Ana", uberKey="uuid-ana", vehiclePlate="AA-12-BB")
    uber = tmp_path / "uber.csv"
    uber.write_text("UUID do motorista;Pago a si;Viagens\nuuid-ana;500,00;40\nuuid-ghost;20,00;2\n",
                    encoding="utf-8")
    fuel = tmp_path / "fuel.csv"
    fuel.write_text("CARTAO;DESC CARTAO;TOTAL\n7001;AA-12-BB;60,25\n", encoding="utf-8")

    result = asyncio.run(import_week(session, "2025-W02", {"uber": str(uber), "myprio": str(fuel)}))

    assert result["success"] is True
    assert result["aggregationPass"] == 1
    assert result["aggregates"] == 2
    assert result["unmapped"] == 1
    totals = {row.platform: row.totalValue for row in
              session.query(WeeklyPlatformAggregate).filter_by(driverID=ana.driverID).all()}
    assert totals == {"uber": D("500.00"), "myprio": D("60.25")}
    assert session.query(UnmappedImportEntry).one().referenceId == "uuid-ghost"


def test_import_week_missing_file(session, tmp_path):
    result = asyncio.run(import_week(session, "2025-W02", {"uber": str(tmp_path / "missing.csv")}))

    assert result["success"] is False
