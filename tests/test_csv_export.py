import codecs
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from schemas.records import (
    CostReductionLine,
    InventoryLine,
    QuoteRequestLine,
    RevenueLine,
    SalesPlanLine,
    SupplierProfile,
)
from services.csv_export import columns_for, export_csv_bytes, records_to_csv
from services.record_builder import ingest_csv


def test_export_starts_with_bom_and_uses_crlf():
    payload = export_csv_bytes("revenue", [RevenueLine(year=2024, month="03월", customer="현대", qty=1, amount=2)])

    assert payload.startswith(codecs.BOM_UTF8)
    text = payload[len(codecs.BOM_UTF8):].decode("utf-8")
    assert text.splitlines()[0] == "매출기간,고객사,Model,품번,고객사 P/N,품명,매출수량,매출금액"
    assert text.endswith("\r\n")
    assert "2024-03,현대,,,,,1,2" in text


def test_cells_with_quotes_and_delimiters_are_escaped():
    quote = QuoteRequestLine(customer='HMC "North", Ulsan', remark="line1\nline2")

    text = records_to_csv("quote_request", [quote])

    assert '"HMC ""North"", Ulsan"' in text
    assert '"line1\nline2"' in text


def test_revenue_export_can_be_ingested_again():
    records = [
        RevenueLine(year=2024, month="03월", customer="현대", model="M1", part_no="P-1", qty=1200, amount=2482192),
        RevenueLine(year=2023, month="11월", customer="기아, 광주", qty=5, amount=500.5),
    ]

    result = ingest_csv(export_csv_bytes("revenue", records), "revenue")

    assert result.has_header
    again = result.records
    assert [(r.year, r.month, r.customer, r.qty, r.amount) for r in again] == [
        (2024, "03월", "현대", 1200, 2482192),
        (2023, "11월", "기아, 광주", 5, 500.5),
    ]
    assert again[0].part_no == "P-1"


def test_supplier_export_has_one_column_per_year():
    suppliers = [
        SupplierProfile(company_name="대한정밀", purchase_amounts={2024: 10.0, 2025: 20.0}),
        SupplierProfile(company_name="한빛", purchase_amounts={2023: 5.0}),
    ]

    lines = records_to_csv("supplier", suppliers).splitlines()

    assert lines[0].split(",")[4:] == ["매입액(-VAT) 2025년", "매입액(-VAT) 2024년", "매입액(-VAT) 2023년"]
    assert lines[1].endswith(",20,10,")
    assert lines[2].endswith(",,,5")


def test_inventory_export_leaves_missing_prices_blank():
    item = InventoryLine(inventory_type="material", code="M1", name="SUS304", qty=120)
    row = records_to_csv("inventory", [item]).splitlines()[1].split(",")
    assert row[0] == "material"
    assert row[-3:] == ["", "", "120"]


def test_unknown_kind_has_no_layout():
    with pytest.raises(ValueError):
        columns_for("ledger", [])


def test_sales_plan_export_writes_month_sub_header_and_reingests():
    line = SalesPlanLine(
        customer="현대",
        model="M1",
        part_no="P-1",
        part_name="브라켓",
        monthly_plan=[100.0] * 12,
        monthly_actual=[80.0] * 12,
        total_plan=1200,
        total_actual=960,
        rate=80.0,
    )

    text = records_to_csv("sales_plan", [line])
    header, sub_header, row = text.splitlines()

    assert header.startswith("No,고객사,Model,품번,고객사 P/N,품명,단위,1월,,,2월")
    assert sub_header.startswith(",,,,,,,계획,실적,달성률,계획")
    assert row.startswith("1,현대,M1,P-1,,브라켓,,100,80,80")

    (again,) = ingest_csv(text, "sales_plan").records
    assert again.monthly_plan == line.monthly_plan
    assert again.monthly_actual == line.monthly_actual
    assert (again.total_plan, again.total_actual, again.rate) == (1200, 960, 80.0)


def test_cost_reduction_export_can_be_ingested_again():
    records = [
        CostReductionLine(month="01월", total_sales=1000, lg_sales=600, lg_cr=30, lg_defense=95.5),
        CostReductionLine(month="02월", total_sales=900, mtx_sales=400, mtx_cr=15, mtx_defense=96.25),
    ]

    result = ingest_csv(export_csv_bytes("cost_reduction", records), "cost_reduction")

    assert [r.model_dump(exclude={"id"}) for r in result.records] == [r.model_dump(exclude={"id"}) for r in records]
