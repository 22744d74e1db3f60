"""
CSV Export
Writes a record set back out as a spreadsheet-friendly CSV.

Headers reuse the labels the ingestion side recognizes, so an export can be
uploaded again. Output is UTF-8 with a BOM; cells containing the delimiter,
a quote or a newline are quoted with inner quotes doubled.
"""
import codecs
import csv
import io
from typing import Any, Callable, List, Optional, Sequence, Tuple

from services.normalizer import MONTH_SUFFIX

# a getter of None writes the 1-based row number
Column = Tuple[str, Optional[Callable[[Any], Any]]]


def _num(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _period(record) -> str:
    return f"{record.year}-{record.month.replace(MONTH_SUFFIX, '')}"


REVENUE_COLUMNS: List[Column] = [
    ("매출기간", _period),
    ("고객사", lambda r: r.customer),
    ("Model", lambda r: r.model),
    ("품번", lambda r: r.part_no or ""),
    ("고객사 P/N", lambda r: r.customer_pn or ""),
    ("품명", lambda r: r.part_name or ""),
    ("매출수량", lambda r: _num(r.qty)),
    ("매출금액", lambda r: _num(r.amount)),
]

PURCHASE_COLUMNS: List[Column] = [
    ("입고일자", lambda r: r.date),
    ("구분", lambda r: r.category),
    ("자재유형", lambda r: r.type),
    ("거래처", lambda r: r.supplier),
    ("품목코드", lambda r: r.item_code),
    ("품목명", lambda r: r.item_name),
    ("규격", lambda r: r.spec),
    ("단위", lambda r: r.unit),
    ("입고수량", lambda r: _num(r.qty)),
    ("단가", lambda r: _num(r.unit_price)),
    ("금액", lambda r: _num(r.amount)),
]

INVENTORY_COLUMNS: List[Column] = [
    ("구분", lambda r: r.inventory_type),
    ("품목유형", lambda r: r.item_type or ""),
    ("품목코드", lambda r: r.code),
    ("고객사 P/N", lambda r: r.customer_pn or ""),
    ("품목명", lambda r: r.name),
    ("규격", lambda r: r.spec or ""),
    ("단위", lambda r: r.unit or ""),
    ("차종명", lambda r: r.model or ""),
    ("품목상태", lambda r: r.status or ""),
    ("창고명", lambda r: r.location or ""),
    ("재고위치", lambda r: r.storage_location or ""),
    ("단가", lambda r: _num(r.unit_price)),
    ("금액", lambda r: _num(r.amount)),
    ("재고", lambda r: _num(r.qty)),
]

QUOTE_COLUMNS: List[Column] = [
    ("No", lambda r: r.index_no),
    ("Customer", lambda r: r.customer),
    ("Project Type", lambda r: r.project_type),
    ("Project Name", lambda r: r.project_name),
    ("Process", lambda r: r.process),
    ("Current Status", lambda r: r.status),
    ("Project Selection", lambda r: r.date_selection),
    ("Quotation", lambda r: r.date_quotation),
    ("PO", lambda r: r.date_po),
    ("Model", lambda r: r.model),
    ("Qty/month", lambda r: _num(r.qty)),
    ("Unit Price", lambda r: _num(r.unit_price)),
    ("Amount", lambda r: _num(r.amount)),
    ("Remark", lambda r: r.remark),
]

COST_REDUCTION_COLUMNS: List[Column] = [
    ("월", lambda r: r.month),
    ("총매출", lambda r: _num(r.total_sales)),
    ("LG매출", lambda r: _num(r.lg_sales)),
    ("LG CR", lambda r: _num(r.lg_cr)),
    ("LG방어율", lambda r: _num(r.lg_defense)),
    ("MTX매출", lambda r: _num(r.mtx_sales)),
    ("MTX CR", lambda r: _num(r.mtx_cr)),
    ("MTX방어율", lambda r: _num(r.mtx_defense)),
]

SALES_PLAN_SUB_LABELS = ("계획", "실적", "달성률")


def _month_rate(record, m: int) -> str:
    plan = record.monthly_plan[m] if m < len(record.monthly_plan) else 0
    actual = record.monthly_actual[m] if m < len(record.monthly_actual) else 0
    return _num(round(actual / plan * 100, 1)) if plan else ""


def _month_value(values: Sequence[float], m: int) -> str:
    return _num(values[m]) if m < len(values) else ""


def _sales_plan_columns() -> List[Column]:
    # (plan, actual, rate) per month from column 7, as the ingestion layout expects
    columns: List[Column] = [
        ("No", None),
        ("고객사", lambda r: r.customer),
        ("Model", lambda r: r.model),
        ("품번", lambda r: r.part_no),
        ("고객사 P/N", lambda r: ""),
        ("품명", lambda r: r.part_name),
        ("단위", lambda r: ""),
    ]
    for m in range(12):
        columns.append((f"{m + 1}{MONTH_SUFFIX}", lambda r, m=m: _month_value(r.monthly_plan, m)))
        columns.append(("", lambda r, m=m: _month_value(r.monthly_actual, m)))
        columns.append(("", lambda r, m=m: _month_rate(r, m)))
    return columns


SALES_PLAN_COLUMNS = _sales_plan_columns()


def _sales_plan_sub_header() -> List[str]:
    fixed = len(SALES_PLAN_COLUMNS) - 12 * len(SALES_PLAN_SUB_LABELS)
    return [""] * fixed + list(SALES_PLAN_SUB_LABELS) * 12


def _supplier_columns(records: Sequence) -> List[Column]:
    years = sorted({y for r in records for y in r.purchase_amounts}, reverse=True)
    columns: List[Column] = [
        ("거래처명", lambda r: r.company_name),
        ("사업자등록번호", lambda r: r.business_number),
        ("대표이사", lambda r: r.ceo),
        ("주소", lambda r: r.address),
    ]
    for year in years:
        columns.append((f"매입액(-VAT) {year}년", lambda r, y=year: _num(r.purchase_amounts.get(y))))
    return columns


COLUMNS = {
    "revenue": REVENUE_COLUMNS,
    "purchase": PURCHASE_COLUMNS,
    "inventory": INVENTORY_COLUMNS,
    "quote_request": QUOTE_COLUMNS,
    "sales_plan": SALES_PLAN_COLUMNS,
    "cost_reduction": COST_REDUCTION_COLUMNS,
}


def columns_for(kind: str, records: Sequence) -> List[Column]:
    if kind == "supplier":
        return _supplier_columns(records)
    try:
        return COLUMNS[kind]
    except KeyError:
        raise ValueError(f"No CSV export layout for record kind '{kind}'") from None


def records_to_csv(kind: str, records: Sequence) -> str:
    columns = columns_for(kind, records)
    output = io.StringIO(newline="")
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow([label for label, _ in columns])
    if kind == "sales_plan":
        writer.writerow(_sales_plan_sub_header())
    for number, record in enumerate(records, 1):
        writer.writerow([number if getter is None else getter(record) for _, getter in columns])
    return output.getvalue()


def export_csv_bytes(kind: str, records: Sequence) -> bytes:
    """CSV bytes prefixed with a UTF-8 BOM."""
    return codecs.BOM_UTF8 + records_to_csv(kind, records).encode("utf-8")
