"""
Record Builder
Turns tokenized export rows into canonical records for one ingestion run.

Pipeline per run:
    tokenize (with encoding repair) -> pick dialect -> resolve mapping once
    -> per row: split-number repair, cell normalization, defaults and
       derived fields -> Built(record) | SkippedRow(reason)

Row-level problems never raise. The only run-level failures are an export
without any rows and a header whose required fields cannot be located
(SchemaMappingError).
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Union

from schemas.records import (
    CanonicalRecord,
    CostReductionLine,
    InventoryLine,
    PurchaseLine,
    QuoteRequestLine,
    RevenueLine,
    SalesPlanLine,
    SupplierProfile,
)
from services.errors import IngestionError
from services.normalizer import (
    is_numeric_cell,
    normalize_month,
    parse_currency,
    parse_date_parts,
    parse_number,
    parse_period,
    repair_split_numbers,
)
from services.schema_mapper import (
    SALES_PLAN_MONTHS,
    FieldMapping,
    SchemaMapper,
    detect_dialect,
    get_layout,
    year_columns,
)
from services.tokenizer import CsvTokenizer, SkippedRow, TokenizedRow

logger = logging.getLogger(__name__)

DEFAULT_PARTS_TYPE = "부품"
DEFAULT_CUSTOMER = "Unknown"
# Positional supplier exports carry these purchase years, newest first.
SUPPLIER_DEFAULT_YEARS = (2025, 2024, 2023)

PURCHASE_CATEGORY = {"parts": "Parts", "material": "Material"}

COST_REDUCTION_FIELDS = (
    "total_sales",
    "lg_sales",
    "lg_cr",
    "lg_defense",
    "mtx_sales",
    "mtx_cr",
    "mtx_defense",
)
_MONTH_LABEL = re.compile(r"^(0[1-9]|1[0-2])월$")


@dataclass(frozen=True)
class Built:
    line_no: int
    record: CanonicalRecord


RowResult = Union[Built, SkippedRow]


@dataclass
class BuildContext:
    """Per-run values the row builders need besides the mapping."""

    year: int
    supplier_years: List[tuple] = field(default_factory=list)


@dataclass
class IngestionResult:
    kind: str
    dialect: str
    records: List[CanonicalRecord] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)
    encoding: Optional[str] = None
    has_header: bool = False

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def skip_reasons(self) -> Dict[str, int]:
        return dict(Counter(s.reason for s in self.skipped))

    def summary(self) -> Dict[str, object]:
        return {
            "kind": self.kind,
            "dialect": self.dialect,
            "records": len(self.records),
            "skipped": self.skipped_count,
            "skip_reasons": self.skip_reasons(),
            "encoding": self.encoding,
            "has_header": self.has_header,
        }


def _optional(mapping: FieldMapping, cells: Sequence[str], name: str) -> Optional[str]:
    if not mapping.has(name):
        return None
    return mapping.cell(cells, name) or None


def _derive_amount(amount: float, unit_price: Optional[float], qty: float) -> float:
    if not amount and unit_price and qty:
        return unit_price * qty
    return amount


def build_revenue(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    period = mapping.cell(cells, "period")
    if not period:
        return SkippedRow(line_no, "missing_period")
    year, month = parse_period(period, ctx.year)
    return Built(
        line_no,
        RevenueLine(
            year=year,
            month=month,
            customer=mapping.cell(cells, "customer") or DEFAULT_CUSTOMER,
            model=mapping.cell(cells, "model"),
            part_no=_optional(mapping, cells, "part_no"),
            customer_pn=_optional(mapping, cells, "customer_pn"),
            part_name=_optional(mapping, cells, "part_name"),
            qty=parse_number(mapping.cell(cells, "qty")),
            amount=parse_number(mapping.cell(cells, "amount")),
        ),
    )


def build_purchase(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    item_code = mapping.cell(cells, "item_code")
    item_name = mapping.cell(cells, "item_name")
    if not item_code and not item_name:
        return SkippedRow(line_no, "missing_item")

    date = mapping.cell(cells, "date")
    year, month = parse_date_parts(date)
    material_type = mapping.cell(cells, "type")
    if not material_type and mapping.dialect == "parts":
        material_type = DEFAULT_PARTS_TYPE

    qty = parse_number(mapping.cell(cells, "qty"))
    unit_price = parse_number(mapping.cell(cells, "unit_price"))
    amount = _derive_amount(parse_number(mapping.cell(cells, "amount")), unit_price, qty)
    return Built(
        line_no,
        PurchaseLine(
            year=year,
            month=month,
            date=date,
            supplier=mapping.cell(cells, "supplier"),
            type=material_type,
            category=PURCHASE_CATEGORY[mapping.dialect],
            item_code=item_code,
            item_name=item_name,
            spec=mapping.cell(cells, "spec"),
            unit=mapping.cell(cells, "unit"),
            qty=qty,
            unit_price=unit_price,
            amount=amount,
        ),
    )


def build_inventory(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    code = mapping.cell(cells, "code")
    name = mapping.cell(cells, "name")
    if not code or not name:
        return SkippedRow(line_no, "missing_code_or_name", f"code={code!r} name={name!r}")

    qty = parse_number(mapping.cell(cells, "qty"))
    unit_price: Optional[float] = None
    amount: Optional[float] = None
    if mapping.has("unit_price"):
        unit_price = parse_number(mapping.cell(cells, "unit_price"))
    if mapping.has("amount"):
        amount = _derive_amount(parse_number(mapping.cell(cells, "amount")), unit_price, qty)

    return Built(
        line_no,
        InventoryLine(
            inventory_type=mapping.dialect,
            code=code,
            name=name,
            qty=qty,
            spec=_optional(mapping, cells, "spec"),
            unit=_optional(mapping, cells, "unit"),
            location=_optional(mapping, cells, "location"),
            customer_pn=_optional(mapping, cells, "customer_pn"),
            model=_optional(mapping, cells, "model"),
            status=_optional(mapping, cells, "status"),
            storage_location=_optional(mapping, cells, "storage_location"),
            item_type=_optional(mapping, cells, "item_type"),
            unit_price=unit_price,
            amount=amount,
        ),
    )


def build_supplier(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    company = mapping.cell(cells, "company_name")
    if not company:
        return SkippedRow(line_no, "missing_company_name")

    amounts: Dict[int, float] = {}
    for year, idx in ctx.supplier_years:
        amounts[year] = parse_number(cells[idx] if idx < len(cells) else "")

    return Built(
        line_no,
        SupplierProfile(
            company_name=company,
            business_number=mapping.cell(cells, "business_number"),
            ceo=mapping.cell(cells, "ceo"),
            address=mapping.cell(cells, "address"),
            purchase_amounts=amounts,
        ),
    )


def build_quote_request(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    customer = mapping.cell(cells, "customer")
    if not customer:
        return SkippedRow(line_no, "missing_customer")

    qty = parse_currency(mapping.cell(cells, "qty"))
    unit_price = parse_currency(mapping.cell(cells, "unit_price"))
    amount = _derive_amount(parse_currency(mapping.cell(cells, "amount")), unit_price, qty)
    return Built(
        line_no,
        QuoteRequestLine(
            index_no=mapping.cell(cells, "index_no"),
            customer=customer,
            project_type=mapping.cell(cells, "project_type"),
            project_name=mapping.cell(cells, "project_name"),
            process=mapping.cell(cells, "process"),
            status=mapping.cell(cells, "status"),
            date_selection=mapping.cell(cells, "date_selection"),
            date_quotation=mapping.cell(cells, "date_quotation"),
            date_po=mapping.cell(cells, "date_po"),
            model=mapping.cell(cells, "model"),
            qty=qty,
            unit_price=unit_price,
            amount=amount,
            remark=mapping.cell(cells, "remark"),
        ),
    )


def build_sales_plan(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    customer = mapping.cell(cells, "customer")
    if not customer:
        return SkippedRow(line_no, "missing_customer")

    plan = [parse_number(mapping.cell(cells, f"plan_{m}")) for m in range(1, SALES_PLAN_MONTHS + 1)]
    actual = [parse_number(mapping.cell(cells, f"actual_{m}")) for m in range(1, SALES_PLAN_MONTHS + 1)]
    # totals are recomputed from the months, never read from the export's total columns
    total_plan = sum(plan)
    total_actual = sum(actual)
    return Built(
        line_no,
        SalesPlanLine(
            customer=customer,
            model=mapping.cell(cells, "model"),
            part_no=mapping.cell(cells, "part_no"),
            part_name=mapping.cell(cells, "part_name"),
            monthly_plan=plan,
            monthly_actual=actual,
            total_plan=total_plan,
            total_actual=total_actual,
            rate=round(total_actual / total_plan * 100, 2) if total_plan > 0 else 0.0,
        ),
    )


def build_cost_reduction(mapping: FieldMapping, cells: Sequence[str], line_no: int, ctx: BuildContext) -> RowResult:
    raw_month = mapping.cell(cells, "month")
    if not raw_month:
        return SkippedRow(line_no, "missing_month")
    month = normalize_month(raw_month)
    if not _MONTH_LABEL.match(month):
        # summary rows such as 합계
        return SkippedRow(line_no, "not_a_month", raw_month)
    values = {name: parse_number(mapping.cell(cells, name)) for name in COST_REDUCTION_FIELDS}
    return Built(line_no, CostReductionLine(month=month, **values))


RowBuilder = Callable[[FieldMapping, Sequence[str], int, BuildContext], RowResult]

ROW_BUILDERS: Dict[str, RowBuilder] = {
    "revenue": build_revenue,
    "purchase": build_purchase,
    "inventory": build_inventory,
    "supplier": build_supplier,
    "quote_request": build_quote_request,
    "sales_plan": build_sales_plan,
    "cost_reduction": build_cost_reduction,
}


class RecordBuilder:
    """Runs one export through tokenizer, mapper and the per-kind row builder."""

    def __init__(self, mapper: Optional[SchemaMapper] = None):
        self.mapper = mapper or SchemaMapper()

    def _supplier_years(self, mapping: FieldMapping) -> List[tuple]:
        detected = year_columns(mapping.header) if mapping.has_header else []
        if detected:
            return detected
        positions = [mapping.index(f"amount_{i}") for i in range(len(SUPPLIER_DEFAULT_YEARS))]
        return [(year, idx) for year, idx in zip(SUPPLIER_DEFAULT_YEARS, positions) if idx is not None]

    def _drop_header_continuation(self, layout, data_rows: List[TokenizedRow]) -> List[TokenizedRow]:
        """Strip sub-header rows (e.g. 계획/실적/달성률 under each month) of multi-row headers."""
        extra = 0
        while (
            extra < layout.header_rows - 1
            and extra < len(data_rows)
            and not any(is_numeric_cell(c) for c in data_rows[extra].cells)
        ):
            extra += 1
        if extra:
            logger.info("Ingestion header spans %d extra rows kind=%s", extra, layout.kind)
        return data_rows[extra:]

    def build(
        self,
        source: Union[str, bytes],
        kind: str,
        dialect: Optional[str] = None,
        year: Optional[int] = None,
    ) -> IngestionResult:
        if kind not in ROW_BUILDERS:
            raise IngestionError(f"Unsupported record kind '{kind}'")

        tokenizer = CsvTokenizer(source)
        rows = tokenizer.rows()
        if not rows:
            raise IngestionError(f"{kind} CSV contains no rows")

        header = rows[0].cells
        first_data = rows[1].cells if len(rows) > 1 else None
        if not dialect or dialect == "auto":
            dialect = detect_dialect(kind, header, first_data)
        try:
            layout = get_layout(kind, dialect)
        except ValueError as exc:
            raise IngestionError(str(exc)) from exc

        mapping = self.mapper.resolve(layout, header, first_row=header)
        ctx = BuildContext(year=year or datetime.now().year)
        if kind == "supplier":
            ctx.supplier_years = self._supplier_years(mapping)

        result = IngestionResult(
            kind=kind,
            dialect=layout.dialect,
            encoding=tokenizer.encoding,
            has_header=mapping.has_header,
        )
        # second pass with the layout's row minimum; the tokenizer drops short rows
        tokenizer.min_cells = layout.min_cells
        rows = []
        for outcome in tokenizer:
            if isinstance(outcome, TokenizedRow):
                rows.append(outcome)
            else:
                result.skipped.append(outcome)

        data_rows = rows[1:] if mapping.has_header else rows
        if mapping.has_header:
            data_rows = self._drop_header_continuation(layout, data_rows)
        row_builder = ROW_BUILDERS[kind]

        for row in data_rows:
            cells = list(row.cells)
            # only a headerless export's first row gets here short (the tokenizer exempts it)
            if len(cells) < layout.min_cells:
                result.skipped.append(
                    SkippedRow(row.line_no, "short_row", f"{len(cells)} < {layout.min_cells} cells")
                )
                continue
            if mapping.width and len(cells) > mapping.width:
                cells = repair_split_numbers(cells, mapping.width)
            outcome = row_builder(mapping, cells, row.line_no, ctx)
            if isinstance(outcome, Built):
                result.records.append(outcome.record)
            else:
                result.skipped.append(outcome)

        result.skipped.sort(key=lambda s: s.line_no)
        if result.skipped:
            logger.warning(
                "Ingestion skipped rows kind=%s dialect=%s skipped=%d reasons=%s",
                kind,
                layout.dialect,
                result.skipped_count,
                result.skip_reasons(),
            )
        logger.info(
            "Ingestion complete kind=%s dialect=%s records=%d skipped=%d encoding=%s header=%s",
            kind,
            layout.dialect,
            len(result.records),
            result.skipped_count,
            result.encoding,
            result.has_header,
        )
        return result


def ingest_csv(
    source: Union[str, bytes],
    kind: str,
    dialect: Optional[str] = None,
    year: Optional[int] = None,
) -> IngestionResult:
    return RecordBuilder().build(source, kind, dialect=dialect, year=year)
