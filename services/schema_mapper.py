"""
Schema Mapper
Resolves which column carries which canonical field for one ingestion run.

Resolution order per field:
    1. exact label match (case- and whitespace-insensitive)
    2. substring match in either direction, among columns not yet claimed
    3. positional default of the layout

When no header label is recognized at all, the layout's fallback positions
are used for every field (for revenue this is the legacy fixed layout).
The mapping is computed once and applied to every data row.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from services.errors import SchemaMappingError
from services.normalizer import is_numeric_cell

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


def normalize_label(text: Optional[str]) -> str:
    return _WS.sub("", text or "").lower()


@dataclass(frozen=True)
class FieldSpec:
    name: str
    labels: Tuple[str, ...] = ()
    position: Optional[int] = None
    required: bool = False
    exact_only: bool = False


@dataclass(frozen=True)
class KindLayout:
    kind: str
    dialect: str
    fields: Tuple[FieldSpec, ...]
    min_cells: int = 0
    # First row is always a header, recognized or not.
    header_always: bool = True
    # When set, the first row is a header only if one of these labels appears in it.
    header_markers: Tuple[str, ...] = ()
    # Leading rows that may still be header (multi-row headers). Rows after the
    # first are treated as header only while they carry no numeric cell.
    header_rows: int = 1
    # Positions used when no header label is recognized; defaults to FieldSpec.position.
    fallback_positions: Optional[Mapping[str, Optional[int]]] = None

    def positions(self, recognized: bool) -> Dict[str, Optional[int]]:
        if not recognized and self.fallback_positions is not None:
            return {f.name: self.fallback_positions.get(f.name) for f in self.fields}
        return {f.name: f.position for f in self.fields}

    @property
    def fallback_width(self) -> int:
        used = [p for p in self.positions(False).values() if p is not None]
        return max(used) + 1 if used else 0

    @property
    def required(self) -> List[str]:
        return [f.name for f in self.fields if f.required]


@dataclass(frozen=True)
class FieldMapping:
    """Field -> column index table (None means the field is absent)."""

    layout: KindLayout
    indexes: Mapping[str, Optional[int]]
    strategies: Mapping[str, str]
    has_header: bool
    header: Tuple[str, ...] = ()
    width: int = 0

    @property
    def kind(self) -> str:
        return self.layout.kind

    @property
    def dialect(self) -> str:
        return self.layout.dialect

    @property
    def recognized(self) -> bool:
        return any(s in ("exact", "substring") for s in self.strategies.values())

    def index(self, name: str) -> Optional[int]:
        return self.indexes.get(name)

    def cell(self, cells: Sequence[str], name: str) -> str:
        idx = self.indexes.get(name)
        if idx is None or idx < 0 or idx >= len(cells):
            return ""
        return cells[idx] or ""

    def has(self, name: str) -> bool:
        return self.indexes.get(name) is not None


def _f(name, labels=(), position=None, required=False, exact_only=False) -> FieldSpec:
    return FieldSpec(name, tuple(labels), position, required, exact_only)


REVENUE_LAYOUT = KindLayout(
    kind="revenue",
    dialect="standard",
    min_cells=5,
    header_always=False,
    header_markers=("매출기간", "고객사", "매출수량", "매출금액"),
    # Uploader layout: [index], period, customer, model, part no, customer p/n, part name, qty, amount
    fields=(
        _f("period", ["매출기간", "기간", "월", "Month"], 1, required=True),
        _f("customer", ["고객사", "Customer"], 2),
        _f("model", ["model", "모델", "품종"], 3),
        _f("part_no", ["품번", "PartNo", "Part No"], 4),
        _f("customer_pn", ["고객사p/n", "고객사 P/N", "P/N"], 5),
        _f("part_name", ["품명", "품목명", "ItemName"], 6),
        _f("qty", ["매출수량", "수량", "Qty"], 7, required=True),
        _f("amount", ["매출금액", "금액", "Amount"], 8, required=True),
    ),
    # Legacy layout: index, month, customer, model, qty, amount
    fallback_positions={
        "period": 1,
        "customer": 2,
        "model": 3,
        "part_no": None,
        "customer_pn": None,
        "part_name": None,
        "qty": 4,
        "amount": 5,
    },
)

PURCHASE_PARTS_LAYOUT = KindLayout(
    kind="purchase",
    dialect="parts",
    min_cells=15,
    fields=(
        _f("date", ["입고일자", "일자", "Date"], 1, required=True),
        _f("supplier", ["발주처", "거래처", "Supplier"], 2),
        _f("item_code", ["부품코드", "품목코드"], 5),
        _f("item_name", ["부품명", "품목명"], 7, required=True),
        _f("spec", ["규격", "Spec"], 8),
        _f("unit", ["단위", "Unit"], 9),
        _f("type", ["자재유형"], 10),
        _f("qty", ["입고수량", "수량", "Qty"], 14, required=True),
        _f("unit_price", ["단가", "Unit Price"], 19),
        _f("amount", ["금액", "Amount"], 20),
    ),
)

PURCHASE_MATERIAL_LAYOUT = KindLayout(
    kind="purchase",
    dialect="material",
    min_cells=10,
    fields=(
        _f("date", ["입고일자", "일자", "Date"], 1, required=True),
        _f("type", ["원재료종류", "원재료"], 2),
        _f("supplier", ["발주처", "거래처", "Supplier"], 3),
        _f("item_code", ["재질코드"], 4),
        _f("item_name", ["재질명"], 5, required=True),
        _f("unit", ["단위", "Unit"], 6),
        _f("qty", ["입고수량", "수량", "Qty"], 8, required=True),
        _f("unit_price", ["단가", "Unit Price"], 13),
        _f("amount", ["금액", "Amount"], 14),
    ),
)

INVENTORY_WAREHOUSE_LAYOUT = KindLayout(
    kind="inventory",
    dialect="warehouse",
    min_cells=2,
    fields=(
        _f("item_type", ["품목유형"], 0),
        _f("code", ["품목코드"], 1, required=True),
        _f("customer_pn", ["고객사 P/N", "P/N"], 2),
        _f("name", ["품목명"], 3, required=True),
        _f("spec", ["규격"], 4),
        _f("unit", ["단위"], 5),
        _f("model", ["차종명"], 6),
        _f("status", ["품목상태"], 7),
        _f("location", ["창고명"], 8),
        _f("storage_location", ["재고위치"], 9),
        # the column labelled exactly 재고, never 재고위치 (claimed above)
        _f("qty", ["재고", "수량"], 10, required=True),
    ),
)

INVENTORY_MATERIAL_LAYOUT = KindLayout(
    kind="inventory",
    dialect="material",
    min_cells=2,
    fields=(
        _f("code", ["재질코드", "코드"], 0, required=True),
        _f("name", ["재질명", "품명"], 1, required=True),
        _f("unit", ["단위"], 2),
        _f("location", ["창고명"], 3),
        _f("qty", ["현재고", "수량", "재고"], 4, required=True),
    ),
)

INVENTORY_GENERIC_LAYOUT = KindLayout(
    kind="inventory",
    dialect="parts",
    min_cells=2,
    fields=(
        _f("code", ["코드", "CODE", "품번"], 0, required=True),
        _f("name", ["품명", "NAME", "품목명"], 1, required=True),
        _f("spec", ["규격", "SPEC"], 2),
        _f("unit", ["단위", "UNIT"], 3),
        _f("qty", ["수량", "QTY", "재고"], 4),
        _f("unit_price", ["단가", "PRICE"], 5),
        _f("amount", ["금액", "AMOUNT"], 6),
        _f("location", ["창고", "LOCATION"], 7),
    ),
)

SUPPLIER_LAYOUT = KindLayout(
    kind="supplier",
    dialect="standard",
    min_cells=4,
    fields=(
        _f("company_name", ["거래처명", "회사명", "company", "거래처"], 0, required=True),
        _f("business_number", ["사업자등록번호", "사업자번호", "business", "등록번호"], 1),
        _f("ceo", ["대표이사", "대표", "ceo", "대표자"], 2),
        _f("address", ["주소", "address", "소재지"], 3),
        # year columns are located by the year embedded in the header (see year_columns)
        _f("amount_0", (), 4),
        _f("amount_1", (), 5),
        _f("amount_2", (), 6),
    ),
)

QUOTE_REQUEST_LAYOUT = KindLayout(
    kind="quote_request",
    dialect="standard",
    min_cells=5,
    fields=(
        _f("index_no", ["순번", "No", "Index"], 0, exact_only=True),
        _f("customer", ["Customer", "고객사"], 1, required=True),
        _f("project_type", ["Project Type"], 2),
        _f("project_name", ["Project Name"], 3),
        _f("process", ["Process"], 4),
        _f("status", ["Current Status", "Status"], 5),
        _f("date_selection", ["Project Selection", "Selection"], 6),
        _f("date_quotation", ["Quotation"], 7),
        _f("date_po", ["PO", "PO Date"], 8, exact_only=True),
        _f("model", ["Model"], 9),
        _f("qty", ["Qty/month", "Qty", "수량"], 10),
        _f("unit_price", ["Unit Price", "단가"], 11),
        _f("amount", ["Amount", "금액"], 12),
        _f("remark", ["Remark", "비고"], 13),
    ),
)


SALES_PLAN_MONTHS = 12
# Plan-vs-actual exports repeat (plan, actual, rate) per month from column 7.
SALES_PLAN_FIRST_MONTH_COLUMN = 7
SALES_PLAN_MONTH_STRIDE = 3

SALES_PLAN_LAYOUT = KindLayout(
    kind="sales_plan",
    dialect="standard",
    min_cells=2,
    header_rows=2,
    fields=(
        _f("customer", ["고객사", "Customer"], 1, required=True),
        _f("model", ["Model", "모델", "차종"], 2),
        _f("part_no", ["품번", "Part No"], 3),
        _f("part_name", ["품명", "Part Name"], 5),
    )
    + tuple(
        _f(f"plan_{m + 1}", (), SALES_PLAN_FIRST_MONTH_COLUMN + m * SALES_PLAN_MONTH_STRIDE, required=(m == 0))
        for m in range(SALES_PLAN_MONTHS)
    )
    + tuple(
        _f(f"actual_{m + 1}", (), SALES_PLAN_FIRST_MONTH_COLUMN + 1 + m * SALES_PLAN_MONTH_STRIDE)
        for m in range(SALES_PLAN_MONTHS)
    ),
)

COST_REDUCTION_LAYOUT = KindLayout(
    kind="cost_reduction",
    dialect="standard",
    min_cells=2,
    # the value labels overlap ("LG매출" / "MTX매출"), so only exact labels count
    fields=(
        _f("month", ["월", "Month", "구분"], 0, required=True, exact_only=True),
        _f("total_sales", ["총매출", "전체매출", "Total Sales"], 1, exact_only=True),
        _f("lg_sales", ["LG매출", "LG Sales"], 2, exact_only=True),
        _f("lg_cr", ["LG CR"], 3, exact_only=True),
        _f("lg_defense", ["LG방어율", "LG Defense"], 4, exact_only=True),
        _f("mtx_sales", ["MTX매출", "MTX Sales"], 5, exact_only=True),
        _f("mtx_cr", ["MTX CR"], 6, exact_only=True),
        _f("mtx_defense", ["MTX방어율", "MTX Defense"], 7, exact_only=True),
    ),
)

LAYOUTS: Dict[Tuple[str, str], KindLayout] = {
    (layout.kind, layout.dialect): layout
    for layout in (
        REVENUE_LAYOUT,
        PURCHASE_PARTS_LAYOUT,
        PURCHASE_MATERIAL_LAYOUT,
        INVENTORY_WAREHOUSE_LAYOUT,
        INVENTORY_MATERIAL_LAYOUT,
        INVENTORY_GENERIC_LAYOUT,
        SUPPLIER_LAYOUT,
        QUOTE_REQUEST_LAYOUT,
        SALES_PLAN_LAYOUT,
        COST_REDUCTION_LAYOUT,
    )
}
# "product" inventory shares the generic parts columns
LAYOUTS[("inventory", "product")] = replace(INVENTORY_GENERIC_LAYOUT, dialect="product")

DIALECTS: Dict[str, Tuple[str, ...]] = {
    "revenue": ("standard",),
    "purchase": ("parts", "material"),
    "inventory": ("warehouse", "material", "parts", "product"),
    "supplier": ("standard",),
    "quote_request": ("standard",),
    "sales_plan": ("standard",),
    "cost_reduction": ("standard",),
}

WAREHOUSE_MIN_WIDTH = 8
MATERIAL_MAX_WIDTH = 6

# A header shorter than this never matches as a substring of a label.
MIN_REVERSE_MATCH = 3

_YEAR_IN_HEADER = re.compile(r"(19|20)\d{2}")


def get_layout(kind: str, dialect: Optional[str] = None) -> KindLayout:
    dialect = dialect or DIALECTS.get(kind, ("standard",))[0]
    try:
        return LAYOUTS[(kind, dialect)]
    except KeyError:
        raise ValueError(f"Unsupported dialect '{dialect}' for record kind '{kind}'") from None


def detect_dialect(kind: str, header: Sequence[str], first_row: Optional[Sequence[str]] = None) -> str:
    """
    Pick the export dialect for kinds that have more than one.

    Inventory: wide exports whose first data row ends in a pure number are the
    warehouse dialect, narrow ones the material dialect; anything else falls
    back to the generic parts layout. Purchase: material exports carry a
    raw-material column.
    """
    if kind == "inventory":
        width = len(header)
        trailing_numeric = bool(first_row) and is_numeric_cell(first_row[-1])
        if width >= WAREHOUSE_MIN_WIDTH and trailing_numeric:
            return "warehouse"
        if width <= MATERIAL_MAX_WIDTH and trailing_numeric:
            return "material"
        return "parts"
    if kind == "purchase":
        normalized = [normalize_label(h) for h in header]
        if any("원재료" in h or "재질" in h for h in normalized):
            return "material"
        return "parts"
    return DIALECTS.get(kind, ("standard",))[0]


def year_columns(header: Sequence[str], limit: int = 3) -> List[Tuple[int, int]]:
    """(year, column) pairs for headers such as `매입액(-VAT) 2025년`, in header order."""
    found: List[Tuple[int, int]] = []
    for idx, label in enumerate(header):
        match = _YEAR_IN_HEADER.search(label or "")
        if match:
            found.append((int(match.group(0)), idx))
        if len(found) >= limit:
            break
    return found


class SchemaMapper:
    """Computes a FieldMapping for one run."""

    def is_header(self, layout: KindLayout, row: Sequence[str]) -> bool:
        if not layout.header_markers:
            return layout.header_always
        normalized = [normalize_label(c) for c in row]
        markers = [normalize_label(m) for m in layout.header_markers]
        return any(m in cell for cell in normalized if cell for m in markers)

    def _match_labels(self, layout: KindLayout, header: Sequence[str]) -> Tuple[Dict[str, int], Dict[str, str]]:
        normalized = [normalize_label(h) for h in header]
        claimed: set[int] = set()
        found: Dict[str, int] = {}
        how: Dict[str, str] = {}

        for spec in layout.fields:
            for label in spec.labels:
                target = normalize_label(label)
                idx = next(
                    (i for i, h in enumerate(normalized) if h and i not in claimed and h == target),
                    None,
                )
                if idx is not None:
                    found[spec.name] = idx
                    how[spec.name] = "exact"
                    claimed.add(idx)
                    break

        for spec in layout.fields:
            if spec.name in found or spec.exact_only:
                continue
            for label in spec.labels:
                target = normalize_label(label)
                if not target:
                    continue
                idx = next(
                    (
                        i for i, h in enumerate(normalized)
                        if h and i not in claimed and (target in h or (len(h) >= MIN_REVERSE_MATCH and h in target))
                    ),
                    None,
                )
                if idx is not None:
                    found[spec.name] = idx
                    how[spec.name] = "substring"
                    claimed.add(idx)
                    break

        return found, how

    def resolve(
        self,
        layout: KindLayout,
        header: Optional[Sequence[str]],
        first_row: Optional[Sequence[str]] = None,
    ) -> FieldMapping:
        """
        Resolve the column table for `layout`.

        `header` is the first row of the export (None when the export is empty
        or known to be headerless); `first_row` is the first data row and only
        used to size headerless exports.
        """
        header_cells = tuple(header or ())
        has_header = bool(header_cells) and self.is_header(layout, header_cells)

        found: Dict[str, int] = {}
        how: Dict[str, str] = {}
        if has_header:
            found, how = self._match_labels(layout, header_cells)

        recognized = bool(found)
        positions = layout.positions(recognized)
        claimed = set(found.values())
        indexes: Dict[str, Optional[int]] = {}
        strategies: Dict[str, str] = {}
        for spec in layout.fields:
            if spec.name in found:
                indexes[spec.name] = found[spec.name]
                strategies[spec.name] = how[spec.name]
            elif positions.get(spec.name) is not None and positions[spec.name] not in claimed:
                indexes[spec.name] = positions[spec.name]
                strategies[spec.name] = "positional"
            else:
                indexes[spec.name] = None
                strategies[spec.name] = "absent"

        if has_header:
            width = len(header_cells)
        else:
            sample = first_row if first_row is not None else header_cells
            width = max(len(sample or ()), layout.fallback_width)

        missing = [
            name for name in layout.required
            if indexes.get(name) is None or indexes[name] >= width
        ]
        if missing:
            logger.error(
                "Schema mapping failed kind=%s dialect=%s missing=%s header=%s",
                layout.kind,
                layout.dialect,
                missing,
                list(header_cells)[:10],
            )
            raise SchemaMappingError(layout.kind, missing, list(header_cells))

        mapping = FieldMapping(
            layout=layout,
            indexes=indexes,
            strategies=strategies,
            has_header=has_header,
            header=header_cells if has_header else (),
            width=width if has_header else layout.fallback_width,
        )
        logger.info(
            "Schema mapping resolved kind=%s dialect=%s header=%s recognized=%s indexes=%s",
            layout.kind,
            layout.dialect,
            has_header,
            recognized,
            dict(indexes),
        )
        return mapping
