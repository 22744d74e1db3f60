"""
Canonical Record Schemas
========================

One immutable model per record kind. Every ingestion dialect (legacy or
extended revenue exports, parts or material purchase exports, warehouse or
material inventory exports, ...) is normalized into exactly one of these
shapes before it reaches the sync layer.

RECORD KINDS:
-------------
- revenue        : RevenueLine        (매출 실적 / 품목별 매출현황)
- purchase       : PurchaseLine       (구매 입고, Parts or Material)
- inventory      : InventoryLine      (재고: warehouse / material / parts / product)
- supplier       : SupplierProfile    (협력사)
- quote_request  : QuoteRequestLine   (견적 요청 / RFQ)
- sales_plan     : SalesPlanLine      (매출현황, 계획 대비 실적)
- cost_reduction : CostReductionLine  (CR 현황)

Records carry no foreign keys. Grouping (per customer, per year, ...) is
computed on read.
"""
from __future__ import annotations

import uuid
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def new_record_id() -> str:
    return str(uuid.uuid4())


class _CanonicalBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=new_record_id)


class RevenueLine(_CanonicalBase):
    kind: Literal["revenue"] = "revenue"
    year: int
    month: str
    customer: str = "Unknown"
    model: str = ""
    part_no: Optional[str] = None
    customer_pn: Optional[str] = None
    part_name: Optional[str] = None
    qty: float = 0
    amount: float = 0


class PurchaseLine(_CanonicalBase):
    kind: Literal["purchase"] = "purchase"
    year: int
    month: str
    date: str = ""
    supplier: str = ""
    type: str = ""
    category: Literal["Parts", "Material"]
    item_code: str = ""
    item_name: str = ""
    spec: str = ""
    unit: str = ""
    qty: float = 0
    unit_price: float = 0
    amount: float = 0


class InventoryLine(_CanonicalBase):
    kind: Literal["inventory"] = "inventory"
    inventory_type: Literal["warehouse", "material", "parts", "product"]
    code: str
    name: str
    qty: float = 0
    spec: Optional[str] = None
    unit: Optional[str] = None
    location: Optional[str] = None
    customer_pn: Optional[str] = None
    model: Optional[str] = None
    status: Optional[str] = None
    storage_location: Optional[str] = None
    item_type: Optional[str] = None
    unit_price: Optional[float] = None
    amount: Optional[float] = None


class SupplierProfile(_CanonicalBase):
    kind: Literal["supplier"] = "supplier"
    company_name: str
    business_number: str = ""
    ceo: str = ""
    address: str = ""
    # {year: purchase amount excluding VAT}
    purchase_amounts: Dict[int, float] = Field(default_factory=dict)


class QuoteRequestLine(_CanonicalBase):
    kind: Literal["quote_request"] = "quote_request"
    index_no: str = ""
    customer: str
    project_type: str = ""
    project_name: str = ""
    process: str = ""
    status: str = ""
    date_selection: str = ""
    date_quotation: str = ""
    date_po: str = ""
    model: str = ""
    qty: float = 0
    unit_price: float = 0
    amount: float = 0
    remark: str = ""


class SalesPlanLine(_CanonicalBase):
    """One item of a plan-vs-actual export; months run January..December."""

    kind: Literal["sales_plan"] = "sales_plan"
    customer: str
    model: str = ""
    part_no: str = ""
    part_name: str = ""
    monthly_plan: List[float] = Field(default_factory=lambda: [0.0] * 12)
    monthly_actual: List[float] = Field(default_factory=lambda: [0.0] * 12)
    total_plan: float = 0
    total_actual: float = 0
    # actual / plan in percent (2 decimals), 0 when nothing was planned
    rate: float = 0


class CostReductionLine(_CanonicalBase):
    kind: Literal["cost_reduction"] = "cost_reduction"
    month: str
    total_sales: float = 0
    lg_sales: float = 0
    lg_cr: float = 0
    lg_defense: float = 0
    mtx_sales: float = 0
    mtx_cr: float = 0
    mtx_defense: float = 0


CanonicalRecord = Annotated[
    Union[
        RevenueLine,
        PurchaseLine,
        InventoryLine,
        SupplierProfile,
        QuoteRequestLine,
        SalesPlanLine,
        CostReductionLine,
    ],
    Field(discriminator="kind"),
]

RECORD_MODELS = {
    "revenue": RevenueLine,
    "purchase": PurchaseLine,
    "inventory": InventoryLine,
    "supplier": SupplierProfile,
    "quote_request": QuoteRequestLine,
    "sales_plan": SalesPlanLine,
    "cost_reduction": CostReductionLine,
}

RecordSetAdapter: TypeAdapter[List[CanonicalRecord]] = TypeAdapter(List[CanonicalRecord])


def model_for(kind: str) -> type[_CanonicalBase]:
    try:
        return RECORD_MODELS[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind '{kind}'. Expected one of: {', '.join(RECORD_MODELS)}") from None


def records_to_json(records: List[CanonicalRecord]) -> bytes:
    return RecordSetAdapter.dump_json(list(records))


def records_from_json(payload: Union[str, bytes]) -> List[CanonicalRecord]:
    return RecordSetAdapter.validate_json(payload)
