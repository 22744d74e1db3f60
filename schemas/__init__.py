"""
Record Schemas Package
Provides the canonical record models for every ingested kind.
"""

from .records import (
    CanonicalRecord,
    CostReductionLine,
    InventoryLine,
    PurchaseLine,
    QuoteRequestLine,
    RECORD_MODELS,
    RevenueLine,
    SalesPlanLine,
    SupplierProfile,
    model_for,
    new_record_id,
    records_from_json,
    records_to_json,
)

__all__ = [
    "CanonicalRecord",
    "CostReductionLine",
    "InventoryLine",
    "PurchaseLine",
    "QuoteRequestLine",
    "RECORD_MODELS",
    "RevenueLine",
    "SalesPlanLine",
    "SupplierProfile",
    "model_for",
    "new_record_id",
    "records_from_json",
    "records_to_json",
]
