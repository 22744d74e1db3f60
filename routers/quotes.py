"""
Quote Request Router
Single-row add / update / delete for quote requests.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import logging

from schemas.records import QuoteRequestLine
from services.errors import CloudSyncFailed, RecordNotFound
from services.sync_service import SyncOrchestrator, get_sync_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


class QuoteRequestIn(BaseModel):
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


def _to_record(body: QuoteRequestIn, record_id: str = None) -> QuoteRequestLine:
    data = body.model_dump()
    if not data["amount"] and data["unit_price"] and data["qty"]:
        data["amount"] = data["unit_price"] * data["qty"]
    if record_id:
        data["id"] = record_id
    return QuoteRequestLine(**data)


@router.post("/quotes", status_code=201)
async def add_quote(body: QuoteRequestIn, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    record = _to_record(body)
    try:
        sync = await orchestrator.add_quote(record)
    except CloudSyncFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"record": record.model_dump(mode="json"), "sync": sync.as_dict()}


@router.put("/quotes/{quote_id}")
async def update_quote(
    quote_id: str,
    body: QuoteRequestIn,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    record = _to_record(body, quote_id)
    try:
        sync = await orchestrator.update_quote(record)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CloudSyncFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"record": record.model_dump(mode="json"), "sync": sync.as_dict()}


@router.delete("/quotes/{quote_id}")
async def delete_quote(quote_id: str, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    try:
        sync = await orchestrator.delete_quote(quote_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CloudSyncFailed as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"id": quote_id, "sync": sync.as_dict()}
