"""
CSV Ingest Router
Parses an uploaded export into canonical records and saves them (full replace).
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from typing import Optional
import logging
import uuid

from routers.records import require_kind
from services.errors import CloudSyncFailed, IngestionError
from services.record_builder import IngestionResult, RecordBuilder
from services.sync_service import SyncOrchestrator, get_sync_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_UPLOAD_BYTES = 50 * 1024 * 1024

# Field that identifies the partition an upload replaces, per kind.
PARTITION_FIELDS = {
    "revenue": "year",
    "purchase": "category",
    "inventory": "inventory_type",
}


def _partition_of(result: IngestionResult):
    field = PARTITION_FIELDS.get(result.kind)
    if field is None:
        raise HTTPException(status_code=422, detail=f"Partial replace is not supported for {result.kind}")
    values = {getattr(r, field) for r in result.records}
    return lambda record: getattr(record, field, None) in values


@router.post("/ingest/{kind}")
async def ingest_upload(
    kind: str,
    file: UploadFile = File(...),
    dialect: Optional[str] = Form(None),
    year: Optional[int] = Form(None),
    replace: str = Form("all"),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    request_id = str(uuid.uuid4())
    kind = require_kind(kind)
    logger.info(f"[{request_id}] Ingest attempt kind={kind} filename={file.filename!r} dialect={dialect!r} year={year!r} replace={replace!r}")

    if replace not in ("all", "partition"):
        raise HTTPException(status_code=422, detail="replace must be 'all' or 'partition'")

    content = await file.read()
    size = len(content or b"")
    if size == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 50MB")

    try:
        result = RecordBuilder().build(content, kind, dialect=dialect, year=year)
    except IngestionError as e:
        logger.warning(f"[{request_id}] Ingest rejected kind={kind}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    if not result.records:
        raise HTTPException(
            status_code=422,
            detail=f"No {kind} records could be read ({result.skipped_count} rows skipped)",
        )

    try:
        if replace == "partition":
            sync = await orchestrator.replace_partition(kind, result.records, _partition_of(result))
        else:
            sync = await orchestrator.save_all(kind, result.records)
    except CloudSyncFailed as e:
        logger.error(f"[{request_id}] Ingest sync failed kind={kind}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    logger.info(f"[{request_id}] Ingest done kind={kind} records={len(result.records)} skipped={result.skipped_count} sync={sync.status}")
    return {**result.summary(), "sync": sync.as_dict()}
