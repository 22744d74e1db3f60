"""
Export Router
Handles CSV export of stored record sets
"""
from fastapi import APIRouter, Depends, Response
import logging
from datetime import datetime

from routers.records import require_kind
from services.csv_export import export_csv_bytes
from services.sync_service import SyncOrchestrator, get_sync_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/export/{kind}")
async def export_records(kind: str, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    """Export one record kind as CSV (UTF-8 with BOM)"""
    kind = require_kind(kind)
    result = await orchestrator.read_all(kind)
    content = export_csv_bytes(kind, result.records)
    filename = f"{kind}-{datetime.now().strftime('%Y%m%d')}.csv"
    logger.info(f"Export kind={kind} records={len(result.records)} source={result.source}")
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
