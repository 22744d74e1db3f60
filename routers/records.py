"""
Records Router
Read-all per kind and whole-store push/pull between the remote store and the snapshot cache.
"""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
import logging

from services.sync_service import STATUS_FAILED, SyncOrchestrator, get_sync_orchestrator
from settings import RECORD_KINDS, resolve_kind

logger = logging.getLogger(__name__)
router = APIRouter()


def require_kind(kind: str) -> str:
    resolved = resolve_kind(kind)
    if resolved is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown record kind '{kind}'. Must be one of: {', '.join(RECORD_KINDS)}",
        )
    return resolved


@router.get("/records/{kind}")
async def read_records(kind: str, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    kind = require_kind(kind)
    result = await orchestrator.read_all(kind)
    return {
        "kind": kind,
        "source": result.source,
        "message": result.message,
        "pending": result.pending,
        "count": len(result.records),
        "records": [r.model_dump(mode="json") for r in result.records],
    }


@router.post("/sync/push")
async def push_all(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    results = await orchestrator.push_all()
    payload = {"results": {kind: r.as_dict() for kind, r in results.items()}}
    failed = [kind for kind, r in results.items() if r.status == STATUS_FAILED]
    if failed:
        logger.error(f"Push failed for kinds={failed}")
        return JSONResponse(status_code=502, content={"error": "Cloud sync failed; local copies kept", **payload})
    return payload


@router.post("/sync/pull")
async def pull_all(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    results = await orchestrator.pull_all()
    return {
        "results": {
            kind: {"source": r.source, "count": len(r.records), "message": r.message, "pending": r.pending}
            for kind, r in results.items()
        }
    }
