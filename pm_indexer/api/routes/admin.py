"""Admin endpoints: sync control, job processing and the audit trail."""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import structlog

from pm_indexer.api.audit import list_audit_logs, record_admin_action
from pm_indexer.api.dependencies import get_job_runner, get_sync_orchestrator
from pm_indexer.config import settings
from pm_indexer.models import get_db
from pm_indexer.sync.orchestrator import (
    FullSyncResult,
    SyncInProgressError,
    SyncOrchestrator,
    SyncRunError,
    get_sync_status,
)
from pm_indexer.workers.scheduler import is_scheduler_running, trigger_full_sync, trigger_incremental_sync

logger = structlog.get_logger()

router = APIRouter()


def format_sync_response(sync_type: str, result: FullSyncResult) -> Dict[str, Any]:
    def source_summary(r):
        return {
            "status": r.status,
            "fetched": r.fetched,
            "new": r.new_markets,
            "price_updates": r.updated_prices,
            "content_changed": r.content_changed,
            "embeddings": r.embeddings_generated,
            "errors": r.errors,
            "duration_ms": r.duration_ms,
        }

    return {
        "type": sync_type,
        "status": result.status,
        "success": result.status == "success",
        "synced": {
            "polymarket": source_summary(result.polymarket),
            "kalshi": source_summary(result.kalshi),
            "total": result.polymarket.fetched + result.kalshi.fetched,
        },
        "duration_ms": result.total_duration_ms,
    }


def _run_sync(sync_type: str, trigger, orchestrator: SyncOrchestrator, db: Session, request: Request):
    action = f"sync.{sync_type}"
    try:
        result = trigger(orchestrator)
    except SyncInProgressError as e:
        record_admin_action(db, request, action, "failure", {"error": str(e)})
        raise
    except SyncRunError as e:
        record_admin_action(db, request, action, "failure", {"status": e.status, "errors": e.errors})
        body = format_sync_response(sync_type, e.result)
        if e.status == "partial":
            return JSONResponse(status_code=207, content=body)
        body["error"] = {"code": "UPSTREAM_FAILURE", "message": str(e), "details": e.errors}
        return JSONResponse(status_code=502, content=body)

    record_admin_action(db, request, action, "success", {"status": result.status})
    return format_sync_response(sync_type, result)


@router.post("/sync")
def sync_incremental(
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
    db: Session = Depends(get_db),
):
    """Trigger an incremental sync (prices; embeds only new or changed markets)."""
    logger.info("admin_sync_triggered", sync_type="incremental")
    return _run_sync("incremental", trigger_incremental_sync, orchestrator, db, request)


@router.post("/sync/full")
def sync_full(
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
    db: Session = Depends(get_db),
):
    """Trigger a full sync (includes closed markets)."""
    logger.info("admin_sync_triggered", sync_type="full")
    return _run_sync("full", trigger_full_sync, orchestrator, db, request)


@router.get("/sync/status")
def sync_status(db: Session = Depends(get_db)):
    """Current sync state and scheduler configuration."""
    return {
        **get_sync_status(db),
        "scheduler_running": is_scheduler_running(),
        "config": {
            "sync_interval_minutes": settings.sync_interval_minutes,
            "full_sync_hour": settings.full_sync_hour,
            "market_fetch_limit": settings.market_fetch_limit,
            "auto_sync_enabled": settings.enable_auto_sync,
            "job_worker_enabled": settings.job_worker_enabled,
        },
    }


@router.post("/jobs/run")
def run_jobs(
    request: Request,
    batch_size: Optional[int] = Query(default=None, ge=1, le=100),
    run_once=Depends(get_job_runner),
    db: Session = Depends(get_db),
):
    """Process one batch of due embedding jobs in this request."""
    try:
        claimed = run_once(batch_size=batch_size)
    except Exception as e:
        record_admin_action(db, request, "jobs.run", "failure", {"error": str(e)})
        raise
    record_admin_action(db, request, "jobs.run", "success", {"claimed": claimed})
    return {"claimed": claimed}


@router.get("/audit")
def get_audit_logs(
    action: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Most recent admin actions."""
    entries = list_audit_logs(db, limit=limit, action=action)
    return {"entries": [e.to_dict() for e in entries], "count": len(entries)}
