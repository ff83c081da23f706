"""Health check endpoint."""

from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func, select, text
import structlog

from pm_indexer.models import Job, Market, get_db
from pm_indexer.models.job import JOB_STATUS_QUEUED
from pm_indexer.search.vector_index import get_vector_index
from pm_indexer.utils.cache import get_cache
from pm_indexer.workers.scheduler import is_scheduler_running

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db), index=Depends(get_vector_index)):
    """Health check endpoint with dependency status.

    Returns:
        JSON response with overall health status and component details
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {},
        "metrics": {},
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    # Check vector index
    try:
        index.ping()
        health_status["components"]["vector_index"] = {"status": "healthy"}
    except Exception as e:
        logger.error("health_check_vector_index_failed", error=str(e))
        health_status["components"]["vector_index"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    # Check Redis
    try:
        get_cache().ping()
        health_status["components"]["redis"] = {"status": "healthy"}
    except Exception as e:
        logger.error("health_check_redis_failed", error=str(e))
        health_status["components"]["redis"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    health_status["components"]["scheduler"] = {
        "status": "running" if is_scheduler_running() else "stopped",
    }

    # Get metrics from database
    try:
        counts = dict(db.execute(select(Market.source, func.count()).group_by(Market.source)).all())
        queued_jobs = db.execute(
            select(func.count()).select_from(Job).where(Job.status == JOB_STATUS_QUEUED)
        ).scalar()
        health_status["metrics"] = {
            "total_markets_kalshi": counts.get("kalshi", 0),
            "total_markets_polymarket": counts.get("polymarket", 0),
            "queued_jobs": queued_jobs,
        }
    except Exception as e:
        logger.error("health_check_metrics_failed", error=str(e))
        health_status["metrics"] = {"error": "Failed to fetch metrics"}

    return health_status
