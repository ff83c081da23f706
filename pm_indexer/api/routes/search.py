"""Semantic search endpoint."""

from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query, status
import structlog

from pm_indexer.api.dependencies import get_search_service, search_rate_limit
from pm_indexer.api.errors import ApiError
from pm_indexer.search.pagination import InvalidCursorError
from pm_indexer.search.service import SearchService

logger = structlog.get_logger()

router = APIRouter()


@router.get("/search", dependencies=[Depends(search_rate_limit)])
def search_markets(
    q: str = Query(..., min_length=1, max_length=500, description="Search text"),
    source: Optional[Literal["polymarket", "kalshi"]] = Query(default=None),
    market_status: Optional[Literal["open", "closed", "settled"]] = Query(default=None, alias="status"),
    min_volume: Optional[float] = Query(default=None, ge=0),
    sort: Literal["relevance", "volume", "close_at"] = Query(default="relevance"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    limit: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = Query(default=None),
    service: SearchService = Depends(get_search_service),
):
    """Search markets by meaning."""
    filters = {"source": source, "status": market_status, "min_volume": min_volume}
    try:
        result = service.search(q, filters=filters, sort=sort, order=order, limit=limit, cursor=cursor)
    except InvalidCursorError:
        raise
    except Exception as e:
        logger.error("search_failed", error=str(e))
        raise ApiError(status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", "Search is temporarily unavailable")

    return {
        "query": q,
        "results": result["results"],
        "next_cursor": result["next_cursor"],
        "has_more": result["has_more"],
    }
