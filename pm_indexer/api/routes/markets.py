"""Market listing, history, trend and recommendation endpoints."""

from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
import structlog

from pm_indexer.api.dependencies import get_search_service, search_rate_limit
from pm_indexer.api.errors import ApiError
from pm_indexer.models import Market, get_db
from pm_indexer.search.listing import list_markets, list_price_history
from pm_indexer.search.service import SearchService
from pm_indexer.search.trending import market_trend

logger = structlog.get_logger()

router = APIRouter()


def _get_market_or_404(db: Session, market_id: str) -> Market:
    market = db.get(Market, market_id)
    if market is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "NOT_FOUND", f"Market not found: {market_id}")
    return market


@router.get("")
def get_markets(
    source: Optional[Literal["polymarket", "kalshi"]] = Query(default=None),
    market_status: Optional[Literal["open", "closed", "settled"]] = Query(default=None, alias="status"),
    category: Optional[str] = Query(default=None),
    sort: Literal["volume", "volume_24h", "close_at", "created_at"] = Query(default="volume"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    limit: int = Query(default=20, ge=1, le=100),
    cursor: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """List markets with keyset pagination."""
    markets, next_cursor = list_markets(
        db,
        sort=sort,
        order=order,
        limit=limit,
        cursor=cursor,
        filters={"source": source, "status": market_status, "category": category},
    )
    return {
        "markets": [m.to_dict() for m in markets],
        "next_cursor": next_cursor,
        "has_more": next_cursor is not None,
    }


@router.get("/{market_id}")
def get_market(market_id: str, db: Session = Depends(get_db)):
    """Get one market."""
    return _get_market_or_404(db, market_id).to_dict()


@router.get("/{market_id}/history")
def get_market_history(
    market_id: str,
    order: Literal["asc", "desc"] = Query(default="desc"),
    limit: int = Query(default=100, ge=1, le=500),
    cursor: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Price history of one market with keyset pagination."""
    _get_market_or_404(db, market_id)
    snapshots, next_cursor = list_price_history(db, market_id, limit=limit, cursor=cursor, order=order)
    return {
        "market_id": market_id,
        "history": [s.to_dict() for s in snapshots],
        "next_cursor": next_cursor,
        "has_more": next_cursor is not None,
    }


@router.get("/{market_id}/trend")
def get_market_trend(
    market_id: str,
    window_hours: int = Query(default=24, ge=1, le=168),
    db: Session = Depends(get_db),
):
    """Yes-price move over the last ``window_hours``."""
    _get_market_or_404(db, market_id)
    trend = market_trend(db, market_id, window_hours=window_hours)
    if trend is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "NOT_FOUND", f"No price history for market: {market_id}")
    return trend


@router.get("/{market_id}/recommendations", dependencies=[Depends(search_rate_limit)])
def get_recommendations(
    market_id: str,
    limit: int = Query(default=10, ge=1, le=50),
    market_status: Optional[Literal["open", "closed", "settled"]] = Query(default="open", alias="status"),
    db: Session = Depends(get_db),
    service: SearchService = Depends(get_search_service),
):
    """Markets similar to this one."""
    _get_market_or_404(db, market_id)
    try:
        results = service.recommend([market_id], filters={"status": market_status}, limit=limit)
    except Exception as e:
        logger.error("recommendations_failed", market_id=market_id, error=str(e))
        raise ApiError(status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE", "Recommendations are temporarily unavailable")

    return {"market_id": market_id, "results": results}
