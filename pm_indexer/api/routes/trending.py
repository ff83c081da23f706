"""Trending markets and tag/category facets."""

from typing import Literal, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pm_indexer.models import get_db
from pm_indexer.search.trending import category_facets, tag_facets, trending_markets

router = APIRouter()


@router.get("/trending")
def get_trending(
    sort: Literal["volume_24h", "price_change"] = Query(default="volume_24h"),
    window_hours: int = Query(default=24, ge=1, le=168),
    source: Optional[Literal["polymarket", "kalshi"]] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Open markets ranked by 24h volume or by yes-price move over the window."""
    markets = trending_markets(db, sort=sort, window_hours=window_hours, limit=limit, source=source)
    return {"sort": sort, "window_hours": window_hours, "markets": markets, "count": len(markets)}


@router.get("/tags")
def get_tags(limit: int = Query(default=50, ge=1, le=200), db: Session = Depends(get_db)):
    """Tags by number of markets."""
    tags = tag_facets(db, rank_by="count", limit=limit)
    return {"tags": tags, "count": len(tags)}


@router.get("/tags/trending")
def get_trending_tags(limit: int = Query(default=50, ge=1, le=200), db: Session = Depends(get_db)):
    """Tags by summed 24h volume."""
    tags = tag_facets(db, rank_by="volume_24h", limit=limit)
    return {"tags": tags, "count": len(tags)}


@router.get("/categories")
def get_categories(limit: int = Query(default=50, ge=1, le=200), db: Session = Depends(get_db)):
    """Categories by number of markets."""
    categories = category_facets(db, rank_by="count", limit=limit)
    return {"categories": categories, "count": len(categories)}


@router.get("/categories/trending")
def get_trending_categories(limit: int = Query(default=50, ge=1, le=200), db: Session = Depends(get_db)):
    """Categories by summed 24h volume."""
    categories = category_facets(db, rank_by="volume_24h", limit=limit)
    return {"categories": categories, "count": len(categories)}
