"""Watchlist endpoints, including alert creation on a watchlist."""

from typing import Literal, Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
import structlog

from pm_indexer.api.dependencies import get_owner_key
from pm_indexer.models import get_db
from pm_indexer.watchlists import store

logger = structlog.get_logger()

router = APIRouter()


class WatchlistCreate(BaseModel):
    """Request to create a watchlist."""
    name: str = Field(..., min_length=1, max_length=100)


class WatchlistItemCreate(BaseModel):
    """Request to add a market to a watchlist."""
    market_id: str = Field(..., min_length=1, max_length=36)


class AlertCreate(BaseModel):
    """Request to create an alert on a watched market."""
    market_id: str = Field(..., min_length=1, max_length=36)
    type: Literal["price_move", "closing_soon"]
    threshold: Optional[float] = Field(default=None, gt=0)
    window_minutes: Optional[int] = Field(default=None, gt=0, le=10080)


@router.get("")
def get_watchlists(owner_key: str = Depends(get_owner_key), db: Session = Depends(get_db)):
    """The caller's watchlists with item counts."""
    watchlists = store.list_watchlists(db, owner_key)
    return {"watchlists": watchlists, "count": len(watchlists)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_watchlist(
    body: WatchlistCreate,
    owner_key: str = Depends(get_owner_key),
    db: Session = Depends(get_db),
):
    """Create a watchlist (names are unique per caller)."""
    return store.create_watchlist(db, owner_key, body.name.strip()).to_dict()


@router.get("/{watchlist_id}")
def get_watchlist(watchlist_id: str, owner_key: str = Depends(get_owner_key), db: Session = Depends(get_db)):
    """A watchlist with its markets and alerts."""
    return store.watchlist_detail(db, owner_key, watchlist_id)


@router.delete("/{watchlist_id}")
def delete_watchlist(watchlist_id: str, owner_key: str = Depends(get_owner_key), db: Session = Depends(get_db)):
    """Delete a watchlist together with its items and alerts."""
    store.delete_watchlist(db, owner_key, watchlist_id)
    return {"success": True}


@router.post("/{watchlist_id}/items")
def add_watchlist_item(
    watchlist_id: str,
    body: WatchlistItemCreate,
    owner_key: str = Depends(get_owner_key),
    db: Session = Depends(get_db),
):
    """Add a market; adding one already on the list is a no-op."""
    added = store.add_item(db, owner_key, watchlist_id, body.market_id)
    return {"success": True, "added": added}


@router.delete("/{watchlist_id}/items/{market_id}")
def remove_watchlist_item(
    watchlist_id: str,
    market_id: str,
    owner_key: str = Depends(get_owner_key),
    db: Session = Depends(get_db),
):
    """Remove a market from a watchlist."""
    removed = store.remove_item(db, owner_key, watchlist_id, market_id)
    return {"success": True, "removed": removed}


@router.get("/{watchlist_id}/alerts")
def get_watchlist_alerts(watchlist_id: str, owner_key: str = Depends(get_owner_key), db: Session = Depends(get_db)):
    """Alerts defined on a watchlist."""
    alerts = store.list_alerts(db, owner_key, watchlist_id)
    return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}


@router.post("/{watchlist_id}/alerts", status_code=status.HTTP_201_CREATED)
def create_watchlist_alert(
    watchlist_id: str,
    body: AlertCreate,
    owner_key: str = Depends(get_owner_key),
    db: Session = Depends(get_db),
):
    """Create a price_move (needs threshold) or closing_soon alert."""
    alert = store.create_alert(
        db,
        owner_key,
        watchlist_id,
        market_id=body.market_id,
        alert_type=body.type,
        threshold=body.threshold,
        window_minutes=body.window_minutes,
    )
    return alert.to_dict()
