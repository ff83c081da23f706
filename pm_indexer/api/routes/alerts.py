"""Alert event feed and alert deletion."""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pm_indexer.api.dependencies import get_owner_key
from pm_indexer.models import get_db
from pm_indexer.search.listing import list_alert_events
from pm_indexer.watchlists import store

router = APIRouter()


@router.get("")
def get_alert_events(
    watchlist_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    cursor: Optional[str] = Query(default=None),
    owner_key: str = Depends(get_owner_key),
    db: Session = Depends(get_db),
):
    """Alert events on the caller's watchlists, newest first."""
    if watchlist_id:
        store.get_watchlist(db, owner_key, watchlist_id)

    events, next_cursor = list_alert_events(
        db, owner_key, limit=limit, cursor=cursor, watchlist_id=watchlist_id,
    )
    return {
        "events": events,
        "next_cursor": next_cursor,
        "has_more": next_cursor is not None,
    }


@router.delete("/{alert_id}")
def delete_alert(alert_id: str, owner_key: str = Depends(get_owner_key), db: Session = Depends(get_db)):
    """Delete one of the caller's alerts."""
    store.delete_alert(db, owner_key, alert_id)
    return {"success": True}
