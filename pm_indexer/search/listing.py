"""Keyset-paginated listings: markets, price history and alert events."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from pm_indexer.models import Alert, AlertEvent, Market, PriceSnapshot, Watchlist
from pm_indexer.search.pagination import (
    InvalidCursorError,
    KeysetCursor,
    decode_keyset_cursor,
    encode_cursor,
)

LISTING_SORT_COLUMNS = {
    "volume": Market.volume,
    "volume_24h": Market.volume_24h,
    "close_at": Market.close_at,
    "created_at": Market.created_at,
}

DATETIME_SORTS = ("close_at", "created_at", "recorded_at", "triggered_at")


def _cursor_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _column_value(sort: str, value: Any) -> Any:
    """Turn a cursor's last_value back into a column value."""
    if sort in DATETIME_SORTS:
        if not isinstance(value, str):
            raise InvalidCursorError("cursor value must be a timestamp")
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise InvalidCursorError("cursor value is not a valid timestamp") from e
    if value is None or isinstance(value, str):
        raise InvalidCursorError("cursor value must be numeric")
    return float(value)


def _after(column, id_column, order: str, last_value: Any, last_id: str):
    """Rows strictly after ``(last_value, last_id)`` in ``order``."""
    if order == "desc":
        return or_(column < last_value, and_(column == last_value, id_column < last_id))
    return or_(column > last_value, and_(column == last_value, id_column > last_id))


def _ordered(stmt, column, id_column, order: str):
    if order == "desc":
        return stmt.order_by(column.desc(), id_column.desc())
    return stmt.order_by(column.asc(), id_column.asc())


def list_markets(
    db: Session,
    sort: str = "volume",
    order: str = "desc",
    limit: int = 20,
    cursor: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> Tuple[List[Market], Optional[str]]:
    """One page of markets ordered by ``(sort, id)``.

    Returns:
        (markets, next_cursor); next_cursor is None on the last page

    Raises:
        InvalidCursorError: For malformed tokens or tokens from another ordering
    """
    if sort not in LISTING_SORT_COLUMNS:
        raise ValueError(f"unknown sort: {sort}")

    column = LISTING_SORT_COLUMNS[sort]
    position = decode_keyset_cursor(cursor, sort, order)
    filters = filters or {}

    stmt = select(Market)
    if filters.get("source"):
        stmt = stmt.where(Market.source == filters["source"])
    if filters.get("status"):
        stmt = stmt.where(Market.status == filters["status"])
    if filters.get("category"):
        stmt = stmt.where(Market.category == filters["category"])
    if sort == "close_at":
        # NULLs have no place in the tuple ordering
        stmt = stmt.where(Market.close_at.isnot(None))

    if position is not None:
        last_value = _column_value(sort, position.last_value)
        stmt = stmt.where(_after(column, Market.id, order, last_value, position.last_id))

    stmt = _ordered(stmt, column, Market.id, order).limit(limit + 1)
    rows = db.execute(stmt).scalars().all()

    page = rows[:limit]
    next_cursor = None
    if len(rows) > limit and page:
        last = page[-1]
        next_cursor = encode_cursor(KeysetCursor(
            sort=sort,
            order=order,
            last_value=_cursor_value(getattr(last, sort)),
            last_id=last.id,
        ))
    return page, next_cursor


def list_price_history(
    db: Session,
    market_id: str,
    limit: int = 100,
    cursor: Optional[str] = None,
    order: str = "desc",
) -> Tuple[List[PriceSnapshot], Optional[str]]:
    """Price snapshots of one market ordered by ``(recorded_at, id)``."""
    position = decode_keyset_cursor(cursor, "recorded_at", order)

    stmt = select(PriceSnapshot).where(PriceSnapshot.market_id == market_id)
    if position is not None:
        last_value = _column_value("recorded_at", position.last_value)
        stmt = stmt.where(
            _after(PriceSnapshot.recorded_at, PriceSnapshot.id, order, last_value, position.last_id)
        )

    stmt = _ordered(stmt, PriceSnapshot.recorded_at, PriceSnapshot.id, order).limit(limit + 1)
    rows = db.execute(stmt).scalars().all()

    page = rows[:limit]
    next_cursor = None
    if len(rows) > limit and page:
        last = page[-1]
        next_cursor = encode_cursor(KeysetCursor(
            sort="recorded_at",
            order=order,
            last_value=last.recorded_at.isoformat(),
            last_id=last.id,
        ))
    return page, next_cursor


def list_alert_events(
    db: Session,
    owner_key: str,
    limit: int = 50,
    cursor: Optional[str] = None,
    watchlist_id: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Alert events on the owner's watchlists, newest first by ``(triggered_at, id)``."""
    order = "desc"
    position = decode_keyset_cursor(cursor, "triggered_at", order)

    stmt = (
        select(AlertEvent, Alert.type, Alert.watchlist_id)
        .join(Alert, Alert.id == AlertEvent.alert_id)
        .join(Watchlist, Watchlist.id == Alert.watchlist_id)
        .where(Watchlist.owner_key == owner_key)
    )
    if watchlist_id:
        stmt = stmt.where(Alert.watchlist_id == watchlist_id)
    if position is not None:
        last_value = _column_value("triggered_at", position.last_value)
        stmt = stmt.where(
            _after(AlertEvent.triggered_at, AlertEvent.id, order, last_value, position.last_id)
        )

    stmt = _ordered(stmt, AlertEvent.triggered_at, AlertEvent.id, order).limit(limit + 1)
    rows = db.execute(stmt).all()

    page = rows[:limit]
    next_cursor = None
    if len(rows) > limit and page:
        last = page[-1][0]
        next_cursor = encode_cursor(KeysetCursor(
            sort="triggered_at",
            order=order,
            last_value=last.triggered_at.isoformat(),
            last_id=last.id,
        ))

    events = [
        {**event.to_dict(), "type": alert_type, "watchlist_id": event_watchlist_id}
        for event, alert_type, event_watchlist_id in page
    ]
    return events, next_cursor
