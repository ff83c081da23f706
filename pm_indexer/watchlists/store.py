"""Owner-scoped watchlist, watchlist item and alert management.

Every operation takes the caller's owner key; a watchlist owned by someone
else behaves exactly like one that does not exist.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pm_indexer.alerts.evaluator import DEFAULT_CLOSING_WINDOW_MINUTES
from pm_indexer.models import Alert, AlertEvent, Market, Watchlist, WatchlistItem

logger = structlog.get_logger()

ALERT_TYPES = ("price_move", "closing_soon")


class WatchlistError(Exception):
    """Base class for watchlist and alert failures."""


class NotFoundError(WatchlistError):
    """Watchlist, alert or market missing (or owned by someone else)."""


class ConflictError(WatchlistError):
    """Watchlist name already used by this owner."""


class InvalidAlertError(WatchlistError):
    """Alert definition that can never fire."""


def get_watchlist(db: Session, owner_key: str, watchlist_id: str) -> Watchlist:
    watchlist = db.execute(
        select(Watchlist).where(Watchlist.id == watchlist_id, Watchlist.owner_key == owner_key)
    ).scalars().first()
    if watchlist is None:
        raise NotFoundError(f"Watchlist not found: {watchlist_id}")
    return watchlist


def _require_market(db: Session, market_id: str) -> Market:
    market = db.get(Market, market_id)
    if market is None:
        raise NotFoundError(f"Market not found: {market_id}")
    return market


def create_watchlist(db: Session, owner_key: str, name: str) -> Watchlist:
    """Create a watchlist; names are unique per owner.

    Raises:
        ConflictError: The owner already has a watchlist with this name
    """
    watchlist = Watchlist(owner_key=owner_key, name=name)
    db.add(watchlist)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Watchlist already exists: {name}") from e

    logger.info("watchlist_created", watchlist_id=watchlist.id)
    return watchlist


def list_watchlists(db: Session, owner_key: str) -> List[Dict[str, Any]]:
    """The owner's watchlists, newest first, with their item counts."""
    item_counts = (
        select(WatchlistItem.watchlist_id, func.count(WatchlistItem.id).label("item_count"))
        .group_by(WatchlistItem.watchlist_id)
        .subquery()
    )
    rows = db.execute(
        select(Watchlist, func.coalesce(item_counts.c.item_count, 0))
        .outerjoin(item_counts, item_counts.c.watchlist_id == Watchlist.id)
        .where(Watchlist.owner_key == owner_key)
        .order_by(Watchlist.created_at.desc(), Watchlist.id.desc())
    ).all()
    return [{**watchlist.to_dict(), "item_count": count} for watchlist, count in rows]


def watchlist_detail(db: Session, owner_key: str, watchlist_id: str) -> Dict[str, Any]:
    """A watchlist with its markets (most recently added first) and alerts."""
    watchlist = get_watchlist(db, owner_key, watchlist_id)

    markets = db.execute(
        select(Market)
        .join(WatchlistItem, WatchlistItem.market_id == Market.id)
        .where(WatchlistItem.watchlist_id == watchlist.id)
        .order_by(WatchlistItem.created_at.desc(), WatchlistItem.id.desc())
    ).scalars().all()

    return {
        "watchlist": watchlist.to_dict(),
        "items": [
            {
                "id": m.id,
                "title": m.title,
                "source": m.source,
                "yes_price": m.yes_price,
                "no_price": m.no_price,
                "status": m.status,
                "close_at": m.close_at.isoformat() if m.close_at else None,
                "url": m.url,
            }
            for m in markets
        ],
        "alerts": [a.to_dict() for a in list_alerts(db, owner_key, watchlist.id)],
    }


def delete_watchlist(db: Session, owner_key: str, watchlist_id: str) -> None:
    """Delete a watchlist with its items, alerts and alert events."""
    watchlist = get_watchlist(db, owner_key, watchlist_id)

    alert_ids = select(Alert.id).where(Alert.watchlist_id == watchlist.id)
    db.execute(delete(AlertEvent).where(AlertEvent.alert_id.in_(alert_ids)))
    db.execute(delete(Alert).where(Alert.watchlist_id == watchlist.id))
    db.execute(delete(WatchlistItem).where(WatchlistItem.watchlist_id == watchlist.id))
    db.delete(watchlist)
    db.commit()

    logger.info("watchlist_deleted", watchlist_id=watchlist_id)


def add_item(db: Session, owner_key: str, watchlist_id: str, market_id: str) -> bool:
    """Add a market to a watchlist.

    Returns:
        False when the market was already on the list
    """
    watchlist = get_watchlist(db, owner_key, watchlist_id)
    _require_market(db, market_id)

    exists = db.execute(
        select(WatchlistItem.id).where(
            WatchlistItem.watchlist_id == watchlist.id,
            WatchlistItem.market_id == market_id,
        )
    ).first()
    if exists:
        return False

    db.add(WatchlistItem(watchlist_id=watchlist.id, market_id=market_id))
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with an identical insert
        db.rollback()
        return False
    return True


def remove_item(db: Session, owner_key: str, watchlist_id: str, market_id: str) -> bool:
    """Remove a market from a watchlist; False when it was not on the list."""
    watchlist = get_watchlist(db, owner_key, watchlist_id)
    removed = db.execute(
        delete(WatchlistItem).where(
            WatchlistItem.watchlist_id == watchlist.id,
            WatchlistItem.market_id == market_id,
        )
    ).rowcount
    db.commit()
    return bool(removed)


def create_alert(
    db: Session,
    owner_key: str,
    watchlist_id: str,
    market_id: str,
    alert_type: str,
    threshold: Optional[float] = None,
    window_minutes: Optional[int] = None,
) -> Alert:
    """Create an alert on a market, attached to one of the owner's watchlists.

    ``price_move`` needs a positive ``threshold`` (fractional change);
    ``closing_soon`` uses ``window_minutes``, default 60.

    Raises:
        NotFoundError: Unknown watchlist or market
        InvalidAlertError: Unknown type or missing threshold
    """
    if alert_type not in ALERT_TYPES:
        raise InvalidAlertError(f"Unknown alert type: {alert_type}")
    if alert_type == "price_move" and not threshold:
        raise InvalidAlertError("threshold is required for price_move alerts")

    watchlist = get_watchlist(db, owner_key, watchlist_id)
    _require_market(db, market_id)

    alert = Alert(
        watchlist_id=watchlist.id,
        market_id=market_id,
        type=alert_type,
        threshold=threshold if alert_type == "price_move" else None,
        window_minutes=(window_minutes or DEFAULT_CLOSING_WINDOW_MINUTES) if alert_type == "closing_soon" else None,
        enabled=True,
    )
    db.add(alert)
    db.commit()

    logger.info("alert_created", alert_id=alert.id, alert_type=alert_type, market_id=market_id)
    return alert


def list_alerts(db: Session, owner_key: str, watchlist_id: str) -> List[Alert]:
    watchlist = get_watchlist(db, owner_key, watchlist_id)
    return db.execute(
        select(Alert)
        .where(Alert.watchlist_id == watchlist.id)
        .order_by(Alert.created_at.desc(), Alert.id.desc())
    ).scalars().all()


def delete_alert(db: Session, owner_key: str, alert_id: str) -> None:
    """Delete one of the owner's alerts and its events."""
    alert = db.execute(
        select(Alert)
        .join(Watchlist, Watchlist.id == Alert.watchlist_id)
        .where(Alert.id == alert_id, Watchlist.owner_key == owner_key)
    ).scalars().first()
    if alert is None:
        raise NotFoundError(f"Alert not found: {alert_id}")

    db.execute(delete(AlertEvent).where(AlertEvent.alert_id == alert.id))
    db.delete(alert)
    db.commit()
