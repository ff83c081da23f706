"""Watchlist alert evaluation after a sync pass."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from pm_indexer.models import Alert, AlertEvent
from pm_indexer.sync.diff import MarketPriceUpdate

logger = structlog.get_logger()

ALERT_COOLDOWN = timedelta(minutes=30)
DEFAULT_CLOSING_WINDOW_MINUTES = 60
# Floor for the previous price in the relative change formula
PRICE_EPSILON = 0.01
QUERY_CHUNK_SIZE = 500


def price_change(previous: float, current: float) -> float:
    """Relative yes-price move, safe for previous prices at or near zero."""
    return abs(current - previous) / max(previous, PRICE_EPSILON)


def _in_cooldown(alert: Alert, now: datetime) -> bool:
    return alert.last_triggered_at is not None and now - alert.last_triggered_at < ALERT_COOLDOWN


class AlertEvaluator:
    """Fires price_move and closing_soon alerts for markets touched by a pass."""

    def evaluate(
        self,
        db: Session,
        price_updates: Sequence[MarketPriceUpdate],
        markets: Sequence,
        now: Optional[datetime] = None,
    ) -> List[AlertEvent]:
        """Insert events for firing alerts and stamp them, in one transaction.

        Args:
            price_updates: Price changes of known markets in this pass
            markets: Markets touched by this pass (anything with id/close_at)
            now: Evaluation time (naive UTC)

        Returns:
            The inserted events
        """
        now = now or datetime.utcnow()
        events: List[AlertEvent] = []

        updates_by_id: Dict[str, MarketPriceUpdate] = {u.id: u for u in price_updates}
        markets_by_id = {m.id: m for m in markets}

        for alert in self._enabled_alerts(db, "price_move", list(updates_by_id)):
            update = updates_by_id.get(alert.market_id)
            if update is None or not alert.threshold or update.prev_yes_price is None:
                continue

            change = price_change(update.prev_yes_price, update.yes_price)
            if change < alert.threshold or _in_cooldown(alert, now):
                continue

            events.append(self._fire(db, alert, now, {
                "type": "price_move",
                "threshold": alert.threshold,
                "previous_yes_price": update.prev_yes_price,
                "current_yes_price": update.yes_price,
                "change": change,
            }))

        for alert in self._enabled_alerts(db, "closing_soon", list(markets_by_id)):
            market = markets_by_id.get(alert.market_id)
            if market is None or market.close_at is None:
                continue

            window = timedelta(minutes=alert.window_minutes or DEFAULT_CLOSING_WINDOW_MINUTES)
            time_to_close = market.close_at - now
            if time_to_close <= timedelta(0) or time_to_close > window or _in_cooldown(alert, now):
                continue

            events.append(self._fire(db, alert, now, {
                "type": "closing_soon",
                "close_at": market.close_at.isoformat(),
                "window_minutes": alert.window_minutes or DEFAULT_CLOSING_WINDOW_MINUTES,
            }))

        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

        if events:
            logger.info("alerts_triggered", count=len(events))
        return events

    def _enabled_alerts(self, db: Session, alert_type: str, market_ids: List[str]) -> List[Alert]:
        alerts: List[Alert] = []
        for i in range(0, len(market_ids), QUERY_CHUNK_SIZE):
            chunk = market_ids[i:i + QUERY_CHUNK_SIZE]
            alerts.extend(db.execute(
                select(Alert).where(
                    Alert.market_id.in_(chunk),
                    Alert.type == alert_type,
                    Alert.enabled.is_(True),
                )
            ).scalars().all())
        return alerts

    def _fire(self, db: Session, alert: Alert, now: datetime, payload: Dict) -> AlertEvent:
        event = AlertEvent(alert_id=alert.id, market_id=alert.market_id, triggered_at=now, payload=payload)
        db.add(event)
        alert.last_triggered_at = now
        return event
