"""Watchlist alerts and the events they emit."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, Index
from pm_indexer.models.database import Base, JSONType


class Alert(Base):
    """A user alert on one market (price_move or closing_soon)."""

    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    watchlist_id = Column(String(36), ForeignKey("watchlists.id", ondelete="CASCADE"), nullable=False)
    market_id = Column(String(36), ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)

    type = Column(String(20), nullable=False)  # "price_move" or "closing_soon"
    threshold = Column(Float, nullable=True)  # fractional change, price_move only
    window_minutes = Column(Integer, nullable=True)  # closing_soon only
    enabled = Column(Boolean, nullable=False, default=True)

    last_triggered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_alerts_watchlist", "watchlist_id"),
        Index("idx_alerts_market_type", "market_id", "type"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "watchlist_id": self.watchlist_id,
            "market_id": self.market_id,
            "type": self.type,
            "threshold": self.threshold,
            "window_minutes": self.window_minutes,
            "enabled": self.enabled,
            "last_triggered_at": self.last_triggered_at.isoformat() if self.last_triggered_at else None,
        }


class AlertEvent(Base):
    """One firing of an alert."""

    __tablename__ = "alert_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    alert_id = Column(String(36), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False)
    market_id = Column(String(36), ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    triggered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    payload = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_alert_events_market", "market_id"),
        Index("idx_alert_events_alert", "alert_id", "triggered_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "market_id": self.market_id,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "payload": self.payload or {},
        }
