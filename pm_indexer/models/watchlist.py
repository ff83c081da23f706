"""Per-owner watchlists of markets."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from pm_indexer.models.database import Base


class Watchlist(Base):
    """A named set of markets belonging to one owner key."""

    __tablename__ = "watchlists"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_key = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("uq_watchlists_owner_name", "owner_key", "name", unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Watchlist(id={self.id}, name={self.name!r})>"


class WatchlistItem(Base):
    """Membership of one market in one watchlist."""

    __tablename__ = "watchlist_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    watchlist_id = Column(String(36), ForeignKey("watchlists.id", ondelete="CASCADE"), nullable=False)
    market_id = Column(String(36), ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("uq_watchlist_items_market", "watchlist_id", "market_id", unique=True),
    )
