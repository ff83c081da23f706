"""Append-only price history rows."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Index
from pm_indexer.models.database import Base


class PriceSnapshot(Base):
    """Price/volume/status of one market as recorded by one sync pass."""

    __tablename__ = "market_price_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    market_id = Column(String(36), ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)

    yes_price = Column(Float, nullable=False)
    no_price = Column(Float, nullable=False)
    volume = Column(Float, nullable=False, default=0.0)
    volume_24h = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False)

    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_price_history_market_recorded", "market_id", "recorded_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "market_id": self.market_id,
            "yes_price": self.yes_price,
            "no_price": self.no_price,
            "volume": self.volume,
            "volume_24h": self.volume_24h,
            "status": self.status,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
