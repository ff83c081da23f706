"""Market model for normalized market data."""

import uuid
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import Column, String, Text, DateTime, Float, Index, UniqueConstraint
from pm_indexer.models.database import Base, JSONType


MARKET_SOURCES = ("polymarket", "kalshi")
MARKET_STATUSES = ("open", "closed", "settled")


def new_market_id() -> str:
    """Mint a market identity for a first-seen upstream record."""
    return str(uuid.uuid4())


class Market(Base):
    """Normalized market data from Kalshi or Polymarket."""

    __tablename__ = "markets"

    # Primary key (minted once, reused on every later sync)
    id = Column(String(36), primary_key=True, default=new_market_id)

    # Upstream identity
    source = Column(String(20), nullable=False)  # "polymarket" or "kalshi"
    source_id = Column(String(255), nullable=False)

    # Content (drives the embedding text)
    title = Column(Text, nullable=False)
    subtitle = Column(Text, nullable=True)  # Choice label for multi-outcome markets
    description = Column(Text, nullable=False, default="")
    rules = Column(Text, nullable=True)
    category = Column(String(255), nullable=True)
    tags = Column(JSONType, nullable=False, default=list)

    # SHA-256 over title + description + rules
    content_hash = Column(String(64), nullable=True)

    # Pricing (probabilities in [0, 1])
    yes_price = Column(Float, nullable=False)
    no_price = Column(Float, nullable=False)
    last_price = Column(Float, nullable=True)

    # Volume
    volume = Column(Float, nullable=False, default=0.0)
    volume_24h = Column(Float, nullable=False, default=0.0)
    liquidity = Column(Float, nullable=True)

    # Status
    status = Column(String(20), nullable=False, default="open")  # "open", "closed", "settled"
    result = Column(String(10), nullable=True)  # "yes", "no"

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    open_at = Column(DateTime, nullable=True)
    close_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Metadata
    url = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)

    # Model that produced the indexed vector (None until embedded)
    embedding_model = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="uq_markets_source_source_id"),
        Index("idx_markets_status", "status"),
        Index("idx_markets_volume_id", "volume", "id"),
        Index("idx_markets_close_at_id", "close_at", "id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "source": self.source,
            "source_id": self.source_id,
            "title": self.title,
            "subtitle": self.subtitle,
            "description": self.description,
            "rules": self.rules,
            "category": self.category,
            "tags": self.tags or [],
            "yes_price": self.yes_price,
            "no_price": self.no_price,
            "last_price": self.last_price,
            "volume": self.volume,
            "volume_24h": self.volume_24h,
            "liquidity": self.liquidity,
            "status": self.status,
            "result": self.result,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "open_at": self.open_at.isoformat() if self.open_at else None,
            "close_at": self.close_at.isoformat() if self.close_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "url": self.url,
            "image_url": self.image_url,
            "embedding_model": self.embedding_model,
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"<Market(id={self.id}, source={self.source}, title={(self.title or '')[:50]})>"
