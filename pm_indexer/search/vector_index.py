"""Vector index for semantic market search (pgvector).

The index lives in its own table, reached through its own engine, so it can
sit in a separate database from the relational store. Writes here are never
part of a relational transaction: the sync pass commits market rows first and
indexes afterwards.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog
from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Float, String, select, text
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from pm_indexer.config import settings
from pm_indexer.models.database import JSONType, build_engine
from pm_indexer.utils.retry import store_retry

logger = structlog.get_logger()

VectorBase = declarative_base()

# Transient database failures worth retrying
RETRYABLE_ERRORS = (OperationalError, InterfaceError)


class MarketVector(VectorBase):
    """One indexed market: its embedding plus a denormalized payload."""

    __tablename__ = "market_vectors"

    id = Column(String(36), primary_key=True)
    embedding = Column(Vector(settings.embedding_dimensions), nullable=False)

    # Filterable payload fields
    source = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    volume = Column(Float, nullable=False, default=0.0)

    payload = Column(JSONType, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def build_market_payload(market) -> Dict[str, Any]:
    """Search-facing snapshot of a market stored next to its vector."""
    return {
        "source": market.source,
        "source_id": market.source_id,
        "title": market.title,
        "subtitle": market.subtitle,
        "description": (market.description or "")[:1000],
        "status": market.status,
        "yes_price": market.yes_price,
        "no_price": market.no_price,
        "volume": market.volume,
        "volume_24h": market.volume_24h,
        "close_at": market.close_at.isoformat() if market.close_at else None,
        "url": market.url,
        "tags": list(market.tags or []),
        "category": market.category,
    }


class VectorIndex:
    """pgvector-backed market index."""

    def __init__(self, database_url: Optional[str] = None, dimensions: Optional[int] = None):
        self.database_url = database_url or settings.resolved_vector_database_url
        self.dimensions = dimensions or settings.embedding_dimensions
        self._engine = None
        self._session_factory = None
        self._ready = False
        self._ready_lock = threading.Lock()

    @property
    def engine(self):
        if self._engine is None:
            self._engine = build_engine(self.database_url)
        return self._engine

    def _session(self):
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory()

    @store_retry(RETRYABLE_ERRORS)
    def ensure_collection(self) -> None:
        """Create the extension, table and HNSW index once per process."""
        if self._ready:
            return

        with self._ready_lock:
            if self._ready:
                return

            with self.engine.begin() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                VectorBase.metadata.create_all(conn)
                # m=16 / ef_construction=64: pgvector defaults, good recall at this scale
                conn.execute(text(
                    "CREATE INDEX IF NOT EXISTS idx_market_vectors_embedding "
                    "ON market_vectors USING hnsw (embedding vector_cosine_ops) "
                    "WITH (m = 16, ef_construction = 64)"
                ))
                conn.execute(text(
                    "CREATE INDEX IF NOT EXISTS idx_market_vectors_source_status "
                    "ON market_vectors (source, status)"
                ))

            self._ready = True
            logger.info("vector_collection_ready", dimensions=self.dimensions)

    @store_retry(RETRYABLE_ERRORS)
    def upsert(self, markets: Sequence, embeddings: Dict[str, List[float]]) -> int:
        """Insert or replace vectors for markets that have an embedding.

        Returns:
            Number of points written
        """
        rows = []
        for market in markets:
            vector = embeddings.get(market.id)
            if vector is None:
                continue
            if len(vector) != self.dimensions:
                raise ValueError(
                    f"embedding for {market.id} has {len(vector)} dimensions, expected {self.dimensions}"
                )
            rows.append({
                "id": market.id,
                "embedding": vector,
                "source": market.source,
                "status": market.status,
                "volume": market.volume or 0.0,
                "payload": build_market_payload(market),
                "updated_at": datetime.utcnow(),
            })

        if not rows:
            return 0

        stmt = insert(MarketVector).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MarketVector.id],
            set_={
                "embedding": stmt.excluded.embedding,
                "source": stmt.excluded.source,
                "status": stmt.excluded.status,
                "volume": stmt.excluded.volume,
                "payload": stmt.excluded.payload,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

        logger.info("vector_upsert_complete", count=len(rows))
        return len(rows)

    @store_retry(RETRYABLE_ERRORS)
    def set_payload(self, market_id: str, payload: Dict[str, Any]) -> bool:
        """Replace the payload of one point without touching its vector."""
        with self._session() as session:
            point = session.get(MarketVector, market_id)
            if point is None:
                return False
            point.payload = payload
            point.status = payload.get("status", point.status)
            point.volume = payload.get("volume", point.volume) or 0.0
            session.commit()
            return True

    @store_retry(RETRYABLE_ERRORS)
    def set_payloads(self, markets: Sequence) -> int:
        """Refresh payloads for price-only changes. Missing points are skipped."""
        if not markets:
            return 0

        by_id = {m.id: m for m in markets}
        updated = 0
        with self._session() as session:
            points = session.execute(
                select(MarketVector).where(MarketVector.id.in_(list(by_id)))
            ).scalars().all()
            for point in points:
                market = by_id[point.id]
                point.payload = build_market_payload(market)
                point.status = market.status
                point.volume = market.volume or 0.0
                updated += 1
            session.commit()

        logger.debug("vector_payloads_updated", requested=len(markets), updated=updated)
        return updated

    def _filtered(self, stmt, filters: Optional[Dict[str, Any]]):
        filters = filters or {}
        if filters.get("source"):
            stmt = stmt.where(MarketVector.source == filters["source"])
        if filters.get("status"):
            stmt = stmt.where(MarketVector.status == filters["status"])
        if filters.get("min_volume") is not None:
            stmt = stmt.where(MarketVector.volume >= filters["min_volume"])
        return stmt

    @store_retry(RETRYABLE_ERRORS)
    def search(
        self,
        vector: List[float],
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 20,
        offset: int = 0,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Nearest markets by cosine similarity, best first.

        Returns:
            Dicts with ``id``, ``score`` (1 - cosine distance) and the payload fields
        """
        distance = MarketVector.embedding.cosine_distance(vector).label("distance")
        stmt = select(MarketVector.id, MarketVector.payload, distance)
        stmt = self._filtered(stmt, filters)
        if exclude_ids:
            stmt = stmt.where(MarketVector.id.notin_(list(exclude_ids)))
        stmt = stmt.order_by(distance, MarketVector.id).limit(limit).offset(offset)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()

        return [{"id": row.id, "score": 1.0 - float(row.distance), **(row.payload or {})} for row in rows]

    @store_retry(RETRYABLE_ERRORS)
    def recommend(
        self,
        seed_ids: Sequence[str],
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Markets near the centroid of the seed markets, seeds excluded."""
        if not seed_ids:
            return []

        with self.engine.connect() as conn:
            seeds = conn.execute(
                select(MarketVector.embedding).where(MarketVector.id.in_(list(seed_ids)))
            ).scalars().all()

        if not seeds:
            return []

        centroid = np.mean(np.array([np.asarray(s, dtype=float) for s in seeds]), axis=0)
        return self.search(centroid.tolist(), filters=filters, limit=limit, exclude_ids=seed_ids)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True


# Global index instance
_index = None


def get_vector_index() -> VectorIndex:
    """Get global vector index."""
    global _index
    if _index is None:
        _index = VectorIndex()
    return _index
