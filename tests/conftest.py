"""Shared fixtures: SQLite databases and in-memory stand-ins for the outside world."""

import os

# Settings are read at import time; point everything at local, inert backends first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["METRICS_ENABLED"] = "false"
os.environ["QUERY_EMBEDDING_CACHE_TTL_SEC"] = "0"
os.environ["ENABLE_AUTO_SYNC"] = "false"
os.environ["JOB_WORKER_ENABLED"] = "false"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["SOURCE_RETRY_BASE_SEC"] = "0"
os.environ["SOURCE_RETRY_MAX_SEC"] = "0"
os.environ["LOG_FORMAT"] = "text"

from datetime import datetime
from typing import Dict, List

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pm_indexer.models import Base, Market
from pm_indexer.models.database import build_engine
from pm_indexer.normalization.normalizer import normalize_kalshi_market, normalize_polymarket_market


@pytest.fixture
def session_factory():
    """Session factory over a single shared in-memory database."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a file database, safe for concurrent threads."""
    engine = build_engine(f"sqlite:///{tmp_path / 'indexer.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


def kalshi_raw(ticker, title=None, subtitle="", yes_bid=40, yes_ask=44, volume=100, close_time=None, status="active"):
    """Raw Kalshi market record as the events endpoint nests it."""
    return {
        "ticker": ticker,
        "title": title or f"Market {ticker}",
        "subtitle": subtitle,
        "yes_bid": yes_bid,
        "yes_ask": yes_ask,
        "no_bid": 100 - yes_ask,
        "no_ask": 100 - yes_bid,
        "volume": volume,
        "volume_24h": volume / 10,
        "status": status,
        "close_time": close_time,
        "category": "Economics",
    }


def polymarket_raw(market_id, question=None, yes="0.6", no="0.4", volume="500", closed=False):
    """Raw Gamma market record."""
    return {
        "id": market_id,
        "question": question or f"Question {market_id}",
        "description": "Resolution details",
        "slug": f"slug-{market_id}",
        "outcomePrices": f"[\"{yes}\", \"{no}\"]",
        "volume": volume,
        "volume24hr": "10",
        "closed": closed,
    }


def seed_market(db, raw, source="kalshi", **overrides) -> Market:
    """Store a market exactly as a previous sync would have."""
    normalize = normalize_kalshi_market if source == "kalshi" else normalize_polymarket_market
    values = normalize(raw).to_dict()
    values["embedding_model"] = "fake-model"
    values.update(overrides)
    market = Market(**values)
    db.add(market)
    db.commit()
    return market


class FakeSource:
    """Source client serving canned pages, or failing on fetch."""

    def __init__(self, source: str, pages: List[List[Dict]] = None, error: Exception = None):
        self.SOURCE = source
        self.pages = pages or []
        self.error = error
        self.calls = []

    def iter_market_batches(self, status="open", limit=None, exclude_sports=None):
        self.calls.append(status)
        if self.error is not None:
            raise self.error
        for page in self.pages:
            yield page

    def source_id(self, raw):
        return str(raw.get("ticker") if self.SOURCE == "kalshi" else raw.get("id"))

    def normalize_market(self, raw):
        if self.SOURCE == "kalshi":
            return normalize_kalshi_market(raw)
        return normalize_polymarket_market(raw)


class FakeEmbedder:
    """Deterministic embedder producing small vectors."""

    model_name = "fake-model"

    def __init__(self, fail: bool = False, dimensions: int = 3):
        self.fail = fail
        self.dimensions = dimensions
        self.embedded_ids: List[str] = []
        self.queries: List[str] = []

    def embed_markets(self, markets):
        if self.fail:
            raise RuntimeError("model unavailable")
        self.embedded_ids.extend(m.id for m in markets)
        return {m.id: [1.0] + [0.0] * (self.dimensions - 1) for m in markets}

    def embed_query(self, text):
        if self.fail:
            raise RuntimeError("model unavailable")
        self.queries.append(text)
        return [1.0] + [0.0] * (self.dimensions - 1)


class FakeVectorIndex:
    """Vector index keeping points in a dict; search returns canned results."""

    def __init__(self, fail_ensure=False, fail_upsert=False, results=None):
        self.fail_ensure = fail_ensure
        self.fail_upsert = fail_upsert
        self.points: Dict[str, Dict] = {}
        self.payload_updates: List[str] = []
        self.results = results or []
        self.search_calls = []
        self.recommend_calls = []

    def ensure_collection(self):
        if self.fail_ensure:
            raise ConnectionError("vector store down")

    def upsert(self, markets, embeddings):
        if self.fail_upsert:
            raise ConnectionError("vector store down")
        written = 0
        for market in markets:
            if market.id in embeddings:
                self.points[market.id] = {"vector": embeddings[market.id], "status": market.status}
                written += 1
        return written

    def set_payloads(self, markets):
        self.payload_updates.extend(m.id for m in markets)
        return len(markets)

    def search(self, vector, filters=None, limit=20, offset=0, exclude_ids=None):
        self.search_calls.append({"filters": filters, "limit": limit, "offset": offset})
        rows = [r for r in self.results if not exclude_ids or r["id"] not in exclude_ids]
        return rows[offset:offset + limit]

    def recommend(self, seed_ids, filters=None, limit=10):
        self.recommend_calls.append(list(seed_ids))
        return [r for r in self.results if r["id"] not in seed_ids][:limit]

    def ping(self):
        return True


@pytest.fixture
def fixed_now():
    return datetime(2026, 6, 1, 12, 0, 0)
