"""Price trends, trending markets and tag/category facets."""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from pm_indexer.models import Market, PriceSnapshot

TRENDING_SORTS = ("volume_24h", "price_change")
FACET_RANKINGS = ("count", "volume_24h")
FACET_SCAN_BATCH = 1000


def _snapshot_point(snapshot: PriceSnapshot) -> Dict[str, Any]:
    return {
        "recorded_at": snapshot.recorded_at.isoformat(),
        "yes_price": snapshot.yes_price,
        "no_price": snapshot.no_price,
    }


def market_trend(
    db: Session,
    market_id: str,
    window_hours: int = 24,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """Yes-price move of one market over the last ``window_hours``.

    The baseline is the newest snapshot at or before the window start. A
    market with no snapshot that old is compared against its latest
    snapshot, so its delta is 0.

    Returns:
        Trend summary, or None when the market has no history
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=window_hours)

    def newest(*criteria):
        return db.execute(
            select(PriceSnapshot)
            .where(PriceSnapshot.market_id == market_id, *criteria)
            .order_by(PriceSnapshot.recorded_at.desc(), PriceSnapshot.id.desc())
            .limit(1)
        ).scalars().first()

    latest = newest()
    if latest is None:
        return None
    baseline = newest(PriceSnapshot.recorded_at <= cutoff) or latest

    delta = latest.yes_price - baseline.yes_price
    return {
        "market_id": market_id,
        "window_hours": window_hours,
        "start": _snapshot_point(baseline),
        "end": _snapshot_point(latest),
        "delta": delta,
        "percent_change": delta / baseline.yes_price if baseline.yes_price > 0 else None,
    }


def trending_markets(
    db: Session,
    sort: str = "volume_24h",
    window_hours: int = 24,
    limit: int = 20,
    source: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Open markets ranked by 24h volume or by absolute yes-price move.

    The price move compares the current price with the newest snapshot at or
    before the window start; markets younger than the window have moved 0.
    """
    if sort not in TRENDING_SORTS:
        raise ValueError(f"unknown trending sort: {sort}")

    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=window_hours)

    baseline_at = (
        select(PriceSnapshot.market_id, func.max(PriceSnapshot.recorded_at).label("recorded_at"))
        .where(PriceSnapshot.recorded_at <= cutoff)
        .group_by(PriceSnapshot.market_id)
        .subquery()
    )
    baseline = (
        select(PriceSnapshot.market_id, func.max(PriceSnapshot.yes_price).label("yes_price"))
        .join(baseline_at, and_(
            PriceSnapshot.market_id == baseline_at.c.market_id,
            PriceSnapshot.recorded_at == baseline_at.c.recorded_at,
        ))
        .group_by(PriceSnapshot.market_id)
        .subquery()
    )

    baseline_price = func.coalesce(baseline.c.yes_price, Market.yes_price)
    delta = (Market.yes_price - baseline_price).label("delta")

    stmt = (
        select(Market, baseline_price.label("baseline_yes_price"), delta)
        .outerjoin(baseline, baseline.c.market_id == Market.id)
        .where(Market.status == "open")
    )
    if source:
        stmt = stmt.where(Market.source == source)

    if sort == "price_change":
        stmt = stmt.order_by(func.abs(delta).desc(), Market.volume_24h.desc(), Market.id.asc())
    else:
        stmt = stmt.order_by(Market.volume_24h.desc(), Market.id.asc())

    rows = db.execute(stmt.limit(limit)).all()
    return [
        {
            **market.to_dict(),
            "baseline_yes_price": baseline_yes_price,
            "price_delta": price_delta,
        }
        for market, baseline_yes_price, price_delta in rows
    ]


def category_facets(db: Session, rank_by: str = "count", limit: int = 50) -> List[Dict[str, Any]]:
    """Categories with their market count or summed 24h volume."""
    if rank_by not in FACET_RANKINGS:
        raise ValueError(f"unknown facet ranking: {rank_by}")

    measure = func.count(Market.id) if rank_by == "count" else func.sum(Market.volume_24h)
    rows = db.execute(
        select(Market.category, measure.label("value"))
        .where(Market.category.isnot(None))
        .group_by(Market.category)
        .order_by(measure.desc(), Market.category.asc())
        .limit(limit)
    ).all()
    return [{"category": category, rank_by: _facet_value(rank_by, value)} for category, value in rows]


def tag_facets(db: Session, rank_by: str = "count", limit: int = 50) -> List[Dict[str, Any]]:
    """Tags with their market count or summed 24h volume.

    Tags live in a JSON array per market, so they are tallied while
    streaming the column rather than in SQL.
    """
    if rank_by not in FACET_RANKINGS:
        raise ValueError(f"unknown facet ranking: {rank_by}")

    counts: Counter = Counter()
    volumes: Dict[str, float] = defaultdict(float)
    result = db.execute(
        select(Market.tags, Market.volume_24h).execution_options(yield_per=FACET_SCAN_BATCH)
    )
    for tags, volume_24h in result:
        for tag in set(tags or []):
            counts[tag] += 1
            volumes[tag] += volume_24h or 0.0

    totals = counts if rank_by == "count" else volumes
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return [{"tag": tag, rank_by: _facet_value(rank_by, value)} for tag, value in ranked]


def _facet_value(rank_by: str, value):
    return int(value) if rank_by == "count" else float(value or 0.0)
