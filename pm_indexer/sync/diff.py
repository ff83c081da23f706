"""Bucket freshly fetched markets against what is already stored."""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional

from pm_indexer.normalization.normalizer import NormalizedMarket


@dataclass(frozen=True)
class ExistingMarket:
    """The stored columns the diff needs."""

    id: str
    source_id: str
    content_hash: Optional[str]
    yes_price: Optional[float] = None


@dataclass(frozen=True)
class MarketPriceUpdate:
    id: str
    yes_price: float
    no_price: float
    volume: float
    volume_24h: float
    status: str
    prev_yes_price: Optional[float] = None


@dataclass
class CategorizedMarkets:
    to_insert: List[NormalizedMarket] = field(default_factory=list)
    to_update_prices: List[MarketPriceUpdate] = field(default_factory=list)
    needing_embedding: List[NormalizedMarket] = field(default_factory=list)
    new_markets: int = 0
    updated_prices: int = 0
    content_changed: int = 0

    @property
    def content_updates(self) -> List[NormalizedMarket]:
        """Known markets whose text changed (embedding needed, not inserted)."""
        inserted = {m.id for m in self.to_insert}
        return [m for m in self.needing_embedding if m.id not in inserted]


def categorize_markets(
    normalized: Iterable[NormalizedMarket],
    existing_by_source_id: Mapping[str, ExistingMarket],
) -> CategorizedMarkets:
    """Split fresh records into inserts, price updates and embedding work.

    * unseen source id: insert and embed
    * seen source id: take the stored id, always update prices, embed only if
      the content hash changed

    Input records are not modified; known records are returned as copies
    carrying the stored id.
    """
    result = CategorizedMarkets()

    for market in normalized:
        existing = existing_by_source_id.get(market.source_id)

        if existing is None:
            result.to_insert.append(market)
            result.needing_embedding.append(market)
            result.new_markets += 1
            continue

        known = replace(market, id=existing.id)
        result.to_update_prices.append(MarketPriceUpdate(
            id=existing.id,
            yes_price=known.yes_price,
            no_price=known.no_price,
            volume=known.volume,
            volume_24h=known.volume_24h,
            status=known.status,
            prev_yes_price=existing.yes_price,
        ))
        result.updated_prices += 1

        if existing.content_hash != known.content_hash:
            result.needing_embedding.append(known)
            result.content_changed += 1

    return result


def index_existing(rows: Iterable) -> Dict[str, ExistingMarket]:
    """Key stored rows (anything with id/source_id/content_hash/yes_price) by source id."""
    return {
        row.source_id: ExistingMarket(
            id=row.id,
            source_id=row.source_id,
            content_hash=row.content_hash,
            yes_price=row.yes_price,
        )
        for row in rows
    }
