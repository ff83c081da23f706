"""Normalize raw Kalshi and Polymarket records into one market shape."""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger()

DEFAULT_PRICE = 0.5


@dataclass
class NormalizedMarket:
    """A market record as produced by a source, before persistence.

    ``id`` is a freshly minted UUID; the diff engine replaces it with the
    stored id when the (source, source_id) pair is already known.
    """

    id: str
    source_id: str
    source: str
    title: str
    description: str
    yes_price: float
    no_price: float
    status: str
    url: str
    content_hash: str
    subtitle: Optional[str] = None
    rules: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    last_price: Optional[float] = None
    volume: float = 0.0
    volume_24h: float = 0.0
    liquidity: Optional[float] = None
    result: Optional[str] = None
    created_at: Optional[datetime] = None
    open_at: Optional[datetime] = None
    close_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    image_url: Optional[str] = None
    embedding_model: Optional[str] = None
    last_synced_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Column values for inserting a Market row."""
        return {
            "id": self.id,
            "source": self.source,
            "source_id": self.source_id,
            "title": self.title,
            "subtitle": self.subtitle,
            "description": self.description,
            "rules": self.rules,
            "category": self.category,
            "tags": list(self.tags),
            "content_hash": self.content_hash,
            "yes_price": self.yes_price,
            "no_price": self.no_price,
            "last_price": self.last_price,
            "volume": self.volume,
            "volume_24h": self.volume_24h,
            "liquidity": self.liquidity,
            "status": self.status,
            "result": self.result,
            "created_at": self.created_at or self.last_synced_at,
            "open_at": self.open_at,
            "close_at": self.close_at,
            "expires_at": self.expires_at,
            "last_synced_at": self.last_synced_at,
            "url": self.url,
            "image_url": self.image_url,
            "embedding_model": self.embedding_model,
        }


def compute_content_hash(title: str, description: str, rules: Optional[str] = None) -> str:
    """SHA-256 hex digest over the fields that drive the embedding."""
    content = f"{title}\n{description}\n{rules or ''}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def build_embedding_text(market) -> str:
    """Text sent to the embedding model for a market.

    Accepts anything with title/description/rules/tags/category attributes
    (NormalizedMarket or the Market ORM model).
    """
    parts = [
        market.title,
        market.description,
        market.rules,
        ", ".join(market.tags or []),
        market.category,
    ]
    return "\n\n".join(p for p in parts if p)


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into naive UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("normalizer_bad_timestamp", value=str(value)[:64])
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


# Polymarket

def parse_polymarket_prices(prices: Any) -> Dict[str, float]:
    """Parse ``outcomePrices`` (a JSON-encoded list of strings) into yes/no."""
    if not prices:
        return {"yes": DEFAULT_PRICE, "no": DEFAULT_PRICE}

    if isinstance(prices, str):
        try:
            prices = json.loads(prices)
        except json.JSONDecodeError:
            return {"yes": DEFAULT_PRICE, "no": DEFAULT_PRICE}

    if not isinstance(prices, list):
        return {"yes": DEFAULT_PRICE, "no": DEFAULT_PRICE}

    yes = _to_float(prices[0] if len(prices) > 0 else None, DEFAULT_PRICE)
    no = _to_float(prices[1] if len(prices) > 1 else None, DEFAULT_PRICE)
    return {"yes": yes, "no": no}


def parse_polymarket_status(raw: Dict[str, Any]) -> str:
    if raw.get("closed"):
        return "closed"
    if raw.get("archived"):
        return "settled"
    return "open"


def _polymarket_tags(raw: Dict[str, Any]) -> List[str]:
    tags = []
    for tag in raw.get("tags") or []:
        label = tag.get("label") if isinstance(tag, dict) else tag
        if label:
            tags.append(str(label))
    return tags


def normalize_polymarket_market(raw: Dict[str, Any]) -> NormalizedMarket:
    """Normalize a Gamma API market."""
    prices = parse_polymarket_prices(raw.get("outcomePrices"))
    title = raw.get("question") or ""
    description = raw.get("description") or ""
    tags = _polymarket_tags(raw)
    start = _parse_datetime(raw.get("startDate"))
    end = _parse_datetime(raw.get("endDate"))

    return NormalizedMarket(
        id=str(uuid.uuid4()),
        source_id=str(raw.get("id")),
        source="polymarket",
        title=title,
        subtitle=raw.get("groupItemTitle") or None,
        description=description,
        rules=None,
        category=tags[0] if tags else None,
        tags=tags,
        content_hash=compute_content_hash(title, description, None),
        yes_price=prices["yes"],
        no_price=prices["no"],
        last_price=prices["yes"],
        volume=_to_float(raw.get("volume")),
        volume_24h=_to_float(raw.get("volume24hr")),
        liquidity=_to_float(raw.get("liquidity")),
        status=parse_polymarket_status(raw),
        created_at=start,
        open_at=start,
        close_at=end,
        expires_at=end,
        url=f"https://polymarket.com/event/{raw.get('slug')}",
        image_url=raw.get("image") or None,
    )


# Kalshi

KALSHI_STATUS_MAP = {
    "open": "open",
    "active": "open",  # events endpoint reports open markets as "active"
    "unopened": "open",
    "closed": "closed",
    "settled": "settled",
}


def parse_kalshi_status(status: Optional[str]) -> str:
    return KALSHI_STATUS_MAP.get((status or "").lower(), "open")


def _cents_midpoint(bid: Any, ask: Any) -> float:
    """Average bid/ask in cents, as a probability."""
    bid_f = _to_float(bid, None)
    ask_f = _to_float(ask, None)
    if bid_f is None or ask_f is None:
        return DEFAULT_PRICE
    return (bid_f + ask_f) / 2 / 100


def normalize_kalshi_market(raw: Dict[str, Any]) -> NormalizedMarket:
    """Normalize a Kalshi market (nested under an event)."""
    title = raw.get("title") or ""
    description = raw.get("subtitle") or ""
    rules = raw.get("rules_primary") or None
    last_price = _to_float(raw.get("last_price"), None)
    result = raw.get("result") or None

    return NormalizedMarket(
        id=str(uuid.uuid4()),
        source_id=str(raw.get("ticker")),
        source="kalshi",
        title=title,
        subtitle=raw.get("yes_sub_title") or None,
        description=description,
        rules=rules,
        category=raw.get("category") or None,
        tags=list(raw.get("tags") or []),
        content_hash=compute_content_hash(title, description, rules),
        yes_price=_cents_midpoint(raw.get("yes_bid"), raw.get("yes_ask")),
        no_price=_cents_midpoint(raw.get("no_bid"), raw.get("no_ask")),
        last_price=last_price / 100 if last_price is not None else None,
        volume=_to_float(raw.get("volume")),
        volume_24h=_to_float(raw.get("volume_24h")),
        liquidity=None,
        status=parse_kalshi_status(raw.get("status")),
        result=result if result in ("yes", "no") else None,
        created_at=_parse_datetime(raw.get("created_time")),
        open_at=_parse_datetime(raw.get("open_time")),
        close_at=_parse_datetime(raw.get("close_time")),
        expires_at=_parse_datetime(raw.get("expiration_time")),
        url=f"https://kalshi.com/markets/{raw.get('ticker')}",
        image_url=None,
    )
