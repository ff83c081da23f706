"""Unit tests for market normalization."""

from datetime import datetime

import pytest

from pm_indexer.normalization.normalizer import (
    build_embedding_text,
    compute_content_hash,
    normalize_kalshi_market,
    normalize_polymarket_market,
    parse_kalshi_status,
    parse_polymarket_prices,
    parse_polymarket_status,
)


@pytest.mark.unit
class TestContentHash:
    """Test content hashing."""

    def test_deterministic(self):
        """Test identical content gives identical hashes."""
        assert compute_content_hash("T", "D", "R") == compute_content_hash("T", "D", "R")

    def test_missing_rules_same_as_empty(self):
        """Test None rules hash like empty rules."""
        assert compute_content_hash("T", "D", None) == compute_content_hash("T", "D", "")

    def test_any_field_change_changes_hash(self):
        """Test each hashed field contributes."""
        base = compute_content_hash("T", "D", "R")
        assert compute_content_hash("T2", "D", "R") != base
        assert compute_content_hash("T", "D2", "R") != base
        assert compute_content_hash("T", "D", "R2") != base

    def test_hex_sha256(self):
        """Test output is a 64 char hex digest."""
        digest = compute_content_hash("T", "D")
        assert len(digest) == 64
        int(digest, 16)


@pytest.mark.unit
class TestPolymarket:
    """Test Polymarket Gamma normalization."""

    RAW = {
        "id": "12345",
        "question": "Will BTC close above $100k?",
        "description": "Resolves YES if...",
        "slug": "btc-100k",
        "outcomePrices": "[\"0.62\", \"0.38\"]",
        "volume": "15000.5",
        "volume24hr": 1200,
        "liquidity": "800",
        "closed": False,
        "endDate": "2026-12-31T00:00:00Z",
        "startDate": "2026-01-01T12:00:00+02:00",
        "tags": [{"label": "Crypto"}, {"label": "Bitcoin"}],
    }

    def test_prices_from_encoded_list(self):
        """Test outcomePrices JSON strings are parsed."""
        assert parse_polymarket_prices("[\"0.62\", \"0.38\"]") == {"yes": 0.62, "no": 0.38}

    def test_unparseable_prices_fall_back(self):
        """Test bad price payloads fall back to 0.5."""
        assert parse_polymarket_prices("not json") == {"yes": 0.5, "no": 0.5}
        assert parse_polymarket_prices(None) == {"yes": 0.5, "no": 0.5}

    def test_status(self):
        """Test closed and archived flags map to statuses."""
        assert parse_polymarket_status({}) == "open"
        assert parse_polymarket_status({"closed": True}) == "closed"
        assert parse_polymarket_status({"archived": True}) == "settled"

    def test_normalize(self):
        """Test a full Gamma record."""
        market = normalize_polymarket_market(self.RAW)

        assert market.source == "polymarket"
        assert market.source_id == "12345"
        assert market.title == "Will BTC close above $100k?"
        assert market.yes_price == 0.62
        assert market.no_price == 0.38
        assert market.volume == 15000.5
        assert market.volume_24h == 1200.0
        assert market.status == "open"
        assert market.tags == ["Crypto", "Bitcoin"]
        assert market.category == "Crypto"
        assert market.url == "https://polymarket.com/event/btc-100k"
        assert market.content_hash == compute_content_hash(market.title, market.description, None)

    def test_timestamps_are_naive_utc(self):
        """Test offsets are converted to UTC and dropped."""
        market = normalize_polymarket_market(self.RAW)

        assert market.close_at == datetime(2026, 12, 31)
        assert market.open_at == datetime(2026, 1, 1, 10, 0)
        assert market.close_at.tzinfo is None


@pytest.mark.unit
class TestKalshi:
    """Test Kalshi normalization."""

    RAW = {
        "ticker": "KXRAIN-26",
        "title": "Will it rain in NYC?",
        "subtitle": "Central Park gauge",
        "rules_primary": "Resolves YES if rainfall > 0.1in",
        "yes_bid": 40,
        "yes_ask": 44,
        "no_bid": 56,
        "no_ask": 60,
        "last_price": 42,
        "volume": 500,
        "volume_24h": 25,
        "status": "active",
        "category": "Climate",
        "close_time": "2026-11-01T00:00:00Z",
    }

    def test_status_map(self):
        """Test Kalshi statuses map onto open/closed/settled."""
        assert parse_kalshi_status("active") == "open"
        assert parse_kalshi_status("settled") == "settled"
        assert parse_kalshi_status("closed") == "closed"
        assert parse_kalshi_status(None) == "open"

    def test_normalize(self):
        """Test prices are bid/ask midpoints converted from cents."""
        market = normalize_kalshi_market(self.RAW)

        assert market.source == "kalshi"
        assert market.source_id == "KXRAIN-26"
        assert market.yes_price == pytest.approx(0.42)
        assert market.no_price == pytest.approx(0.58)
        assert market.last_price == pytest.approx(0.42)
        assert market.status == "open"
        assert market.rules == "Resolves YES if rainfall > 0.1in"
        assert market.url == "https://kalshi.com/markets/KXRAIN-26"
        assert market.close_at == datetime(2026, 11, 1)

    def test_missing_quotes_fall_back(self):
        """Test missing bid/ask gives 0.5."""
        market = normalize_kalshi_market({"ticker": "X", "title": "T"})

        assert market.yes_price == 0.5
        assert market.no_price == 0.5


@pytest.mark.unit
class TestEmbeddingText:
    """Test embedding text assembly."""

    def test_joins_present_fields(self):
        """Test empty fields are skipped."""
        market = normalize_kalshi_market(TestKalshi.RAW)
        text = build_embedding_text(market)

        assert text.startswith("Will it rain in NYC?\n\nCentral Park gauge")
        assert "Climate" in text
        assert "\n\n\n" not in text
