"""Kalshi API client for market data ingestion.

Public API documentation: https://trading-api.readme.io/reference/getting-started
"""

import time
from typing import Any, Dict, Iterator, List, Optional

import httpx
import structlog

from pm_indexer.config import settings
from pm_indexer.ingestion.errors import to_source_fetch_error
from pm_indexer.normalization.normalizer import NormalizedMarket, normalize_kalshi_market
from pm_indexer.utils.retry import http_retry

logger = structlog.get_logger()

# Event categories skipped when sports are excluded
SPORTS_CATEGORIES = ("Sports",)


class KalshiClient:
    """Client for Kalshi public market data API."""

    SOURCE = "kalshi"

    def __init__(
        self,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        page_delay_sec: float = 0.1,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize Kalshi client.

        Args:
            api_base: API base URL (default from settings)
            timeout: Request timeout in seconds (default from settings)
            page_size: Events requested per page
            page_delay_sec: Pause between pages to stay under upstream rate limits
            transport: Optional httpx transport (tests)
        """
        self.api_base = api_base or settings.kalshi_api_base
        self.timeout = timeout or settings.source_request_timeout_sec
        self.page_size = page_size or settings.source_page_size
        self.page_delay_sec = page_delay_sec
        self.session = httpx.Client(timeout=self.timeout, transport=transport)

    @http_retry()
    def _get(self, endpoint: str, params: Optional[Dict] = None) -> Dict[str, Any]:
        """Make GET request to Kalshi API.

        Raises:
            httpx.HTTPError: On request failure (after retries)
        """
        url = f"{self.api_base}{endpoint}"
        response = self.session.get(url, params=params)
        response.raise_for_status()
        return response.json()

    def get_events(
        self,
        limit: int = 100,
        cursor: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Get one page of events with their markets nested."""
        params = {"limit": limit, "with_nested_markets": "true"}
        if cursor:
            params["cursor"] = cursor
        if status:
            params["status"] = status

        logger.debug("kalshi_get_events", params=params)
        return self._get("/events", params=params)

    @staticmethod
    def source_id(raw: Dict[str, Any]) -> str:
        return str(raw.get("ticker"))

    def normalize_market(self, raw: Dict[str, Any]) -> NormalizedMarket:
        return normalize_kalshi_market(raw)

    def iter_market_batches(
        self,
        status: str = "open",
        limit: Optional[int] = None,
        exclude_sports: Optional[bool] = None,
    ) -> Iterator[List[Dict[str, Any]]]:
        """Yield raw markets page by page until exhausted or ``limit`` reached.

        Args:
            status: "open" for tradeable markets, "all" for everything
            limit: Max markets yielded in total (default from settings)
            exclude_sports: Skip events in sports categories (default from settings)

        Raises:
            SourceFetchError: When a page cannot be fetched
        """
        limit = limit or settings.market_fetch_limit
        exclude_sports = settings.exclude_sports if exclude_sports is None else exclude_sports
        upstream_status = "open" if status == "open" else None

        yielded = 0
        cursor = None
        page = 0

        while yielded < limit:
            page += 1
            try:
                response = self.get_events(limit=self.page_size, cursor=cursor, status=upstream_status)
            except Exception as e:
                raise to_source_fetch_error(self.SOURCE, e) from e

            events = response.get("events") or []
            if not events:
                break

            batch = []
            for event in events:
                category = event.get("category")
                if exclude_sports and category in SPORTS_CATEGORIES:
                    continue

                for market in event.get("markets") or []:
                    # Events endpoint reports open markets as "active"
                    if status == "open" and market.get("status") != "active":
                        continue
                    batch.append({**market, "category": category})

            batch = batch[: limit - yielded]
            if batch:
                yielded += len(batch)
                logger.info("kalshi_markets_page_fetched", page=page, count=len(batch), total=yielded)
                yield batch

            cursor = response.get("cursor")
            if not cursor:
                break

            if self.page_delay_sec:
                time.sleep(self.page_delay_sec)

    def fetch_markets(
        self,
        status: str = "open",
        limit: Optional[int] = None,
        exclude_sports: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Collect every page from ``iter_market_batches``."""
        markets: List[Dict[str, Any]] = []
        for batch in self.iter_market_batches(status=status, limit=limit, exclude_sports=exclude_sports):
            markets.extend(batch)

        logger.info("kalshi_fetch_markets_complete", status=status, total_markets=len(markets))
        return markets

    def close(self):
        """Close HTTP session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
