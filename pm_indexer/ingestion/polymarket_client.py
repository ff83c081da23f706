"""Polymarket Gamma API client for market data ingestion."""

import time
from typing import Any, Dict, Iterator, List, Optional

import httpx
import structlog

from pm_indexer.config import settings
from pm_indexer.ingestion.errors import to_source_fetch_error
from pm_indexer.normalization.normalizer import NormalizedMarket, normalize_polymarket_market
from pm_indexer.utils.retry import http_retry

logger = structlog.get_logger()


class PolymarketGammaClient:
    """Client for Polymarket Gamma API (market discovery and prices)."""

    SOURCE = "polymarket"

    def __init__(
        self,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        page_delay_sec: float = 0.1,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize Gamma client.

        Args:
            api_base: API base URL (default from settings)
            timeout: Request timeout in seconds (default from settings)
            page_size: Markets requested per page
            page_delay_sec: Pause between pages to stay under upstream rate limits
            transport: Optional httpx transport (tests)
        """
        self.api_base = api_base or settings.polymarket_gamma_api_base
        self.timeout = timeout or settings.source_request_timeout_sec
        self.page_size = page_size or settings.source_page_size
        self.page_delay_sec = page_delay_sec
        self.session = httpx.Client(timeout=self.timeout, transport=transport)

    @http_retry()
    def _get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        """Make GET request to Gamma API.

        Raises:
            httpx.HTTPError: On request failure (after retries)
        """
        url = f"{self.api_base}{endpoint}"
        response = self.session.get(url, params=params)
        response.raise_for_status()
        return response.json()

    def get_markets(
        self,
        limit: int = 100,
        offset: int = 0,
        closed: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Get one page of markets."""
        params = {"limit": limit, "offset": offset}
        if closed is not None:
            params["closed"] = str(closed).lower()

        logger.debug("gamma_get_markets", params=params)
        response = self._get("/markets", params=params)

        # The API returns either a bare list or {"data": [...]}
        if isinstance(response, list):
            return response
        return response.get("data") or []

    @staticmethod
    def source_id(raw: Dict[str, Any]) -> str:
        return str(raw.get("id"))

    def normalize_market(self, raw: Dict[str, Any]) -> NormalizedMarket:
        return normalize_polymarket_market(raw)

    def iter_market_batches(
        self,
        status: str = "open",
        limit: Optional[int] = None,
        exclude_sports: Optional[bool] = None,
    ) -> Iterator[List[Dict[str, Any]]]:
        """Yield raw markets page by page until exhausted or ``limit`` reached.

        ``exclude_sports`` is accepted for interface parity; the Gamma markets
        listing carries no reliable sports category to filter on.

        Raises:
            SourceFetchError: When a page cannot be fetched
        """
        limit = limit or settings.market_fetch_limit
        closed = False if status == "open" else None

        yielded = 0
        offset = 0

        while yielded < limit:
            try:
                markets = self.get_markets(limit=self.page_size, offset=offset, closed=closed)
            except Exception as e:
                raise to_source_fetch_error(self.SOURCE, e) from e

            if not markets:
                break

            batch = markets[: limit - yielded]
            yielded += len(batch)
            logger.info("gamma_markets_batch_fetched", offset=offset, count=len(batch), total=yielded)
            yield batch

            if len(markets) < self.page_size:
                break

            offset += self.page_size

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

        logger.info("gamma_fetch_markets_complete", status=status, total_markets=len(markets))
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
