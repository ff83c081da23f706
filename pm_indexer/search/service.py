"""Semantic market search and recommendations."""

import time
from typing import Any, Dict, List, Optional

import structlog

from pm_indexer.config import settings
from pm_indexer.normalization.embedding_generator import EmbeddingGenerator, get_embedding_generator
from pm_indexer.search.pagination import OffsetCursor, decode_offset_cursor, encode_cursor, query_fingerprint
from pm_indexer.search.sorted_page import get_sorted_page
from pm_indexer.search.vector_index import VectorIndex, get_vector_index

logger = structlog.get_logger()


class SearchService:
    """Query embedding + vector search + cursor paging."""

    def __init__(
        self,
        embedder: Optional[EmbeddingGenerator] = None,
        index: Optional[VectorIndex] = None,
        sort_window: Optional[int] = None,
    ):
        self.embedder = embedder or get_embedding_generator()
        self.index = index or get_vector_index()
        self.sort_window = sort_window or settings.search_sort_window

    def search(
        self,
        query: str,
        filters: Optional[Dict[str, Any]] = None,
        sort: str = "relevance",
        order: str = "desc",
        limit: int = 20,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Search markets by meaning.

        Raises:
            InvalidCursorError: If ``cursor`` is malformed or from another query
        """
        start = time.time()
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        fingerprint = query_fingerprint(query, filters, sort, order)
        offset = decode_offset_cursor(cursor, fingerprint)

        vector = self.embedder.embed_query(query)

        if sort == "relevance":
            # One extra result tells us whether another page exists
            results = self.index.search(vector, filters=filters, limit=limit + 1, offset=offset)
            page = results[:limit]
            next_offset = offset + len(page)
            has_more = len(results) > limit
        else:
            window = max(self.sort_window, limit)
            candidates = self.index.search(vector, filters=filters, limit=window, offset=0)
            page, next_offset, has_more = get_sorted_page(candidates, sort, order, limit, offset, window)

        next_cursor = None
        if has_more:
            next_cursor = encode_cursor(OffsetCursor(offset=next_offset, fingerprint=fingerprint))

        logger.info(
            "search_complete",
            sort=sort,
            offset=offset,
            results=len(page),
            has_more=has_more,
            duration_ms=int((time.time() - start) * 1000),
        )
        return {"results": page, "next_cursor": next_cursor, "has_more": has_more}

    def recommend(
        self,
        market_ids: List[str],
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Markets similar to the given ones."""
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        return self.index.recommend(market_ids, filters=filters, limit=limit)
