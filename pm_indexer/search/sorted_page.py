"""Paging over a bounded window of re-sorted search results."""

from typing import Any, Dict, List, NamedTuple

SEARCH_SORTS = ("relevance", "volume", "close_at")


class SortedPage(NamedTuple):
    page: List[Dict[str, Any]]
    next_offset: int
    has_more: bool


def sort_search_results(results: List[Dict[str, Any]], sort: str, order: str) -> List[Dict[str, Any]]:
    """Re-sort relevance-ranked results. Relevance keeps the index order."""
    if sort == "relevance":
        return list(results)

    reverse = order == "desc"
    if sort == "volume":
        return sorted(results, key=lambda r: r.get("volume") or 0.0, reverse=reverse)
    if sort == "close_at":
        # ISO strings order chronologically; missing dates sort as earliest
        return sorted(results, key=lambda r: r.get("close_at") or "", reverse=reverse)
    raise ValueError(f"unknown sort: {sort}")


def get_sorted_page(
    results: List[Dict[str, Any]],
    sort: str,
    order: str,
    limit: int,
    offset: int,
    window: int,
) -> SortedPage:
    """Sort at most ``window`` results and slice one page from them.

    Offsets at or beyond the window yield an empty final page: results past
    the window were never sorted, so paging into them would be inconsistent.
    """
    if offset >= window:
        return SortedPage(page=[], next_offset=offset, has_more=False)

    windowed = sort_search_results(results[:window], sort, order)
    page = windowed[offset:offset + limit]
    next_offset = offset + len(page)
    return SortedPage(page=page, next_offset=next_offset, has_more=next_offset < len(windowed))
