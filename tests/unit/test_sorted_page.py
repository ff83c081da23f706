"""Unit tests for windowed sorted paging."""

import pytest

from pm_indexer.search.sorted_page import get_sorted_page, sort_search_results

RESULTS = [
    {"id": "a", "volume": 10.0, "close_at": "2026-03-01T00:00:00"},
    {"id": "b", "volume": 50.0, "close_at": "2026-01-01T00:00:00"},
    {"id": "c", "volume": 30.0, "close_at": None},
    {"id": "d", "volume": 40.0, "close_at": "2026-02-01T00:00:00"},
    {"id": "e", "volume": 20.0, "close_at": "2026-04-01T00:00:00"},
]


def ids(rows):
    return [r["id"] for r in rows]


@pytest.mark.unit
class TestSortSearchResults:
    """Test re-sorting relevance results."""

    def test_relevance_keeps_order(self):
        """Test relevance sorting is the index order."""
        assert ids(sort_search_results(RESULTS, "relevance", "desc")) == ["a", "b", "c", "d", "e"]

    def test_volume(self):
        """Test volume sort in both directions."""
        assert ids(sort_search_results(RESULTS, "volume", "desc")) == ["b", "d", "c", "e", "a"]
        assert ids(sort_search_results(RESULTS, "volume", "asc")) == ["a", "e", "c", "d", "b"]

    def test_close_at_missing_sorts_earliest(self):
        """Test markets without a close date sort first ascending."""
        assert ids(sort_search_results(RESULTS, "close_at", "asc")) == ["c", "b", "d", "a", "e"]

    def test_unknown_sort(self):
        """Test unknown sort keys are rejected."""
        with pytest.raises(ValueError):
            sort_search_results(RESULTS, "popularity", "desc")


@pytest.mark.unit
class TestGetSortedPage:
    """Test slicing pages from the sorted window."""

    def test_pages_cover_window_without_overlap(self):
        """Test successive pages walk the window once."""
        first = get_sorted_page(RESULTS, "volume", "desc", limit=2, offset=0, window=5)
        second = get_sorted_page(RESULTS, "volume", "desc", limit=2, offset=first.next_offset, window=5)
        third = get_sorted_page(RESULTS, "volume", "desc", limit=2, offset=second.next_offset, window=5)

        assert ids(first.page) == ["b", "d"]
        assert ids(second.page) == ["c", "e"]
        assert ids(third.page) == ["a"]
        assert first.has_more and second.has_more
        assert not third.has_more

    def test_window_caps_results(self):
        """Test only the first window results are sorted."""
        page = get_sorted_page(RESULTS, "volume", "desc", limit=10, offset=0, window=3)

        assert ids(page.page) == ["b", "c", "a"]
        assert not page.has_more

    def test_offset_beyond_window_is_empty(self):
        """Test paging past the window ends the listing."""
        page = get_sorted_page(RESULTS, "volume", "desc", limit=2, offset=3, window=3)

        assert page.page == []
        assert page.has_more is False
