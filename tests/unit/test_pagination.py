"""Unit tests for pagination cursors."""

import base64

import pytest

from pm_indexer.search.pagination import (
    InvalidCursorError,
    KeysetCursor,
    OffsetCursor,
    decode_cursor,
    decode_keyset_cursor,
    decode_offset_cursor,
    encode_cursor,
    query_fingerprint,
)


@pytest.mark.unit
class TestCursorEncoding:
    """Test cursor token encoding."""

    def test_token_is_url_safe(self):
        """Test tokens need no URL escaping."""
        token = encode_cursor(OffsetCursor(offset=40, fingerprint="f" * 64))
        assert "=" not in token
        assert "+" not in token
        assert "/" not in token

    def test_keyset_decodes(self):
        """Test a keyset cursor survives encoding."""
        cursor = KeysetCursor(sort="volume", order="desc", last_value=12.5, last_id="abc")
        assert decode_cursor(encode_cursor(cursor), KeysetCursor) == cursor

    @pytest.mark.parametrize("token", ["", "!!!", "bm90IGpzb24", base64.urlsafe_b64encode(b"[1,2]").decode()])
    def test_garbage_rejected(self, token):
        """Test non-base64, non-JSON and non-object tokens."""
        with pytest.raises(InvalidCursorError):
            decode_cursor(token, OffsetCursor)

    def test_wrong_cursor_type_rejected(self):
        """Test a keyset token cannot be used as an offset cursor."""
        token = encode_cursor(KeysetCursor(sort="volume", order="asc", last_value=1.0, last_id="x"))
        with pytest.raises(InvalidCursorError):
            decode_cursor(token, OffsetCursor)

    def test_negative_offset_rejected(self):
        """Test out-of-range offsets."""
        raw = base64.urlsafe_b64encode(b'{"type":"offset","offset":-1,"fingerprint":"x"}').decode()
        with pytest.raises(InvalidCursorError):
            decode_cursor(raw, OffsetCursor)


@pytest.mark.unit
class TestQueryFingerprint:
    """Test query binding of offset cursors."""

    def test_case_and_whitespace_insensitive(self):
        """Test cosmetic query differences share a fingerprint."""
        assert query_fingerprint("  Bitcoin   PRICE ") == query_fingerprint("bitcoin price")

    def test_filters_and_sort_matter(self):
        """Test different filters or sorts give different fingerprints."""
        base = query_fingerprint("btc", {"source": "kalshi"})
        assert query_fingerprint("btc", {"source": "polymarket"}) != base
        assert query_fingerprint("btc", {"source": "kalshi"}, sort="volume") != base

    def test_none_filters_ignored(self):
        """Test unset filters do not change the fingerprint."""
        assert query_fingerprint("btc", {"source": None}) == query_fingerprint("btc", {})

    def test_offset_cursor_bound_to_query(self):
        """Test replaying a cursor against another query fails."""
        token = encode_cursor(OffsetCursor(offset=20, fingerprint=query_fingerprint("btc")))

        assert decode_offset_cursor(token, query_fingerprint("BTC")) == 20
        with pytest.raises(InvalidCursorError):
            decode_offset_cursor(token, query_fingerprint("eth"))

    def test_no_token_starts_at_zero(self):
        """Test a missing cursor means the first page."""
        assert decode_offset_cursor(None, "anything") == 0


@pytest.mark.unit
class TestKeysetCursor:
    """Test keyset cursor ordering checks."""

    def test_order_mismatch_rejected(self):
        """Test a cursor for another ordering is refused."""
        token = encode_cursor(KeysetCursor(sort="volume", order="desc", last_value=1.0, last_id="x"))

        assert decode_keyset_cursor(token, "volume", "desc").last_id == "x"
        with pytest.raises(InvalidCursorError):
            decode_keyset_cursor(token, "volume", "asc")
        with pytest.raises(InvalidCursorError):
            decode_keyset_cursor(token, "close_at", "desc")

    def test_no_token(self):
        """Test a missing cursor gives no position."""
        assert decode_keyset_cursor(None, "volume", "desc") is None
