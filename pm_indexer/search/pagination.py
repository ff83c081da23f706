"""Opaque pagination cursors.

Two cursor shapes are encoded as URL-safe base64 JSON:

* offset cursors for ranked search results, bound to the query that produced
  them through a fingerprint so a token cannot be replayed against another query;
* keyset cursors for listings ordered by ``(sort column, id)``.
"""

import base64
import binascii
import hashlib
import json
from typing import Any, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError


class InvalidCursorError(ValueError):
    """Cursor is malformed, stale, or belongs to a different query."""


class OffsetCursor(BaseModel):
    type: Literal["offset"] = "offset"
    offset: int = Field(..., ge=0)
    fingerprint: str


class KeysetCursor(BaseModel):
    type: Literal["keyset"] = "keyset"
    sort: str
    order: Literal["asc", "desc"]
    last_value: Optional[Union[float, str]] = None
    last_id: str


Cursor = Union[OffsetCursor, KeysetCursor]
CursorT = TypeVar("CursorT", OffsetCursor, KeysetCursor)


def encode_cursor(cursor: Cursor) -> str:
    raw = json.dumps(cursor.model_dump(), separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str, expected_type: Type[CursorT]) -> CursorT:
    """Decode a cursor token into ``expected_type``.

    Raises:
        InvalidCursorError: For non-base64, non-JSON, out-of-range, wrong-type
            or incomplete tokens
    """
    if not token:
        raise InvalidCursorError("empty cursor")

    padded = token + "=" * (-len(token) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError("cursor is not valid base64 JSON") from e

    if not isinstance(data, dict):
        raise InvalidCursorError("cursor payload must be an object")

    try:
        return expected_type.model_validate(data)
    except ValidationError as e:
        raise InvalidCursorError(f"cursor does not match {expected_type.__name__}") from e


def normalize_query(query: str) -> str:
    return " ".join((query or "").strip().lower().split())


def query_fingerprint(
    query: str,
    filters: Optional[Dict[str, Any]] = None,
    sort: str = "relevance",
    order: str = "desc",
) -> str:
    """Stable digest of a search request, ignoring case and whitespace in the query."""
    material = {
        "q": normalize_query(query),
        "filters": {k: v for k, v in sorted((filters or {}).items()) if v is not None},
        "sort": sort,
        "order": order,
    }
    raw = json.dumps(material, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def decode_offset_cursor(token: Optional[str], fingerprint: str) -> int:
    """Offset to resume from; 0 without a token.

    Raises:
        InvalidCursorError: If the token was issued for a different query
    """
    if token is None:
        return 0
    cursor = decode_cursor(token, OffsetCursor)
    if cursor.fingerprint != fingerprint:
        raise InvalidCursorError("cursor was issued for a different query")
    return cursor.offset


def decode_keyset_cursor(token: Optional[str], sort: str, order: str) -> Optional[KeysetCursor]:
    """Keyset position to resume after; None without a token.

    Raises:
        InvalidCursorError: If the token was issued for a different ordering
    """
    if token is None:
        return None
    cursor = decode_cursor(token, KeysetCursor)
    if cursor.sort != sort or cursor.order != order:
        raise InvalidCursorError("cursor was issued for a different sort order")
    return cursor
