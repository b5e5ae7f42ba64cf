"""
directory/pagination.py -- Keyset (cursor) pagination over a single integer key.

Offsets drift when rows are inserted or deactivated between requests; a
cursor anchors the next page to the last key the client actually saw.

Cursor format: URL-safe base64 of compact JSON {"id": <key>}, padding
stripped. Clients must treat it as opaque.

Algorithm (paginate_keys):
  1. Decode whichever cursor was supplied (never both).
  2. Select keys strictly after the cursor in the requested order. For a
     before-cursor the query runs in the reversed order instead, so the
     rows nearest the cursor come first.
  3. Fetch limit + 1 rows; the extra row only tells us whether more exist.
  4. Trim to limit and, for a before-cursor, flip the slice back to the
     requested order.
  5. after_cursor = last key when more rows follow (or we paged backwards);
     before_cursor = first key when we paged forward from a cursor (or more
     rows precede a backward page).
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable, Hashable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional, TypeVar

from sqlalchemy import Column
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from auth.schema import MAX_ID
from core.config import get_settings
from core.errors import InputValidationError
from directory.models import Page

T = TypeVar("T")

_ORDERS = ("ASC", "DESC")


# ---------------------------------------------------------------------------
# Cursor codec
# ---------------------------------------------------------------------------


def encode_cursor(key: int) -> str:
    payload = json.dumps({"id": key}, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(payload.encode()).decode().rstrip("=")


def decode_cursor(cursor: str, field_name: str = "cursor") -> int:
    """Return the key inside cursor. Raises InputValidationError if malformed."""
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise InputValidationError.for_field(field_name, "Invalid cursor.") from exc
    key = data.get("id") if isinstance(data, dict) else None
    # bool is an int subclass; {"id": true} is not a key.
    if not isinstance(key, int) or isinstance(key, bool) or not 1 <= key <= MAX_ID:
        raise InputValidationError.for_field(field_name, "Invalid cursor.")
    return key


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp to 1..MAX_PAGE_LIMIT; None means DEFAULT_PAGE_LIMIT."""
    settings = get_settings()
    if limit is None:
        return settings.default_page_limit
    return max(1, min(int(limit), settings.max_page_limit))


@dataclass(frozen=True)
class PageRequest:
    limit: int
    after_cursor: Optional[str] = None
    before_cursor: Optional[str] = None
    order: str = "DESC"

    @classmethod
    def build(
        cls,
        limit: Optional[int] = None,
        after_cursor: Optional[str] = None,
        before_cursor: Optional[str] = None,
        order: Optional[str] = None,
    ) -> "PageRequest":
        """Normalize raw input. Raises InputValidationError on a bad combination."""
        normalized = (order or "DESC").upper()
        if normalized not in _ORDERS:
            raise InputValidationError.for_field("order", "Must be ASC or DESC.")
        if after_cursor and before_cursor:
            raise InputValidationError.for_field(
                "before_cursor", "after_cursor and before_cursor are mutually exclusive."
            )
        return cls(
            limit=clamp_limit(limit),
            after_cursor=after_cursor or None,
            before_cursor=before_cursor or None,
            order=normalized,
        )


@dataclass
class KeyPage:
    keys: list[int] = field(default_factory=list)
    after_cursor: Optional[str] = None
    before_cursor: Optional[str] = None


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def paginate_keys(conn: Connection, query: Select, key_column: Column, request: PageRequest) -> KeyPage:
    """Run query (which must select key_column) one page at a time.

    query carries the filters only; ordering, the cursor condition and the
    limit are added here.
    """
    descending = request.order == "DESC"
    backwards = request.before_cursor is not None

    if backwards:
        anchor = decode_cursor(request.before_cursor, "before_cursor")
        # Before, in the requested order, is the reverse direction.
        query = query.where(key_column > anchor if descending else key_column < anchor)
        descending = not descending
    elif request.after_cursor is not None:
        anchor = decode_cursor(request.after_cursor, "after_cursor")
        query = query.where(key_column < anchor if descending else key_column > anchor)

    query = query.order_by(key_column.desc() if descending else key_column.asc()).limit(request.limit + 1)
    keys = [row[0] for row in conn.execute(query).fetchall()]

    has_more = len(keys) > request.limit
    keys = keys[: request.limit]
    if backwards:
        keys.reverse()
    if not keys:
        return KeyPage()

    has_after = request.after_cursor is not None
    after_cursor = encode_cursor(keys[-1]) if (backwards or has_more) else None
    before_cursor = encode_cursor(keys[0]) if (has_after or (has_more and backwards)) else None
    return KeyPage(keys=keys, after_cursor=after_cursor, before_cursor=before_cursor)


def execute_cursor_pagination(
    conn: Connection,
    query: Select,
    key_column: Column,
    request: PageRequest,
    hydrate: Callable[[Connection, Sequence[int]], Mapping[Hashable, T]],
) -> Page[T]:
    """paginate_keys() followed by a batched hydrate(conn, keys) -> {key: record}.

    Records come back in key order. Batch fetches by id set do not preserve
    it, and the next page request depends on it.
    """
    key_page = paginate_keys(conn, query, key_column, request)
    if not key_page.keys:
        return Page()
    by_key = hydrate(conn, key_page.keys)
    items = [by_key[k] for k in key_page.keys if k in by_key]
    return Page(items=items, after_cursor=key_page.after_cursor, before_cursor=key_page.before_cursor)
