"""
Cursor pagination shared by every listing operation.

Algorithm: order by the sort column, fetch limit + 1 rows after the cursor
(strictly less than for descending order, strictly greater than for
ascending), and when the extra row comes back drop it and hand out the sort
value of the last kept row as the next cursor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import DatabaseError, ErrorCode

DEFAULT_PAGE_SIZE = 25


@dataclass
class Page:
    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: Any = None
    has_next_page: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "nextCursor": self.next_cursor,
            "hasNextPage": self.has_next_page,
        }


def is_descending(order: str) -> bool:
    order = (order or "desc").lower()
    if order not in ("asc", "desc"):
        raise ValueError(f"Sort order must be 'asc' or 'desc', got {order!r}")
    return order == "desc"


def cursor_operator(order: str) -> str:
    """Comparison applied to the cursor value: strict, never inclusive."""
    return "lt" if is_descending(order) else "gt"


def decode_cursor(cursor: Any, parse: Callable[[Any], Any]) -> Any:
    """None for the first page, otherwise parse(cursor). Unreadable cursors raise DatabaseError."""
    if cursor in (None, "", "start"):
        return None
    try:
        return parse(cursor)
    except (TypeError, ValueError) as e:
        raise DatabaseError(ErrorCode.DATABASE_ERROR, f"Invalid cursor: {cursor!r}", context="pagination") from e


def apply_cursor(builder: Any, sort_by: str, order: str, cursor: Any, limit: int) -> Any:
    """Add cursor filter, ordering and the limit + 1 lookahead row to a relational query."""
    descending = is_descending(order)
    if cursor is not None:
        builder = getattr(builder, cursor_operator(order))(sort_by, cursor)
    return builder.order(sort_by, desc=descending).limit(limit + 1)


def mongo_cursor_query(sort_by: str, order: str, cursor: Any) -> dict[str, Any]:
    """The same cursor filter expressed as a MongoDB query fragment."""
    if cursor is None:
        return {}
    return {sort_by: {f"${cursor_operator(order)}": cursor}}


def mongo_sort(sort_by: str, order: str) -> list[tuple[str, int]]:
    return [(sort_by, -1 if is_descending(order) else 1)]


def build_page(
    rows: list[dict[str, Any]],
    limit: int,
    sort_by: str,
    encode_cursor: Callable[[Any], Any] | None = None,
) -> Page:
    """
    Turn a limit + 1 result set into a Page.

    Args:
        rows: rows fetched with apply_cursor / mongo_cursor_query, in sort order
        limit: requested page size
        sort_by: column whose value becomes the next cursor
        encode_cursor: optional conversion of the raw sort value (e.g. datetime -> ISO string)
    """
    items = list(rows)
    has_next_page = len(items) > limit
    next_cursor = None
    if has_next_page:
        items.pop()
        last_value = items[-1].get(sort_by) if items else None
        next_cursor = encode_cursor(last_value) if encode_cursor else last_value
    return Page(items=items, next_cursor=next_cursor, has_next_page=has_next_page)
