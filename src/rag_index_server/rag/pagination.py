"""
Cursor Pagination

Shared pagination contract for every ``list`` operation.

A cursor is an opaque URL-safe base64 string wrapping the sort key of the
last item a caller has seen. Storage backends return the rows strictly after
that key, so iteration is forward-only and stable: rows created behind the
cursor are never repeated.

Page Status
-----------
- ``None``               page read within limits
- ``SplitRecommended``   a byte/row limit cut the page short; ``split_cursor``
                         marks the midpoint of the returned items
- ``SplitRequired``      the first item alone exceeded ``maximum_bytes_read``;
                         it is returned anyway so iteration always progresses
"""

from __future__ import annotations

import base64
import json
from typing import Any, Callable, Generic, List, Literal, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..core.errors import InvalidCursorError

T = TypeVar("T")

PageStatus = Literal["SplitRecommended", "SplitRequired"]


class PaginationOpts(BaseModel):
    cursor: Optional[str] = None
    num_items: int = Field(default_factory=lambda: settings.default_page_size, ge=1)
    maximum_bytes_read: Optional[int] = Field(default=None, ge=1)
    maximum_rows_read: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


class PaginationResult(BaseModel, Generic[T]):
    page: List[T]
    continue_cursor: Optional[str] = None
    is_done: bool
    page_status: Optional[PageStatus] = None
    split_cursor: Optional[str] = None


def encode_cursor(key: Any) -> str:
    raw = json.dumps({"after": key}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Any:
    """
    Return the sort key wrapped by ``cursor``, or None for the first page.
    """
    if not cursor:
        return None
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return data["after"]
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidCursorError("Malformed pagination cursor.") from exc


def decode_int_cursor(cursor: Optional[str]) -> Optional[int]:
    """Decode a cursor whose sort key is an integer (chunk order or seq)."""
    key = decode_cursor(cursor)
    if key is None:
        return None
    if isinstance(key, bool) or not isinstance(key, int):
        raise InvalidCursorError("Pagination cursor does not belong to this listing.")
    return key


def build_page(
    rows: Sequence[T],
    opts: PaginationOpts,
    sort_key: Callable[[T], Any],
    size_of: Callable[[T], int],
) -> PaginationResult[T]:
    """
    Cut a page out of ``rows`` according to ``opts``.

    Parameters
    ----------
    rows : Sequence[T]
        Rows after the decoded cursor, in iteration order. Backends fetch
        ``num_items + 1`` rows so the extra row tells us whether more exist.
    opts : PaginationOpts
        The caller's pagination request.
    sort_key : Callable
        Extracts the JSON-serialisable key a cursor resumes after.
    size_of : Callable
        Approximate byte size of a row, checked against maximum_bytes_read.

    Returns
    -------
    PaginationResult[T]
    """
    page: List[T] = []
    bytes_read = 0
    status: Optional[PageStatus] = None

    for row in rows[: opts.num_items]:
        size = size_of(row)

        over_rows = (
            opts.maximum_rows_read is not None
            and len(page) + 1 > opts.maximum_rows_read
        )
        over_bytes = (
            opts.maximum_bytes_read is not None
            and bytes_read + size > opts.maximum_bytes_read
        )

        if over_rows or over_bytes:
            if page:
                status = "SplitRecommended"
                break
            # A single oversized row still has to be delivered
            page.append(row)
            status = "SplitRequired"
            break

        page.append(row)
        bytes_read += size

    is_done = status is None and len(rows) <= opts.num_items
    if not page:
        return PaginationResult(
            page=[],
            continue_cursor=opts.cursor,
            is_done=True,
        )

    split_cursor = None
    if status == "SplitRecommended" and len(page) > 1:
        split_cursor = encode_cursor(sort_key(page[len(page) // 2 - 1]))

    return PaginationResult(
        page=page,
        continue_cursor=encode_cursor(sort_key(page[-1])),
        is_done=is_done,
        page_status=status,
        split_cursor=split_cursor,
    )


def json_size(obj: BaseModel) -> int:
    return len(obj.model_dump_json().encode("utf-8"))
