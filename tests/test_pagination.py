import pytest

from rag_index_server.core.errors import InvalidCursorError
from rag_index_server.rag.pagination import (
    PaginationOpts,
    decode_cursor,
    decode_int_cursor,
    encode_cursor,
)

from helpers import chunks, entry, ready_namespace


async def _entry_with_chunks(engine, config, n):
    namespace_id = await ready_namespace(engine, config)
    created = await engine.entries.add_async(namespace_id, entry(key="doc"))
    if n:
        await engine.chunks.insert(created.entry_id, chunks(n), 0)
    return created.entry_id


def test_cursor_round_trip():
    assert decode_cursor(encode_cursor(41)) == 41
    assert decode_cursor(None) is None
    assert decode_cursor("") is None


@pytest.mark.parametrize("cursor", ["!!!not-base64!!!", "bm90LWpzb24="])
def test_malformed_cursor_rejected(cursor):
    with pytest.raises(InvalidCursorError):
        decode_cursor(cursor)


def test_foreign_cursor_rejected():
    with pytest.raises(InvalidCursorError):
        decode_int_cursor(encode_cursor("not-an-int"))


@pytest.mark.asyncio
@pytest.mark.parametrize("total", [0, 7, 20, 25])
async def test_pages_concatenate_to_every_item_once(engine, config, total):
    entry_id = await _entry_with_chunks(engine, config, total)

    seen = []
    cursor = None
    for _ in range(10):
        result = await engine.chunks.list(entry_id, PaginationOpts(cursor=cursor, num_items=10))
        seen.extend(c.order for c in result.page)
        cursor = result.continue_cursor
        if result.is_done:
            break

    assert seen == list(range(total))


@pytest.mark.asyncio
async def test_rows_written_behind_cursor_are_not_repeated(engine, config):
    entry_id = await _entry_with_chunks(engine, config, 5)

    first = await engine.chunks.list(entry_id, PaginationOpts(num_items=5))
    assert [c.order for c in first.page] == [0, 1, 2, 3, 4]

    await engine.chunks.insert(entry_id, chunks(2), 5)
    second = await engine.chunks.list(entry_id, PaginationOpts(cursor=first.continue_cursor, num_items=5))

    assert [c.order for c in second.page] == [5, 6]
    assert second.is_done


@pytest.mark.asyncio
async def test_row_limit_recommends_split(engine, config):
    entry_id = await _entry_with_chunks(engine, config, 10)

    result = await engine.chunks.list(
        entry_id,
        PaginationOpts(num_items=10, maximum_rows_read=4),
    )

    assert [c.order for c in result.page] == [0, 1, 2, 3]
    assert result.page_status == "SplitRecommended"
    assert result.is_done is False
    assert decode_cursor(result.continue_cursor) == 3
    assert decode_cursor(result.split_cursor) == 1


@pytest.mark.asyncio
async def test_oversized_first_row_requires_split(engine, config):
    entry_id = await _entry_with_chunks(engine, config, 3)

    result = await engine.chunks.list(
        entry_id,
        PaginationOpts(num_items=10, maximum_bytes_read=1),
    )

    assert len(result.page) == 1
    assert result.page_status == "SplitRequired"
    assert result.is_done is False

    # Iteration still progresses past the oversized row
    nxt = await engine.chunks.list(
        entry_id,
        PaginationOpts(cursor=result.continue_cursor, num_items=10, maximum_bytes_read=1),
    )
    assert nxt.page[0].order == 1


@pytest.mark.asyncio
async def test_empty_page_is_done_and_keeps_cursor(engine, config):
    entry_id = await _entry_with_chunks(engine, config, 2)
    cursor = encode_cursor(1)

    result = await engine.chunks.list(entry_id, PaginationOpts(cursor=cursor, num_items=5))

    assert result.page == []
    assert result.is_done
    assert result.continue_cursor == cursor
