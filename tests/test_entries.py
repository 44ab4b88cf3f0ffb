import asyncio
from datetime import timedelta
from unittest.mock import patch

import pytest

from rag_index_server.core.errors import (
    DuplicateKeyError,
    InvalidFilterError,
    InvalidStateError,
    NamespaceNotFoundError,
)
from rag_index_server.embeddings.queue import PurgeJob
from rag_index_server.rag.models import FilterValue, Status
from rag_index_server.rag.pagination import PaginationOpts

from helpers import chunks, entry, lang, ready_namespace


async def _ready_keys(engine, namespace_id):
    result = await engine.entries.list(namespace_id, Status.READY, pagination=PaginationOpts(num_items=100))
    return [e.key for e in result.page]


class TestAdd:
    """Synchronous add and content-hash dedup."""

    @pytest.mark.asyncio
    async def test_add_creates_ready_entry(self, engine, config):
        namespace_id = await ready_namespace(engine, config)

        result = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(3))

        assert result.created is True
        assert result.status == Status.READY
        assert result.replaced_version is None
        stored = await engine.entries.get(result.entry_id)
        assert stored.status == Status.READY
        assert stored.content_hash == "h1"

    @pytest.mark.asyncio
    async def test_identical_add_is_idempotent(self, engine, storage, config):
        namespace_id = await ready_namespace(engine, config)
        first = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(3))

        second = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(3))

        assert second.created is False
        assert second.entry_id == first.entry_id
        assert await _ready_keys(engine, namespace_id) == ["a"]
        assert await storage.count_chunks(first.entry_id) == 3

    @pytest.mark.asyncio
    async def test_changed_content_replaces_previous_version(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        v1 = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(2))

        v2 = await engine.entries.add(namespace_id, entry(key="a", content_hash="h2"), chunks(2))

        assert v2.created is True
        assert v2.replaced_version.entry_id == v1.entry_id
        assert (await engine.entries.get(v1.entry_id)).status == Status.REPLACED
        assert await _ready_keys(engine, namespace_id) == ["a"]

    @pytest.mark.asyncio
    async def test_at_most_one_ready_entry_per_key(self, engine, config):
        namespace_id = await ready_namespace(engine, config)

        for i in range(4):
            await engine.entries.add(namespace_id, entry(key="a", content_hash=f"h{i}"), chunks(1))
            await engine.entries.add(namespace_id, entry(key="b", content_hash=f"h{i}"), chunks(1))

        assert sorted(await _ready_keys(engine, namespace_id)) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unkeyed_entries_never_replace_each_other(self, engine, config):
        namespace_id = await ready_namespace(engine, config)

        await engine.entries.add(namespace_id, entry(), chunks(1))
        await engine.entries.add(namespace_id, entry(), chunks(1))

        assert await _ready_keys(engine, namespace_id) == [None, None]

    @pytest.mark.asyncio
    async def test_unknown_namespace(self, engine):
        with pytest.raises(NamespaceNotFoundError):
            await engine.entries.add("missing", entry(key="a"))

    @pytest.mark.asyncio
    async def test_replaced_namespace_rejects_entries(self, engine, config):
        old_id = await ready_namespace(engine, config)
        rebuild = await engine.namespaces.start_rebuild(config)
        await engine.namespaces.promote_to_ready(rebuild.namespace_id)

        with pytest.raises(InvalidStateError):
            await engine.entries.add(old_id, entry(key="a", content_hash="h"))

    @pytest.mark.asyncio
    async def test_undeclared_filter_rejected(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        bad = entry(key="a", filter_values=[FilterValue(name="color", value="red")])

        with pytest.raises(InvalidFilterError):
            await engine.entries.add(namespace_id, bad)
        assert await _ready_keys(engine, namespace_id) == []

    @pytest.mark.asyncio
    async def test_failed_add_schedules_removal(self, engine, storage, queue, config):
        namespace_id = await ready_namespace(engine, config)

        with patch.object(storage, "promote_entry", side_effect=RuntimeError("promote failed")):
            with pytest.raises(RuntimeError, match="promote failed"):
                await engine.entries.add(namespace_id, entry(key="a"), chunks(2))

        job = await queue.get_next_job()
        assert isinstance(job, PurgeJob)
        assert await engine.entries.get(job.entry_id) is None

    @pytest.mark.asyncio
    async def test_failed_cleanup_keeps_original_error(self, engine, storage, config):
        namespace_id = await ready_namespace(engine, config)

        with patch.object(storage, "promote_entry", side_effect=RuntimeError("promote failed")), \
                patch.object(storage, "remove_entry", side_effect=RuntimeError("cleanup failed")):
            with pytest.raises(RuntimeError, match="promote failed"):
                await engine.entries.add(namespace_id, entry(key="a"), chunks(2))


class TestAsyncLifecycle:
    """Pending entries, promotion and key uniqueness."""

    @pytest.mark.asyncio
    async def test_add_async_leaves_entry_pending(self, engine, config):
        namespace_id = await ready_namespace(engine, config)

        result = await engine.entries.add_async(namespace_id, entry(key="a"), chunker="manual")

        assert result.created is True
        assert result.status == Status.PENDING
        stored = await engine.entries.get(result.entry_id)
        assert stored.chunker == "manual"

    @pytest.mark.asyncio
    async def test_second_pending_entry_for_key_rejected(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        await engine.entries.add_async(namespace_id, entry(key="a", content_hash="h1"))

        with pytest.raises(DuplicateKeyError):
            await engine.entries.add_async(namespace_id, entry(key="a", content_hash="h2"))

        pending = await engine.entries.list(namespace_id, Status.PENDING)
        assert len(pending.page) == 1

    @pytest.mark.asyncio
    async def test_add_async_reuses_ready_duplicate(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        first = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(1))

        again = await engine.entries.add_async(namespace_id, entry(key="a", content_hash="h1"))

        assert again.created is False
        assert again.entry_id == first.entry_id
        assert again.status == Status.READY

    @pytest.mark.asyncio
    async def test_promotion_is_idempotent(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        created = await engine.entries.add_async(namespace_id, entry(key="a"))

        first = await engine.entries.promote_to_ready(created.entry_id)
        second = await engine.entries.promote_to_ready(created.entry_id)

        assert first.replaced_version is None
        assert second.replaced_version is None
        assert (await engine.entries.get(created.entry_id)).status == Status.READY

    @pytest.mark.asyncio
    async def test_promotion_swaps_versions(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        v1 = await engine.entries.add_async(namespace_id, entry(key="a"))
        await engine.entries.promote_to_ready(v1.entry_id)
        v2 = await engine.entries.add_async(namespace_id, entry(key="a"))

        # Old version stays visible until the swap
        assert await _ready_keys(engine, namespace_id) == ["a"]
        result = await engine.entries.promote_to_ready(v2.entry_id)

        assert result.replaced_version.entry_id == v1.entry_id
        assert result.replaced_version.status == Status.REPLACED
        assert await _ready_keys(engine, namespace_id) == ["a"]

        with pytest.raises(InvalidStateError):
            await engine.entries.promote_to_ready(v1.entry_id)

    @pytest.mark.asyncio
    async def test_pending_entry_freezes_when_namespace_is_replaced(self, engine, storage, config):
        old_id = await ready_namespace(engine, config)
        late = await engine.entries.add_async(old_id, entry(key="late"))
        rebuild = await engine.namespaces.start_rebuild(config)
        await engine.namespaces.promote_to_ready(rebuild.namespace_id)

        with pytest.raises(InvalidStateError):
            await engine.chunks.insert(late.entry_id, chunks(2), 0)
        with pytest.raises(InvalidStateError):
            await engine.chunks.replace_chunks_page(late.entry_id, 0)
        with pytest.raises(InvalidStateError):
            await engine.entries.promote_to_ready(late.entry_id)

        assert await storage.count_chunks(late.entry_id) == 0
        assert (await engine.entries.get(late.entry_id)).status == Status.PENDING
        assert await _ready_keys(engine, old_id) == []

    @pytest.mark.asyncio
    async def test_interleaved_promotions_keep_one_ready_entry(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        await engine.entries.add(namespace_id, entry(key="a", content_hash="seed"), chunks(1))
        writers_done = asyncio.Event()
        observed = []

        async def writer(n):
            for round_ in range(3):
                while True:
                    try:
                        pending = await engine.entries.add_async(
                            namespace_id, entry(key="a", content_hash=f"{n}-{round_}")
                        )
                        break
                    except DuplicateKeyError:
                        await asyncio.sleep(0)
                await asyncio.sleep(0)
                await engine.chunks.insert(pending.entry_id, chunks(1), 0)
                await asyncio.sleep(0)
                await engine.entries.promote_to_ready(pending.entry_id)

        async def reader():
            while not writers_done.is_set():
                ready = await engine.entries.list(namespace_id, Status.READY)
                observed.append(len(ready.page))
                await asyncio.sleep(0)

        reader_task = asyncio.create_task(reader())
        await asyncio.gather(*(writer(n) for n in range(5)))
        writers_done.set()
        await reader_task

        assert observed
        assert set(observed) == {1}
        assert await _ready_keys(engine, namespace_id) == ["a"]
        replaced = await engine.entries.list(
            namespace_id, Status.REPLACED, pagination=PaginationOpts(num_items=100)
        )
        assert len(replaced.page) == 15

    @pytest.mark.asyncio
    async def test_list_orders_and_paginates(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        for key in ["a", "b", "c"]:
            await engine.entries.add(namespace_id, entry(key=key), chunks(1))

        desc = await engine.entries.list(namespace_id, Status.READY, order="desc")
        assert [e.key for e in desc.page] == ["c", "b", "a"]

        page = await engine.entries.list(namespace_id, Status.READY, pagination=PaginationOpts(num_items=2))
        assert [e.key for e in page.page] == ["a", "b"]
        assert page.is_done is False
        rest = await engine.entries.list(
            namespace_id,
            Status.READY,
            pagination=PaginationOpts(cursor=page.continue_cursor, num_items=2),
        )
        assert [e.key for e in rest.page] == ["c"]
        assert rest.is_done


class TestFindByContentHash:

    @pytest.mark.asyncio
    async def test_finds_ready_entry(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        added = await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(1))

        found = await engine.entries.find_by_content_hash(config, "a", "h1")

        assert found.entry_id == added.entry_id

    @pytest.mark.asyncio
    async def test_misses(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        await engine.entries.add(namespace_id, entry(key="a", content_hash="h1"), chunks(1))

        assert await engine.entries.find_by_content_hash(config, "a", "other") is None
        assert await engine.entries.find_by_content_hash(config, "b", "h1") is None
        other = config.model_copy(update={"model_id": "other-model"})
        assert await engine.entries.find_by_content_hash(other, "a", "h1") is None

    @pytest.mark.asyncio
    async def test_pending_entries_do_not_count(self, engine, config):
        namespace_id = await ready_namespace(engine, config)
        await engine.entries.add_async(namespace_id, entry(key="a", content_hash="h1"))

        assert await engine.entries.find_by_content_hash(config, "a", "h1") is None


class TestDeletion:

    @pytest.mark.asyncio
    async def test_delete_hides_entry_and_schedules_purge(self, engine, storage, queue, config):
        namespace_id = await ready_namespace(engine, config)
        added = await engine.entries.add(namespace_id, entry(key="a", filter_values=[lang("en")]), chunks(4))

        await engine.entries.delete_async(added.entry_id)

        assert await engine.entries.get(added.entry_id) is None
        assert await _ready_keys(engine, namespace_id) == []
        assert queue.qsize() == 1

        job = await queue.get_next_job()
        assert isinstance(job, PurgeJob)
        assert job.entry_id == added.entry_id

        # Chunks linger until the purge job runs
        assert await storage.count_chunks(added.entry_id) == 4
        await engine.chunks.purge(job.entry_id, job.start_order)
        assert await storage.count_chunks(added.entry_id) == 0

    @pytest.mark.asyncio
    async def test_delete_from_start_order_purges_every_chunk(self, engine, storage, queue, config):
        namespace_id = await ready_namespace(engine, config)
        added = await engine.entries.add(namespace_id, entry(key="a"), chunks(5))
        index = storage._indexes[namespace_id]
        assert index.ntotal == 5

        await engine.entries.delete_async(added.entry_id, start_order=2)
        job = await queue.get_next_job()
        assert job.start_order == 2

        removed = await engine.chunks.purge(job.entry_id, job.start_order)

        assert removed == 5
        assert await storage.count_chunks(added.entry_id) == 0
        assert index.ntotal == 0
        assert storage._id_map == {}
        assert added.entry_id not in storage._chunks

    @pytest.mark.asyncio
    async def test_delete_unknown_entry_is_noop(self, engine, queue):
        await engine.entries.delete_async("missing")
        assert queue.qsize() == 0

    @pytest.mark.asyncio
    async def test_sweep_removes_only_stale_pending(self, engine, queue, config):
        namespace_id = await ready_namespace(engine, config)
        await engine.entries.add(namespace_id, entry(key="ready"), chunks(1))
        await engine.entries.add_async(namespace_id, entry(key="p1"))
        await engine.entries.add_async(namespace_id, entry(key="p2"))

        # Nothing is a day old yet
        assert await engine.entries.sweep_stale_pending(namespace_id) == 0

        swept = await engine.entries.sweep_stale_pending(namespace_id, older_than=timedelta(0))

        assert swept == 2
        assert queue.qsize() == 2
        pending = await engine.entries.list(namespace_id, Status.PENDING)
        assert pending.page == []
        assert await _ready_keys(engine, namespace_id) == ["ready"]
