import asyncio

import pytest
from pydantic import ValidationError

from rag_index_server.core.errors import InvalidStateError, NamespaceNotFoundError
from rag_index_server.rag.models import NamespaceConfig, Status
from rag_index_server.rag.pagination import PaginationOpts

from helpers import make_config


class TestNamespaceConfig:

    def test_duplicate_filter_names_rejected(self):
        with pytest.raises(ValidationError):
            NamespaceConfig(namespace="docs", model_id="m", dimension=4, filter_names=["a", "a"])

    def test_dimension_must_be_positive(self):
        with pytest.raises(ValidationError):
            NamespaceConfig(namespace="docs", model_id="m", dimension=0)

    def test_filter_order_is_part_of_identity(self):
        assert make_config(filter_names=["lang", "team"]) != make_config(filter_names=["team", "lang"])


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, engine, config):
        first = await engine.namespaces.get_or_create(config)
        second = await engine.namespaces.get_or_create(config)

        assert first.status == Status.PENDING
        assert second.namespace_id == first.namespace_id

    @pytest.mark.asyncio
    async def test_pending_namespace_is_not_resolvable(self, engine, config):
        await engine.namespaces.get_or_create(config)

        assert await engine.namespaces.get(config) is None
        assert await engine.namespaces.lookup(config) is None

    @pytest.mark.asyncio
    async def test_requesting_ready_never_creates_a_second_pending(self, engine, config):
        pending = await engine.namespaces.get_or_create(config)
        again = await engine.namespaces.get_or_create(config, status=Status.READY)

        assert again.namespace_id == pending.namespace_id
        listed = await engine.namespaces.list(Status.PENDING)
        assert len(listed.page) == 1

    @pytest.mark.asyncio
    async def test_promotion_makes_namespace_resolvable(self, engine, config):
        created = await engine.namespaces.get_or_create(config)

        result = await engine.namespaces.promote_to_ready(created.namespace_id)

        assert result.replaced_version is None
        assert await engine.namespaces.lookup(config) == created.namespace_id
        resolved = await engine.namespaces.get_or_create(config)
        assert resolved.namespace_id == created.namespace_id
        assert resolved.status == Status.READY

    @pytest.mark.asyncio
    async def test_rebuild_swaps_versions_atomically(self, engine, config):
        v1 = await engine.namespaces.get_or_create(config)
        await engine.namespaces.promote_to_ready(v1.namespace_id)

        v2 = await engine.namespaces.start_rebuild(config)
        assert v2.namespace_id != v1.namespace_id
        assert v2.status == Status.PENDING
        assert (await engine.namespaces.start_rebuild(config)).namespace_id == v2.namespace_id

        # Readers keep seeing v1 until the flip
        assert await engine.namespaces.lookup(config) == v1.namespace_id

        result = await engine.namespaces.promote_to_ready(v2.namespace_id)

        assert result.replaced_version.namespace_id == v1.namespace_id
        assert result.replaced_version.status == Status.REPLACED
        assert await engine.namespaces.lookup(config) == v2.namespace_id
        assert (await engine.namespaces.get_by_id(v2.namespace_id)).version == 2

        ready = await engine.namespaces.list(Status.READY)
        assert [ns.namespace_id for ns in ready.page] == [v2.namespace_id]

    @pytest.mark.asyncio
    async def test_promotion_is_idempotent_and_replaced_is_terminal(self, engine, config):
        v1 = await engine.namespaces.get_or_create(config)
        await engine.namespaces.promote_to_ready(v1.namespace_id)
        v2 = await engine.namespaces.start_rebuild(config)
        await engine.namespaces.promote_to_ready(v2.namespace_id)

        again = await engine.namespaces.promote_to_ready(v2.namespace_id)
        assert again.replaced_version is None

        with pytest.raises(InvalidStateError):
            await engine.namespaces.promote_to_ready(v1.namespace_id)

    @pytest.mark.asyncio
    async def test_concurrent_rebuilds_share_one_pending_version(self, engine, config):
        v1 = await engine.namespaces.get_or_create(config)
        await engine.namespaces.promote_to_ready(v1.namespace_id)

        started = await asyncio.gather(*(engine.namespaces.start_rebuild(config) for _ in range(5)))
        assert len({s.namespace_id for s in started}) == 1

        results = await asyncio.gather(
            *(engine.namespaces.promote_to_ready(s.namespace_id) for s in started)
        )

        assert sum(r.replaced_version is not None for r in results) == 1
        ready = await engine.namespaces.list(Status.READY)
        assert [ns.namespace_id for ns in ready.page] == [started[0].namespace_id]

    @pytest.mark.asyncio
    async def test_promote_unknown_namespace(self, engine):
        with pytest.raises(NamespaceNotFoundError):
            await engine.namespaces.promote_to_ready("missing")

    @pytest.mark.asyncio
    async def test_configs_are_isolated(self, engine):
        a = await engine.namespaces.get_or_create(make_config(dimension=4))
        b = await engine.namespaces.get_or_create(make_config(dimension=8))

        assert a.namespace_id != b.namespace_id

    @pytest.mark.asyncio
    async def test_list_paginates_by_creation(self, engine):
        ids = []
        for i in range(5):
            created = await engine.namespaces.get_or_create(make_config(namespace=f"ns{i}"))
            ids.append(created.namespace_id)

        first = await engine.namespaces.list(Status.PENDING, PaginationOpts(num_items=3))
        rest = await engine.namespaces.list(
            Status.PENDING,
            PaginationOpts(cursor=first.continue_cursor, num_items=3),
        )

        assert first.is_done is False
        assert rest.is_done is True
        assert [ns.namespace_id for ns in first.page + rest.page] == ids
