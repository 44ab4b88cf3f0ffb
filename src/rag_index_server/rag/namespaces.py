"""
Namespace Manager

Versioned index configurations. Each ``(namespace, model_id, dimension,
filter_names)`` tuple has at most one ready and one pending version; a
rebuild fills the pending version while searches keep reading the ready one,
then ``promote_to_ready`` flips them atomically.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..storage.base import RagStorage
from .models import (
    GetOrCreateResult,
    Namespace,
    NamespaceConfig,
    PromoteNamespaceResult,
    Status,
)
from .pagination import PaginationOpts, PaginationResult, build_page, decode_int_cursor, json_size

logger = logging.getLogger("rag.namespaces")


class NamespaceManager:
    def __init__(self, storage: RagStorage) -> None:
        self._storage = storage

    async def get_or_create(
        self,
        config: NamespaceConfig,
        status: Status = Status.PENDING,
    ) -> GetOrCreateResult:
        """
        Return the namespace for ``config`` in ``status`` or a more advanced
        one, creating a pending namespace when none exists.

        A ready version always wins. Otherwise the existing pending version
        is returned, so repeated calls never create a second pending one.
        """
        wanted = [Status.READY] if status == Status.READY else [Status.READY, Status.PENDING]
        found = await self._storage.find_namespaces(config, wanted)
        found.sort(key=lambda ns: ns.status != Status.READY)

        if found:
            namespace = found[0]
        else:
            namespace = await self._storage.create_pending_namespace(config)
            logger.info(
                "Namespace %s (%s v%d) %s",
                namespace.namespace_id,
                config.namespace,
                namespace.version,
                namespace.status.value,
            )

        return GetOrCreateResult(namespace_id=namespace.namespace_id, status=namespace.status)

    async def start_rebuild(self, config: NamespaceConfig) -> GetOrCreateResult:
        """
        Return the pending version of ``config``, creating one even when a
        ready version exists.
        """
        namespace = await self._storage.create_pending_namespace(config)
        logger.info(
            "Rebuild of %s uses pending namespace %s (v%d)",
            config.namespace,
            namespace.namespace_id,
            namespace.version,
        )
        return GetOrCreateResult(namespace_id=namespace.namespace_id, status=namespace.status)

    async def get(self, config: NamespaceConfig) -> Optional[Namespace]:
        """Return the ready namespace for ``config``, if any."""
        found = await self._storage.find_namespaces(config, [Status.READY])
        return found[0] if found else None

    async def lookup(self, config: NamespaceConfig) -> Optional[str]:
        namespace = await self.get(config)
        return namespace.namespace_id if namespace else None

    async def get_by_id(self, namespace_id: str) -> Optional[Namespace]:
        return await self._storage.get_namespace(namespace_id)

    async def promote_to_ready(self, namespace_id: str) -> PromoteNamespaceResult:
        promoted, replaced = await self._storage.promote_namespace(namespace_id)
        logger.info(
            "Namespace %s (%s v%d) ready, replaced %s",
            promoted.namespace_id,
            promoted.namespace,
            promoted.version,
            replaced.namespace_id if replaced else None,
        )
        return PromoteNamespaceResult(replaced_version=replaced)

    async def list(
        self,
        status: Status,
        pagination: Optional[PaginationOpts] = None,
    ) -> PaginationResult[Namespace]:
        opts = pagination or PaginationOpts()
        after = decode_int_cursor(opts.cursor)

        rows = await self._storage.list_namespaces(status, after, opts.num_items + 1)
        return build_page(rows, opts, sort_key=lambda ns: ns.seq, size_of=json_size)
