"""
Chunk Store

Ordered chunk writes for pending entries. Chunk orders of an entry are always
exactly ``0..count-1``: inserts must append at the current count, and
replacement removes pages from the tail, so no call ever leaves a gap.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..config import settings
from ..core.errors import DimensionMismatchError, EntryNotFoundError, NamespaceNotFoundError
from ..storage.base import RagStorage
from .models import Chunk, ChunkInput, InsertChunksResult, Namespace, ReplaceChunksResult
from .pagination import PaginationOpts, PaginationResult, build_page, decode_int_cursor, json_size

logger = logging.getLogger("rag.chunks")


def check_dimensions(namespace: Namespace, chunks: Sequence[ChunkInput]) -> None:
    """
    Raise DimensionMismatchError if any chunk embedding has the wrong length.
    """
    for position, chunk in enumerate(chunks):
        if len(chunk.embedding) != namespace.dimension:
            raise DimensionMismatchError(
                f"Chunk {position} has dimension {len(chunk.embedding)}; "
                f"namespace {namespace.namespace_id} expects {namespace.dimension}."
            )


class ChunkStore:
    def __init__(self, storage: RagStorage) -> None:
        self._storage = storage

    async def insert(
        self,
        entry_id: str,
        chunks: Sequence[ChunkInput],
        start_order: int,
    ) -> InsertChunksResult:
        """
        Append chunks to a pending entry.

        Parameters
        ----------
        entry_id : str
            Target entry, which must be pending.
        chunks : Sequence[ChunkInput]
            Chunks to write, in order.
        start_order : int
            Order of the first chunk. Must equal the entry's current chunk count.

        Returns
        -------
        InsertChunksResult
            The entry's status after the write.

        Raises
        ------
        EntryNotFoundError
            If the entry does not exist.
        DimensionMismatchError
            If any embedding length differs from the namespace dimension.
            Checked for every chunk before anything is written.
        OutOfOrderError
            If ``start_order`` is not the current chunk count.
        InvalidStateError
            If the entry is not pending.
        """
        entry = await self._storage.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found.")

        namespace = await self._storage.get_namespace(entry.namespace_id)
        if namespace is None:
            raise NamespaceNotFoundError(f"Namespace {entry.namespace_id} not found.")

        check_dimensions(namespace, chunks)

        entry = await self._storage.insert_chunks(entry_id, start_order, chunks)
        logger.debug(
            "Inserted %d chunks into entry %s at order %d",
            len(chunks),
            entry_id,
            start_order,
        )
        return InsertChunksResult(status=entry.status)

    async def list(
        self,
        entry_id: str,
        pagination: Optional[PaginationOpts] = None,
    ) -> PaginationResult[Chunk]:
        if await self._storage.get_entry(entry_id) is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found.")

        opts = pagination or PaginationOpts()
        after = decode_int_cursor(opts.cursor)

        rows = await self._storage.list_chunks(entry_id, after, opts.num_items + 1)
        return build_page(rows, opts, sort_key=lambda c: c.order, size_of=json_size)

    async def replace_chunks_page(
        self,
        entry_id: str,
        start_order: int,
        page_size: Optional[int] = None,
    ) -> ReplaceChunksResult:
        """
        Delete one page of chunks from the tail of a pending entry.

        Call repeatedly until ``is_done``; then resume inserting at
        ``next_start_order``.
        """
        page_size = page_size or settings.replace_page_size
        entry, remaining = await self._storage.truncate_chunks(entry_id, start_order, page_size)

        is_done = remaining <= start_order
        logger.debug(
            "Replace page on entry %s: %d chunks remain (start_order=%d)",
            entry_id,
            remaining,
            start_order,
        )
        return ReplaceChunksResult(
            next_start_order=remaining,
            status=entry.status,
            is_done=is_done,
        )

    async def purge(
        self,
        entry_id: str,
        start_order: int = 0,
        page_size: Optional[int] = None,
    ) -> int:
        """
        Delete chunks of an entry from the tail, page by page.

        For a live entry only chunks with order >= start_order go. Once the
        entry record is removed every chunk goes: ``start_order`` is then just
        where a resumed purge picks up, and the purge continues down to 0.
        Returns the number of chunks deleted.
        """
        page_size = page_size or settings.purge_page_size
        total = await self._purge_from(entry_id, start_order, page_size)

        if start_order > 0 and await self._storage.get_entry(entry_id) is None:
            total += await self._purge_from(entry_id, 0, page_size)

        logger.info("Purged %d chunks of entry %s", total, entry_id)
        return total

    async def _purge_from(self, entry_id: str, start_order: int, page_size: int) -> int:
        total = 0
        while True:
            removed = await self._storage.purge_chunks(entry_id, start_order, page_size)
            total += removed
            if removed < page_size:
                return total
