"""
Entry Manager

Lifecycle of logical documents inside a namespace.

An entry is created ``pending``, receives its chunks, and is promoted to
``ready`` in one atomic swap that demotes the previous ready version with the
same key to ``replaced``. When a ready entry with the same key and content
hash already exists, ``add`` and ``add_async`` return it untouched, so
unchanged documents cost neither writes nor embedding calls.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Sequence

from ..config import settings
from ..core.errors import InvalidFilterError, InvalidStateError, NamespaceNotFoundError
from ..embeddings.queue import JobQueue, PurgeJob
from ..storage.base import RagStorage
from .chunks import ChunkStore, check_dimensions
from .models import (
    AddAsyncResult,
    AddEntryResult,
    ChunkInput,
    Entry,
    EntryInput,
    FilterValue,
    Namespace,
    NamespaceConfig,
    PromoteEntryResult,
    Status,
    utcnow,
)
from .pagination import PaginationOpts, PaginationResult, build_page, decode_int_cursor, json_size

logger = logging.getLogger("rag.entries")


def check_filters(namespace: Namespace, filters: Sequence[FilterValue]) -> None:
    """
    Raise InvalidFilterError if a filter names a field the namespace does
    not declare.
    """
    for f in filters:
        if f.name not in namespace.filter_names:
            raise InvalidFilterError(
                f"Filter {f.name!r} is not declared by namespace {namespace.namespace_id} "
                f"(declared: {namespace.filter_names})."
            )


class EntryManager:
    def __init__(
        self,
        storage: RagStorage,
        chunks: ChunkStore,
        queue: JobQueue,
    ) -> None:
        self._storage = storage
        self._chunks = chunks
        self._queue = queue

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _namespace(self, namespace_id: str) -> Namespace:
        namespace = await self._storage.get_namespace(namespace_id)
        if namespace is None:
            raise NamespaceNotFoundError(f"Namespace {namespace_id} not found.")
        return namespace

    @staticmethod
    def _check_writable(namespace: Namespace, entry: EntryInput) -> None:
        if namespace.status == Status.REPLACED:
            raise InvalidStateError(
                f"Namespace {namespace.namespace_id} was replaced and accepts no new entries."
            )
        check_filters(namespace, entry.filter_values)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self,
        namespace_id: str,
        entry: EntryInput,
        all_chunks: Optional[Sequence[ChunkInput]] = None,
    ) -> AddEntryResult:
        """
        Create an entry with all of its chunks and promote it to ready.

        Parameters
        ----------
        namespace_id : str
            Namespace receiving the entry.
        entry : EntryInput
            Entry description. With both ``key`` and ``content_hash`` set,
            an identical ready entry short-circuits the whole call.
        all_chunks : Optional[Sequence[ChunkInput]]
            Every chunk of the document, in order.

        Returns
        -------
        AddEntryResult
            ``created`` is False when an identical ready entry was reused.

        Raises
        ------
        NamespaceNotFoundError, InvalidStateError, InvalidFilterError,
        DimensionMismatchError, DuplicateKeyError
            All raised before anything is written.
        """
        namespace = await self._namespace(namespace_id)

        existing = await self.find_ready_duplicate(namespace_id, entry.key, entry.content_hash)
        if existing is not None:
            logger.debug("Entry %s unchanged (key=%r), skipping", existing.entry_id, entry.key)
            return AddEntryResult(
                entry_id=existing.entry_id,
                created=False,
                status=existing.status,
            )

        self._check_writable(namespace, entry)
        chunks = list(all_chunks or [])
        check_dimensions(namespace, chunks)

        record = await self._storage.create_entry(namespace_id, entry)

        try:
            if chunks:
                await self._chunks.insert(record.entry_id, chunks, 0)
            promoted, replaced = await self._storage.promote_entry(record.entry_id)
        except Exception:
            logger.error("Failed to finish entry %s, scheduling removal", record.entry_id)
            try:
                await self.delete_async(record.entry_id)
            except Exception:
                # Re-raise the write failure below, not the cleanup failure
                logger.exception("Cleanup of entry %s failed", record.entry_id)
            raise

        logger.info(
            "Entry %s ready in namespace %s (key=%r, chunks=%d, replaced=%s)",
            promoted.entry_id,
            namespace_id,
            entry.key,
            len(chunks),
            replaced.entry_id if replaced else None,
        )
        return AddEntryResult(
            entry_id=promoted.entry_id,
            created=True,
            status=promoted.status,
            replaced_version=replaced,
        )

    async def add_async(
        self,
        namespace_id: str,
        entry: EntryInput,
        chunker: Optional[str] = None,
    ) -> AddAsyncResult:
        """
        Create a pending entry and return immediately.

        The caller (or the background worker) streams chunks in with
        ``ChunkStore.insert`` and promotes the entry when done.
        """
        namespace = await self._namespace(namespace_id)

        existing = await self.find_ready_duplicate(namespace_id, entry.key, entry.content_hash)
        if existing is not None:
            logger.debug("Entry %s unchanged (key=%r), skipping", existing.entry_id, entry.key)
            return AddAsyncResult(
                entry_id=existing.entry_id,
                created=False,
                status=existing.status,
            )

        self._check_writable(namespace, entry)
        record = await self._storage.create_entry(namespace_id, entry, chunker=chunker)

        logger.info(
            "Entry %s pending in namespace %s (key=%r, chunker=%s)",
            record.entry_id,
            namespace_id,
            entry.key,
            chunker,
        )
        return AddAsyncResult(entry_id=record.entry_id, created=True, status=record.status)

    async def find_ready_duplicate(
        self,
        namespace_id: str,
        key: Optional[str],
        content_hash: Optional[str],
    ) -> Optional[Entry]:
        """Return the ready entry of this namespace with the same key and hash."""
        if key is None or content_hash is None:
            return None

        for existing in await self._storage.find_entries(namespace_id, key, [Status.READY]):
            if existing.content_hash == content_hash:
                return existing
        return None

    async def find_by_content_hash(
        self,
        config: NamespaceConfig,
        key: str,
        content_hash: str,
    ) -> Optional[Entry]:
        """
        Return the ready entry with this key and hash in a live namespace
        version of ``config``, checking the ready version first.
        """
        namespaces = await self._storage.find_namespaces(config, [Status.READY, Status.PENDING])
        namespaces.sort(key=lambda ns: ns.status != Status.READY)

        for namespace in namespaces:
            for entry in await self._storage.find_entries(namespace.namespace_id, key, [Status.READY]):
                if entry.content_hash == content_hash:
                    return entry
        return None

    async def promote_to_ready(self, entry_id: str) -> PromoteEntryResult:
        promoted, replaced = await self._storage.promote_entry(entry_id)
        if replaced is not None:
            logger.info("Entry %s promoted, replaced %s", promoted.entry_id, replaced.entry_id)
        else:
            logger.info("Entry %s promoted", promoted.entry_id)
        return PromoteEntryResult(replaced_version=replaced)

    async def delete_async(self, entry_id: str, start_order: int = 0) -> None:
        """
        Remove an entry from view now and purge its chunks in the background.
        """
        removed = await self._storage.remove_entry(entry_id)
        if removed is None:
            logger.debug("Delete of unknown entry %s ignored", entry_id)
            return

        await self._queue.enqueue(PurgeJob(entry_id=entry_id, start_order=start_order))
        logger.info("Entry %s deleted, chunk purge scheduled", entry_id)

    async def get(self, entry_id: str) -> Optional[Entry]:
        return await self._storage.get_entry(entry_id)

    async def list(
        self,
        namespace_id: str,
        status: Status,
        order: str = "asc",
        pagination: Optional[PaginationOpts] = None,
    ) -> PaginationResult[Entry]:
        opts = pagination or PaginationOpts()
        after = decode_int_cursor(opts.cursor)

        rows = await self._storage.list_entries(
            namespace_id,
            status,
            descending=(order == "desc"),
            after_seq=after,
            limit=opts.num_items + 1,
        )
        return build_page(rows, opts, sort_key=lambda e: e.seq, size_of=json_size)

    async def sweep_stale_pending(
        self,
        namespace_id: str,
        older_than: Optional[timedelta] = None,
    ) -> int:
        """
        Delete pending entries created more than ``older_than`` ago.

        Returns the number of entries scheduled for deletion.
        """
        if older_than is None:
            older_than = timedelta(seconds=settings.stale_pending_after_seconds)
        cutoff = utcnow() - older_than

        swept: List[str] = []
        after_seq: Optional[int] = None

        while True:
            batch = await self._storage.list_entries(
                namespace_id,
                Status.PENDING,
                descending=False,
                after_seq=after_seq,
                limit=settings.default_page_size,
                created_before=cutoff,
            )
            if not batch:
                break

            for entry in batch:
                await self.delete_async(entry.entry_id)
                swept.append(entry.entry_id)
            after_seq = batch[-1].seq

        if swept:
            logger.info("Swept %d stale pending entries from namespace %s", len(swept), namespace_id)
        return len(swept)
