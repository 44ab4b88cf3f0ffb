"""
Abstract storage interface.

Defines the capability surface every storage backend must provide for the
RAG engine. The managers in ``rag_index_server.rag`` hold all lifecycle and
validation rules; a backend only has to make each method below one atomic
unit and honour the keyed pagination contract.

Atomicity
---------
Every method is atomic with respect to every other method on the same
backend. In particular the two ``promote_*`` methods flip the new record to
``ready`` and the previous ready record to ``replaced`` in one step, so no
reader can observe zero or two ready versions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from ..rag.models import (
    Chunk,
    ChunkInput,
    Entry,
    EntryInput,
    FilterValue,
    Namespace,
    NamespaceConfig,
    Status,
)

# (chunk, owning entry, score)
ChunkHit = Tuple[Chunk, Entry, float]


class RagStorage(ABC):
    """
    Abstract storage backend for namespaces, entries and chunks.
    """

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_pending_namespace(self, config: NamespaceConfig) -> Namespace:
        """
        Return the config's pending namespace, creating it if none exists.

        A created namespace gets ``version = 1 + max(version)`` over all
        namespaces sharing the config.
        """

    @abstractmethod
    async def get_namespace(self, namespace_id: str) -> Optional[Namespace]:
        """Return the namespace with this ID, in any status."""

    @abstractmethod
    async def find_namespaces(
        self,
        config: NamespaceConfig,
        statuses: Sequence[Status],
    ) -> List[Namespace]:
        """Return namespaces matching the config exactly, newest first."""

    @abstractmethod
    async def list_namespaces(
        self,
        status: Status,
        after_seq: Optional[int],
        limit: int,
    ) -> List[Namespace]:
        """Return up to ``limit`` namespaces in ``status`` with seq > after_seq, ascending."""

    @abstractmethod
    async def promote_namespace(
        self,
        namespace_id: str,
    ) -> Tuple[Namespace, Optional[Namespace]]:
        """
        Atomically make the namespace ready, demoting the previous ready one.

        Returns the promoted namespace and the demoted one (or None). Promoting
        a ready namespace returns it unchanged with None.

        Raises
        ------
        NamespaceNotFoundError
            If the ID is unknown.
        InvalidStateError
            If the namespace is replaced.
        """

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_entry(
        self,
        namespace_id: str,
        entry: EntryInput,
        chunker: Optional[str] = None,
    ) -> Entry:
        """
        Insert a new pending entry.

        Raises
        ------
        DuplicateKeyError
            If a pending entry with the same key already exists in the namespace.
        """

    @abstractmethod
    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        """Return the live entry with this ID, or None if unknown or deleted."""

    @abstractmethod
    async def find_entries(
        self,
        namespace_id: str,
        key: Optional[str],
        statuses: Sequence[Status],
    ) -> List[Entry]:
        """Return entries with this key (None matches unkeyed entries), newest first."""

    @abstractmethod
    async def list_entries(
        self,
        namespace_id: str,
        status: Status,
        descending: bool,
        after_seq: Optional[int],
        limit: int,
        created_before: Optional[datetime] = None,
    ) -> List[Entry]:
        """Return up to ``limit`` entries in ``status`` following ``after_seq``."""

    @abstractmethod
    async def promote_entry(self, entry_id: str) -> Tuple[Entry, Optional[Entry]]:
        """
        Atomically make the entry ready, demoting the ready entry with the same key.

        Raises
        ------
        EntryNotFoundError
            If the ID is unknown.
        InvalidStateError
            If the entry is replaced, or its namespace is.
        """

    @abstractmethod
    async def remove_entry(self, entry_id: str) -> Optional[Entry]:
        """
        Remove the entry record, leaving its chunks for a later purge.

        Returns the removed entry, or None if it did not exist.
        """

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_chunks(
        self,
        entry_id: str,
        start_order: int,
        chunks: Sequence[ChunkInput],
    ) -> Entry:
        """
        Append chunks to a pending entry starting at ``start_order``.

        Raises
        ------
        EntryNotFoundError
            If the entry is unknown.
        InvalidStateError
            If the entry is not pending or its namespace was replaced.
        OutOfOrderError
            If ``start_order`` differs from the current chunk count.
        """

    @abstractmethod
    async def count_chunks(self, entry_id: str) -> int:
        """Return the number of stored chunks for the entry."""

    @abstractmethod
    async def list_chunks(
        self,
        entry_id: str,
        after_order: Optional[int],
        limit: int,
    ) -> List[Chunk]:
        """Return up to ``limit`` chunks with order > after_order, ascending."""

    @abstractmethod
    async def get_chunk_window(
        self,
        entry_id: str,
        first_order: int,
        last_order: int,
    ) -> List[Chunk]:
        """Return chunks with first_order <= order <= last_order, ascending."""

    @abstractmethod
    async def truncate_chunks(
        self,
        entry_id: str,
        start_order: int,
        limit: int,
    ) -> Tuple[Entry, int]:
        """
        Delete up to ``limit`` chunks of a pending entry from the tail, never
        below ``start_order``.

        Returns the entry and the remaining chunk count.

        Raises
        ------
        EntryNotFoundError, InvalidStateError, OutOfOrderError
            InvalidStateError also covers a replaced namespace.
        """

    @abstractmethod
    async def purge_chunks(self, entry_id: str, start_order: int, limit: int) -> int:
        """
        Delete up to ``limit`` chunks with order >= start_order, regardless of
        entry state. Used for cascade deletes. Returns the number deleted.
        """

    @abstractmethod
    async def vector_search(
        self,
        namespace_id: str,
        embedding: Sequence[float],
        filters: Sequence[FilterValue],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[ChunkHit]:
        """
        Cosine nearest-neighbour search over chunks of ready entries.

        Results are ordered by score descending, entry importance descending,
        then chunk order ascending.
        """

    @abstractmethod
    async def text_search(
        self,
        namespace_id: str,
        query: str,
        filters: Sequence[FilterValue],
        limit: int,
    ) -> List[ChunkHit]:
        """
        Keyword search over chunk searchable text of ready entries, best first.
        """
