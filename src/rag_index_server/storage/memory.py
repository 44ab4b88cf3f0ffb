"""
In-memory storage backend.

Keeps namespaces, entries and chunks in process memory, with one FAISS index
per namespace for vector search and BM25 (rank-bm25) for keyword search.

Design choices
--------------
- No persistence across process restarts.
- A single re-entrant lock guards every structure; each public method holds
  it for its whole critical section and never awaits inside it, which makes
  every method atomic with respect to the others.
- Records are frozen pydantic models, so they are returned without copying.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional, Sequence, Tuple

from rank_bm25 import BM25Okapi

from ..core.errors import (
    DuplicateKeyError,
    EntryNotFoundError,
    InvalidStateError,
    NamespaceNotFoundError,
    OutOfOrderError,
)
from ..embeddings.index import FaissIndex
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
from .base import ChunkHit, RagStorage

logger = logging.getLogger("rag.storage")

_TOKEN_RE = re.compile(r"\w+")


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(text.lower())


def _rank_key(hit: ChunkHit) -> Tuple[float, float, int, int]:
    chunk, entry, score = hit
    return (-score, -entry.importance, chunk.order, entry.seq)


class MemoryRagStorage(RagStorage):
    """
    Process-local RAG storage.

    Suitable for tests, single-process deployments and local tooling. For
    durable or multi-process setups use the PostgreSQL backend, which exposes
    the same interface.
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, Namespace] = {}
        self._entries: Dict[str, Entry] = {}

        # entry_id -> chunks, list position == chunk order
        self._chunks: Dict[str, List[Chunk]] = {}
        # entry_id -> FAISS vector id per chunk order
        self._vector_ids: Dict[str, List[int]] = {}
        # entry_id -> namespace_id; outlives the entry until its chunks are purged
        self._chunk_owner: Dict[str, str] = {}
        # FAISS vector id -> (entry_id, order)
        self._id_map: Dict[int, Tuple[str, int]] = {}
        self._indexes: Dict[str, FaissIndex] = {}

        self._next_vector_id = 0
        self._seq = 0
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _require_entry(self, entry_id: str) -> Entry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found.")
        return entry

    def _require_pending(self, entry_id: str) -> Entry:
        entry = self._require_entry(entry_id)
        if entry.status != Status.PENDING:
            raise InvalidStateError(
                f"Entry {entry_id} is {entry.status.value}; chunks can only change while pending."
            )
        return entry

    def _require_live_namespace(self, entry: Entry) -> None:
        namespace = self._namespaces.get(entry.namespace_id)
        if namespace is None:
            raise NamespaceNotFoundError(f"Namespace {entry.namespace_id} not found.")
        if namespace.status == Status.REPLACED:
            raise InvalidStateError(
                f"Namespace {entry.namespace_id} was replaced; entry {entry.entry_id} can no longer change."
            )

    def _drop_tail(self, entry_id: str, stop: int) -> int:
        """Remove chunks with order >= stop. Returns how many were removed."""
        vector_ids = self._vector_ids.get(entry_id, [])
        removed_ids = vector_ids[stop:]
        if not removed_ids:
            return 0

        index = self._indexes.get(self._chunk_owner.get(entry_id, ""))
        if index is not None:
            index.remove(removed_ids)

        for vid in removed_ids:
            self._id_map.pop(vid, None)

        del vector_ids[stop:]
        del self._chunks[entry_id][stop:]
        return len(removed_ids)

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def create_pending_namespace(self, config: NamespaceConfig) -> Namespace:
        with self._lock:
            matching = [
                ns for ns in self._namespaces.values()
                if ns.to_config() == config
            ]
            for ns in matching:
                if ns.status == Status.PENDING:
                    return ns

            namespace = Namespace(
                namespace_id=uuid.uuid4().hex,
                status=Status.PENDING,
                version=max((ns.version for ns in matching), default=0) + 1,
                seq=self._next_seq(),
                **config.model_dump(),
            )
            self._namespaces[namespace.namespace_id] = namespace
            self._indexes[namespace.namespace_id] = FaissIndex(config.dimension)
            return namespace

    async def get_namespace(self, namespace_id: str) -> Optional[Namespace]:
        with self._lock:
            return self._namespaces.get(namespace_id)

    async def find_namespaces(
        self,
        config: NamespaceConfig,
        statuses: Sequence[Status],
    ) -> List[Namespace]:
        with self._lock:
            found = [
                ns for ns in self._namespaces.values()
                if ns.status in statuses and ns.to_config() == config
            ]
        return sorted(found, key=lambda ns: ns.seq, reverse=True)

    async def list_namespaces(
        self,
        status: Status,
        after_seq: Optional[int],
        limit: int,
    ) -> List[Namespace]:
        with self._lock:
            found = [
                ns for ns in self._namespaces.values()
                if ns.status == status and (after_seq is None or ns.seq > after_seq)
            ]
        found.sort(key=lambda ns: ns.seq)
        return found[:limit]

    async def promote_namespace(
        self,
        namespace_id: str,
    ) -> Tuple[Namespace, Optional[Namespace]]:
        with self._lock:
            namespace = self._namespaces.get(namespace_id)
            if namespace is None:
                raise NamespaceNotFoundError(f"Namespace {namespace_id} not found.")
            if namespace.status == Status.READY:
                return namespace, None
            if namespace.status == Status.REPLACED:
                raise InvalidStateError(
                    f"Namespace {namespace_id} was replaced and cannot be promoted."
                )

            config = namespace.to_config()
            replaced: Optional[Namespace] = None
            for other in list(self._namespaces.values()):
                if other.status == Status.READY and other.to_config() == config:
                    replaced = other.model_copy(update={"status": Status.REPLACED})
                    self._namespaces[other.namespace_id] = replaced

            promoted = namespace.model_copy(update={"status": Status.READY})
            self._namespaces[namespace_id] = promoted
            return promoted, replaced

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def create_entry(
        self,
        namespace_id: str,
        entry: EntryInput,
        chunker: Optional[str] = None,
    ) -> Entry:
        with self._lock:
            if namespace_id not in self._namespaces:
                raise NamespaceNotFoundError(f"Namespace {namespace_id} not found.")

            if entry.key is not None:
                for other in self._entries.values():
                    if (
                        other.namespace_id == namespace_id
                        and other.key == entry.key
                        and other.status == Status.PENDING
                    ):
                        raise DuplicateKeyError(
                            f"Key {entry.key!r} already has pending entry {other.entry_id}."
                        )

            record = Entry(
                entry_id=uuid.uuid4().hex,
                namespace_id=namespace_id,
                status=Status.PENDING,
                chunker=chunker,
                seq=self._next_seq(),
                **entry.model_dump(),
            )
            self._entries[record.entry_id] = record
            self._chunks[record.entry_id] = []
            self._vector_ids[record.entry_id] = []
            self._chunk_owner[record.entry_id] = namespace_id
            return record

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    async def find_entries(
        self,
        namespace_id: str,
        key: Optional[str],
        statuses: Sequence[Status],
    ) -> List[Entry]:
        with self._lock:
            found = [
                e for e in self._entries.values()
                if e.namespace_id == namespace_id
                and e.key == key
                and e.status in statuses
            ]
        return sorted(found, key=lambda e: e.seq, reverse=True)

    async def list_entries(
        self,
        namespace_id: str,
        status: Status,
        descending: bool,
        after_seq: Optional[int],
        limit: int,
        created_before: Optional[datetime] = None,
    ) -> List[Entry]:
        with self._lock:
            found = [
                e for e in self._entries.values()
                if e.namespace_id == namespace_id and e.status == status
            ]

        if created_before is not None:
            found = [e for e in found if e.created_at < created_before]
        if after_seq is not None:
            if descending:
                found = [e for e in found if e.seq < after_seq]
            else:
                found = [e for e in found if e.seq > after_seq]

        found.sort(key=lambda e: e.seq, reverse=descending)
        return found[:limit]

    async def promote_entry(self, entry_id: str) -> Tuple[Entry, Optional[Entry]]:
        with self._lock:
            entry = self._require_entry(entry_id)
            if entry.status == Status.READY:
                return entry, None
            if entry.status == Status.REPLACED:
                raise InvalidStateError(
                    f"Entry {entry_id} was replaced and cannot be promoted."
                )
            self._require_live_namespace(entry)

            replaced: Optional[Entry] = None
            if entry.key is not None:
                for other in list(self._entries.values()):
                    if (
                        other.namespace_id == entry.namespace_id
                        and other.key == entry.key
                        and other.status == Status.READY
                    ):
                        replaced = other.model_copy(update={"status": Status.REPLACED})
                        self._entries[other.entry_id] = replaced

            promoted = entry.model_copy(update={"status": Status.READY})
            self._entries[entry_id] = promoted
            return promoted, replaced

    async def remove_entry(self, entry_id: str) -> Optional[Entry]:
        with self._lock:
            return self._entries.pop(entry_id, None)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(
        self,
        entry_id: str,
        start_order: int,
        chunks: Sequence[ChunkInput],
    ) -> Entry:
        with self._lock:
            entry = self._require_pending(entry_id)
            self._require_live_namespace(entry)
            existing = self._chunks[entry_id]

            if start_order != len(existing):
                raise OutOfOrderError(
                    f"Entry {entry_id} has {len(existing)} chunks; "
                    f"cannot insert at order {start_order}."
                )
            if not chunks:
                return entry

            ids = list(range(self._next_vector_id, self._next_vector_id + len(chunks)))
            self._indexes[entry.namespace_id].add(ids, [c.embedding for c in chunks])
            self._next_vector_id += len(chunks)

            for offset, (vid, item) in enumerate(zip(ids, chunks)):
                order = start_order + offset
                existing.append(
                    Chunk(
                        entry_id=entry_id,
                        order=order,
                        content=item.content,
                        embedding=list(item.embedding),
                        searchable_text=item.searchable_text,
                    )
                )
                self._vector_ids[entry_id].append(vid)
                self._id_map[vid] = (entry_id, order)

            return entry

    async def count_chunks(self, entry_id: str) -> int:
        with self._lock:
            return len(self._chunks.get(entry_id, []))

    async def list_chunks(
        self,
        entry_id: str,
        after_order: Optional[int],
        limit: int,
    ) -> List[Chunk]:
        start = 0 if after_order is None else after_order + 1
        with self._lock:
            return list(self._chunks.get(entry_id, [])[start:start + limit])

    async def get_chunk_window(
        self,
        entry_id: str,
        first_order: int,
        last_order: int,
    ) -> List[Chunk]:
        with self._lock:
            return list(self._chunks.get(entry_id, [])[max(first_order, 0):last_order + 1])

    async def truncate_chunks(
        self,
        entry_id: str,
        start_order: int,
        limit: int,
    ) -> Tuple[Entry, int]:
        with self._lock:
            entry = self._require_pending(entry_id)
            self._require_live_namespace(entry)
            count = len(self._chunks[entry_id])

            if start_order < 0 or start_order > count:
                raise OutOfOrderError(
                    f"Entry {entry_id} has {count} chunks; cannot truncate from order {start_order}."
                )

            self._drop_tail(entry_id, max(start_order, count - limit))
            return entry, len(self._chunks[entry_id])

    async def purge_chunks(self, entry_id: str, start_order: int, limit: int) -> int:
        with self._lock:
            chunks = self._chunks.get(entry_id)
            if chunks is None:
                return 0

            count = len(chunks)
            removed = self._drop_tail(entry_id, max(start_order, count - limit))

            if not self._chunks[entry_id] and entry_id not in self._entries:
                self._chunks.pop(entry_id, None)
                self._vector_ids.pop(entry_id, None)
                self._chunk_owner.pop(entry_id, None)

            return removed

    async def vector_search(
        self,
        namespace_id: str,
        embedding: Sequence[float],
        filters: Sequence[FilterValue],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[ChunkHit]:
        with self._lock:
            index = self._indexes.get(namespace_id)
            if index is None:
                return []

            # Flat index: scoring everything is the exact search anyway
            raw = index.search(embedding, index.ntotal)

            hits: List[ChunkHit] = []
            for vid, score in raw:
                if score_threshold is not None and score < score_threshold:
                    continue

                owner = self._id_map.get(vid)
                if owner is None:
                    continue

                entry_id, order = owner
                entry = self._entries.get(entry_id)
                if (
                    entry is None
                    or entry.status != Status.READY
                    or not entry.matches_filters(list(filters))
                ):
                    continue

                hits.append((self._chunks[entry_id][order], entry, score))

        hits.sort(key=_rank_key)
        return hits[:limit]

    async def text_search(
        self,
        namespace_id: str,
        query: str,
        filters: Sequence[FilterValue],
        limit: int,
    ) -> List[ChunkHit]:
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        with self._lock:
            candidates: List[Tuple[Chunk, Entry]] = [
                (chunk, entry)
                for entry in self._entries.values()
                if entry.namespace_id == namespace_id
                and entry.status == Status.READY
                and entry.matches_filters(list(filters))
                for chunk in self._chunks.get(entry.entry_id, [])
            ]

        if not candidates:
            return []

        corpus = [tokenize(chunk.keyword_text) for chunk, _ in candidates]
        wanted = set(query_tokens)
        matched = [i for i, tokens in enumerate(corpus) if wanted.intersection(tokens)]
        if not matched:
            return []

        scores = BM25Okapi(corpus).get_scores(query_tokens)

        hits: List[ChunkHit] = [
            (candidates[i][0], candidates[i][1], float(scores[i]))
            for i in matched
        ]
        hits.sort(key=_rank_key)
        logger.debug("Keyword search matched %d of %d chunks", len(hits), len(candidates))
        return hits[:limit]
