"""
PostgreSQL storage backend.

PostgreSQL + pgvector implementation of :class:`RagStorage`. Every method
runs inside one transaction; lifecycle swaps lock the affected rows with
``SELECT ... FOR UPDATE`` and partial unique indexes back the one-ready and
one-pending invariants at the database level.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, literal_column, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import (
    DuplicateKeyError,
    EntryNotFoundError,
    InvalidStateError,
    NamespaceNotFoundError,
    OutOfOrderError,
)
from ..db.models import ChunkRecord, EntryRecord, NamespaceRecord
from ..db.session import get_session_factory
from ..rag.models import (
    Chunk,
    ChunkContent,
    ChunkInput,
    Entry,
    EntryInput,
    FilterValue,
    Namespace,
    NamespaceConfig,
    Status,
    utcnow,
)
from .base import ChunkHit, RagStorage

logger = logging.getLogger("rag.storage")

_TS_CONFIG = literal_column("'english'::regconfig")


# ---------------------------------------------------------------------
# Record Conversion
# ---------------------------------------------------------------------

def _to_namespace(rec: NamespaceRecord) -> Namespace:
    return Namespace(
        namespace_id=rec.namespace_id,
        namespace=rec.namespace,
        model_id=rec.model_id,
        dimension=rec.dimension,
        filter_names=list(rec.filter_names or []),
        status=Status(rec.status),
        version=rec.version,
        created_at=rec.created_at,
        seq=rec.seq,
    )


def _to_entry(rec: EntryRecord) -> Entry:
    return Entry(
        entry_id=rec.entry_id,
        namespace_id=rec.namespace_id,
        key=rec.key,
        title=rec.title,
        content_hash=rec.content_hash,
        filter_values=[FilterValue(**fv) for fv in (rec.filter_values or [])],
        importance=rec.importance,
        metadata=rec.metadata_,
        status=Status(rec.status),
        chunker=rec.chunker,
        created_at=rec.created_at,
        seq=rec.seq,
    )


def _to_chunk(rec: ChunkRecord) -> Chunk:
    return Chunk(
        entry_id=rec.entry_id,
        order=rec.chunk_order,
        content=ChunkContent(text=rec.content_text, metadata=rec.metadata_),
        embedding=[float(x) for x in rec.embedding],
        searchable_text=rec.searchable_text,
    )


def _config_clauses(config: NamespaceConfig) -> list:
    return [
        NamespaceRecord.namespace == config.namespace,
        NamespaceRecord.model_id == config.model_id,
        NamespaceRecord.dimension == config.dimension,
        NamespaceRecord.filter_names == list(config.filter_names),
    ]


def _filter_clauses(filters: Sequence[FilterValue]) -> list:
    # JSONB containment: the entry's list holds this exact {name, value} pair
    return [
        EntryRecord.filter_values.contains([f.model_dump(mode="json")])
        for f in filters
    ]


class SqlRagStorage(RagStorage):
    """
    PostgreSQL-backed RAG storage using pgvector for similarity search.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        """
        Initialize with an async session factory.

        Parameters
        ----------
        session_factory : Optional[async_sessionmaker]
            Factory producing sessions bound to the target database.
            Defaults to the application-wide factory.
        """
        self._session_factory = session_factory or get_session_factory()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _lock_entry(session: AsyncSession, entry_id: str) -> EntryRecord:
        rec = await session.scalar(
            select(EntryRecord)
            .where(EntryRecord.entry_id == entry_id)
            .with_for_update()
        )
        if rec is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found.")
        return rec

    @staticmethod
    async def _lock_pending_entry(session: AsyncSession, entry_id: str) -> EntryRecord:
        rec = await SqlRagStorage._lock_entry(session, entry_id)
        if rec.status != Status.PENDING.value:
            raise InvalidStateError(
                f"Entry {entry_id} is {rec.status}; chunks can only change while pending."
            )
        return rec

    @staticmethod
    async def _lock_live_namespace(session: AsyncSession, rec: EntryRecord) -> None:
        # Shared lock: a concurrent namespace promotion waits for this write
        status = await session.scalar(
            select(NamespaceRecord.status)
            .where(NamespaceRecord.namespace_id == rec.namespace_id)
            .with_for_update(read=True)
        )
        if status is None:
            raise NamespaceNotFoundError(f"Namespace {rec.namespace_id} not found.")
        if status == Status.REPLACED.value:
            raise InvalidStateError(
                f"Namespace {rec.namespace_id} was replaced; entry {rec.entry_id} can no longer change."
            )

    @staticmethod
    async def _chunk_count(session: AsyncSession, entry_id: str) -> int:
        count = await session.scalar(
            select(func.count())
            .select_from(ChunkRecord)
            .where(ChunkRecord.entry_id == entry_id)
        )
        return int(count or 0)

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def create_pending_namespace(self, config: NamespaceConfig) -> Namespace:
        try:
            async with self._session_factory() as session, session.begin():
                existing = (
                    await session.scalars(
                        select(NamespaceRecord)
                        .where(*_config_clauses(config))
                        .order_by(NamespaceRecord.seq.desc())
                    )
                ).all()

                for rec in existing:
                    if rec.status == Status.PENDING.value:
                        return _to_namespace(rec)

                rec = NamespaceRecord(
                    namespace_id=uuid.uuid4().hex,
                    namespace=config.namespace,
                    model_id=config.model_id,
                    dimension=config.dimension,
                    filter_names=list(config.filter_names),
                    status=Status.PENDING.value,
                    version=max((r.version for r in existing), default=0) + 1,
                    created_at=utcnow(),
                )
                session.add(rec)
                await session.flush()
                return _to_namespace(rec)
        except IntegrityError:
            # A concurrent caller created the pending version first
            found = await self.find_namespaces(config, [Status.PENDING])
            if found:
                return found[0]
            raise

    async def get_namespace(self, namespace_id: str) -> Optional[Namespace]:
        async with self._session_factory() as session:
            rec = await session.scalar(
                select(NamespaceRecord).where(NamespaceRecord.namespace_id == namespace_id)
            )
            return _to_namespace(rec) if rec is not None else None

    async def find_namespaces(
        self,
        config: NamespaceConfig,
        statuses: Sequence[Status],
    ) -> List[Namespace]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(NamespaceRecord)
                .where(
                    *_config_clauses(config),
                    NamespaceRecord.status.in_([s.value for s in statuses]),
                )
                .order_by(NamespaceRecord.seq.desc())
            )
            return [_to_namespace(rec) for rec in result.all()]

    async def list_namespaces(
        self,
        status: Status,
        after_seq: Optional[int],
        limit: int,
    ) -> List[Namespace]:
        stmt = select(NamespaceRecord).where(NamespaceRecord.status == status.value)
        if after_seq is not None:
            stmt = stmt.where(NamespaceRecord.seq > after_seq)
        stmt = stmt.order_by(NamespaceRecord.seq).limit(limit)

        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_to_namespace(rec) for rec in result.all()]

    async def promote_namespace(
        self,
        namespace_id: str,
    ) -> Tuple[Namespace, Optional[Namespace]]:
        async with self._session_factory() as session, session.begin():
            rec = await session.scalar(
                select(NamespaceRecord)
                .where(NamespaceRecord.namespace_id == namespace_id)
                .with_for_update()
            )
            if rec is None:
                raise NamespaceNotFoundError(f"Namespace {namespace_id} not found.")
            if rec.status == Status.READY.value:
                return _to_namespace(rec), None
            if rec.status == Status.REPLACED.value:
                raise InvalidStateError(
                    f"Namespace {namespace_id} was replaced and cannot be promoted."
                )

            old = await session.scalar(
                select(NamespaceRecord)
                .where(
                    *_config_clauses(_to_namespace(rec).to_config()),
                    NamespaceRecord.status == Status.READY.value,
                )
                .with_for_update()
            )

            replaced: Optional[Namespace] = None
            if old is not None:
                old.status = Status.REPLACED.value
                # Demotion must hit the table before the ready unique index is checked
                await session.flush()
                replaced = _to_namespace(old)

            rec.status = Status.READY.value
            await session.flush()
            return _to_namespace(rec), replaced

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def create_entry(
        self,
        namespace_id: str,
        entry: EntryInput,
        chunker: Optional[str] = None,
    ) -> Entry:
        try:
            async with self._session_factory() as session, session.begin():
                exists = await session.scalar(
                    select(NamespaceRecord.seq).where(NamespaceRecord.namespace_id == namespace_id)
                )
                if exists is None:
                    raise NamespaceNotFoundError(f"Namespace {namespace_id} not found.")

                if entry.key is not None:
                    pending = await session.scalar(
                        select(EntryRecord.entry_id).where(
                            EntryRecord.namespace_id == namespace_id,
                            EntryRecord.key == entry.key,
                            EntryRecord.status == Status.PENDING.value,
                        )
                    )
                    if pending is not None:
                        raise DuplicateKeyError(
                            f"Key {entry.key!r} already has pending entry {pending}."
                        )

                rec = EntryRecord(
                    entry_id=uuid.uuid4().hex,
                    namespace_id=namespace_id,
                    key=entry.key,
                    title=entry.title,
                    content_hash=entry.content_hash,
                    filter_values=[fv.model_dump(mode="json") for fv in entry.filter_values],
                    importance=entry.importance,
                    metadata_=entry.metadata,
                    status=Status.PENDING.value,
                    chunker=chunker,
                    created_at=utcnow(),
                )
                session.add(rec)
                await session.flush()
                return _to_entry(rec)
        except IntegrityError as exc:
            raise DuplicateKeyError(
                f"Key {entry.key!r} already has a pending entry."
            ) from exc

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        async with self._session_factory() as session:
            rec = await session.scalar(
                select(EntryRecord).where(EntryRecord.entry_id == entry_id)
            )
            return _to_entry(rec) if rec is not None else None

    async def find_entries(
        self,
        namespace_id: str,
        key: Optional[str],
        statuses: Sequence[Status],
    ) -> List[Entry]:
        key_clause = EntryRecord.key.is_(None) if key is None else EntryRecord.key == key

        async with self._session_factory() as session:
            result = await session.scalars(
                select(EntryRecord)
                .where(
                    EntryRecord.namespace_id == namespace_id,
                    key_clause,
                    EntryRecord.status.in_([s.value for s in statuses]),
                )
                .order_by(EntryRecord.seq.desc())
            )
            return [_to_entry(rec) for rec in result.all()]

    async def list_entries(
        self,
        namespace_id: str,
        status: Status,
        descending: bool,
        after_seq: Optional[int],
        limit: int,
        created_before: Optional[datetime] = None,
    ) -> List[Entry]:
        stmt = select(EntryRecord).where(
            EntryRecord.namespace_id == namespace_id,
            EntryRecord.status == status.value,
        )
        if created_before is not None:
            stmt = stmt.where(EntryRecord.created_at < created_before)
        if after_seq is not None:
            stmt = stmt.where(
                EntryRecord.seq < after_seq if descending else EntryRecord.seq > after_seq
            )
        stmt = stmt.order_by(
            EntryRecord.seq.desc() if descending else EntryRecord.seq
        ).limit(limit)

        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_to_entry(rec) for rec in result.all()]

    async def promote_entry(self, entry_id: str) -> Tuple[Entry, Optional[Entry]]:
        async with self._session_factory() as session, session.begin():
            rec = await self._lock_entry(session, entry_id)
            if rec.status == Status.READY.value:
                return _to_entry(rec), None
            if rec.status == Status.REPLACED.value:
                raise InvalidStateError(
                    f"Entry {entry_id} was replaced and cannot be promoted."
                )
            await self._lock_live_namespace(session, rec)

            replaced: Optional[Entry] = None
            if rec.key is not None:
                old = await session.scalar(
                    select(EntryRecord)
                    .where(
                        EntryRecord.namespace_id == rec.namespace_id,
                        EntryRecord.key == rec.key,
                        EntryRecord.status == Status.READY.value,
                    )
                    .with_for_update()
                )
                if old is not None:
                    old.status = Status.REPLACED.value
                    await session.flush()
                    replaced = _to_entry(old)

            rec.status = Status.READY.value
            await session.flush()
            return _to_entry(rec), replaced

    async def remove_entry(self, entry_id: str) -> Optional[Entry]:
        async with self._session_factory() as session, session.begin():
            rec = await session.scalar(
                select(EntryRecord)
                .where(EntryRecord.entry_id == entry_id)
                .with_for_update()
            )
            if rec is None:
                return None

            removed = _to_entry(rec)
            await session.delete(rec)
            return removed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(
        self,
        entry_id: str,
        start_order: int,
        chunks: Sequence[ChunkInput],
    ) -> Entry:
        try:
            async with self._session_factory() as session, session.begin():
                rec = await self._lock_pending_entry(session, entry_id)
                await self._lock_live_namespace(session, rec)
                count = await self._chunk_count(session, entry_id)

                if start_order != count:
                    raise OutOfOrderError(
                        f"Entry {entry_id} has {count} chunks; "
                        f"cannot insert at order {start_order}."
                    )

                for offset, item in enumerate(chunks):
                    session.add(
                        ChunkRecord(
                            entry_id=entry_id,
                            namespace_id=rec.namespace_id,
                            chunk_order=start_order + offset,
                            content_text=item.content.text,
                            metadata_=item.content.metadata,
                            searchable_text=item.searchable_text,
                            embedding=list(item.embedding),
                        )
                    )

                await session.flush()
                return _to_entry(rec)
        except IntegrityError as exc:
            raise OutOfOrderError(
                f"Concurrent chunk write detected for entry {entry_id}."
            ) from exc

    async def count_chunks(self, entry_id: str) -> int:
        async with self._session_factory() as session:
            return await self._chunk_count(session, entry_id)

    async def list_chunks(
        self,
        entry_id: str,
        after_order: Optional[int],
        limit: int,
    ) -> List[Chunk]:
        stmt = select(ChunkRecord).where(ChunkRecord.entry_id == entry_id)
        if after_order is not None:
            stmt = stmt.where(ChunkRecord.chunk_order > after_order)
        stmt = stmt.order_by(ChunkRecord.chunk_order).limit(limit)

        async with self._session_factory() as session:
            result = await session.scalars(stmt)
            return [_to_chunk(rec) for rec in result.all()]

    async def get_chunk_window(
        self,
        entry_id: str,
        first_order: int,
        last_order: int,
    ) -> List[Chunk]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(ChunkRecord)
                .where(
                    ChunkRecord.entry_id == entry_id,
                    ChunkRecord.chunk_order >= first_order,
                    ChunkRecord.chunk_order <= last_order,
                )
                .order_by(ChunkRecord.chunk_order)
            )
            return [_to_chunk(rec) for rec in result.all()]

    async def truncate_chunks(
        self,
        entry_id: str,
        start_order: int,
        limit: int,
    ) -> Tuple[Entry, int]:
        async with self._session_factory() as session, session.begin():
            rec = await self._lock_pending_entry(session, entry_id)
            await self._lock_live_namespace(session, rec)
            count = await self._chunk_count(session, entry_id)

            if start_order < 0 or start_order > count:
                raise OutOfOrderError(
                    f"Entry {entry_id} has {count} chunks; cannot truncate from order {start_order}."
                )

            stop = max(start_order, count - limit)
            await session.execute(
                delete(ChunkRecord).where(
                    ChunkRecord.entry_id == entry_id,
                    ChunkRecord.chunk_order >= stop,
                )
            )
            return _to_entry(rec), stop

    async def purge_chunks(self, entry_id: str, start_order: int, limit: int) -> int:
        async with self._session_factory() as session, session.begin():
            count = await self._chunk_count(session, entry_id)
            stop = max(start_order, count - limit)

            result = await session.execute(
                delete(ChunkRecord).where(
                    ChunkRecord.entry_id == entry_id,
                    ChunkRecord.chunk_order >= stop,
                )
            )
            return int(result.rowcount or 0)

    async def vector_search(
        self,
        namespace_id: str,
        embedding: Sequence[float],
        filters: Sequence[FilterValue],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[ChunkHit]:
        # Cosine similarity via pgvector's <=> operator
        cosine_distance = ChunkRecord.embedding.cosine_distance(list(embedding))
        score = (1 - cosine_distance).label("score")

        stmt = (
            select(ChunkRecord, EntryRecord, score)
            .join(EntryRecord, EntryRecord.entry_id == ChunkRecord.entry_id)
            .where(
                ChunkRecord.namespace_id == namespace_id,
                EntryRecord.status == Status.READY.value,
                *_filter_clauses(filters),
            )
        )
        if score_threshold is not None:
            stmt = stmt.where((1 - cosine_distance) >= score_threshold)

        stmt = stmt.order_by(
            cosine_distance,
            EntryRecord.importance.desc(),
            ChunkRecord.chunk_order,
            EntryRecord.seq,
        ).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [(_to_chunk(c), _to_entry(e), float(s)) for c, e, s in rows]

    async def text_search(
        self,
        namespace_id: str,
        query: str,
        filters: Sequence[FilterValue],
        limit: int,
    ) -> List[ChunkHit]:
        if not query.strip():
            return []

        document = func.to_tsvector(
            _TS_CONFIG,
            func.coalesce(ChunkRecord.searchable_text, ChunkRecord.content_text),
        )
        tsquery = func.plainto_tsquery(_TS_CONFIG, query)
        rank = func.ts_rank(document, tsquery).label("score")

        stmt = (
            select(ChunkRecord, EntryRecord, rank)
            .join(EntryRecord, EntryRecord.entry_id == ChunkRecord.entry_id)
            .where(
                ChunkRecord.namespace_id == namespace_id,
                EntryRecord.status == Status.READY.value,
                document.op("@@")(tsquery),
                *_filter_clauses(filters),
            )
            .order_by(
                rank.desc(),
                EntryRecord.importance.desc(),
                ChunkRecord.chunk_order,
            )
            .limit(limit)
        )

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [(_to_chunk(c), _to_entry(e), float(s)) for c, e, s in rows]
