"""
Document Indexer

Turns raw documents into ready entries:

    hash -> resolve namespace -> dedup -> split -> embed -> add

The content hash is checked before the text is split, so re-indexing an
unchanged document makes no embedding calls at all. Batch runs isolate
failures per document: one bad item is logged and counted, and the run
moves on.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..config import settings
from ..core.errors import EntryNotFoundError
from ..embeddings.chunking import TextChunker
from ..embeddings.embedder import Embedder
from ..embeddings.queue import IngestJob
from .engine import RagEngine
from .hashing import ContentHasher
from .models import (
    AddAsyncResult,
    ChunkContent,
    ChunkInput,
    EntryInput,
    FilterValue,
    NamespaceConfig,
    Status,
)

logger = logging.getLogger("rag.indexer")


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class IndexDocument(BaseModel):
    key: str = Field(..., min_length=1)
    text: str
    title: Optional[str] = None
    filter_values: List[FilterValue] = Field(default_factory=list)
    importance: float = Field(default=1.0, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None

    def to_entry_input(self, content_hash: str) -> EntryInput:
        return EntryInput(
            key=self.key,
            title=self.title,
            content_hash=content_hash,
            filter_values=self.filter_values,
            importance=self.importance,
            metadata=self.metadata,
        )


class IndexResult(BaseModel):
    entry_id: str
    created: bool
    status: Status
    chunk_count: int = 0


class BatchIndexSummary(BaseModel):
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    # document key -> error message
    errors: Dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------

class DocumentIndexer:
    """
    Orchestrates hashing, splitting and embedding on top of a RagEngine.
    """

    def __init__(
        self,
        engine: RagEngine,
        embedder: Embedder,
        chunker: Optional[TextChunker] = None,
        hasher: Optional[ContentHasher] = None,
    ) -> None:
        self.engine = engine
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.hasher = hasher or ContentHasher()

    async def _target(self, config: NamespaceConfig, namespace_id: Optional[str]) -> str:
        if namespace_id is not None:
            return namespace_id
        return (await self.engine.namespaces.get_or_create(config)).namespace_id

    async def _embed_chunks(self, pieces: Sequence[str]) -> List[ChunkInput]:
        if not pieces:
            return []
        embeddings = await self.embedder.embed(pieces)
        return [
            ChunkInput(content=ChunkContent(text=piece), embedding=embedding)
            for piece, embedding in zip(pieces, embeddings)
        ]

    async def index_document(
        self,
        config: NamespaceConfig,
        document: IndexDocument,
        namespace_id: Optional[str] = None,
    ) -> IndexResult:
        """
        Index one document synchronously.

        Parameters
        ----------
        config : NamespaceConfig
            Configuration of the target index.
        document : IndexDocument
            The document to index.
        namespace_id : Optional[str]
            Explicit target, e.g. the pending namespace of a rebuild. Defaults
            to the ready (or pending) namespace of ``config``.

        Returns
        -------
        IndexResult
            ``created`` is False when the document was unchanged.
        """
        namespace_id = await self._target(config, namespace_id)
        content_hash = self.hasher.hash(document.text)

        existing = await self.engine.entries.find_ready_duplicate(
            namespace_id, document.key, content_hash
        )
        if existing is not None:
            logger.debug("Document %r unchanged, skipping", document.key)
            return IndexResult(entry_id=existing.entry_id, created=False, status=existing.status)

        chunks = await self._embed_chunks(self.chunker.split(document.text))
        result = await self.engine.entries.add(
            namespace_id,
            document.to_entry_input(content_hash),
            chunks,
        )

        return IndexResult(
            entry_id=result.entry_id,
            created=result.created,
            status=result.status,
            chunk_count=len(chunks),
        )

    async def index_document_async(
        self,
        config: NamespaceConfig,
        document: IndexDocument,
        namespace_id: Optional[str] = None,
    ) -> AddAsyncResult:
        """
        Create a pending entry and hand the chunk work to the background queue.
        """
        namespace_id = await self._target(config, namespace_id)
        content_hash = self.hasher.hash(document.text)

        result = await self.engine.entries.add_async(
            namespace_id,
            document.to_entry_input(content_hash),
            chunker=self.chunker.chunker_id,
        )
        if result.created:
            await self.engine.queue.enqueue(
                IngestJob(
                    entry_id=result.entry_id,
                    text=document.text,
                    chunker=self.chunker.chunker_id,
                )
            )
        return result

    async def stream_entry(
        self,
        entry_id: str,
        text: str,
        chunker: Optional[str] = None,
    ) -> int:
        """
        Split, embed and insert a pending entry's chunks, then promote it.

        Chunks already stored are kept, so a retried job continues where the
        previous attempt stopped. Returns the number of chunks inserted.
        """
        entry = await self.engine.entries.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id} not found.")
        if entry.status != Status.PENDING:
            logger.debug("Entry %s is already %s, nothing to stream", entry_id, entry.status.value)
            return 0

        splitter = TextChunker.from_id(chunker or entry.chunker)
        pieces = splitter.split(text)
        start = await self.engine.storage.count_chunks(entry_id)
        batch_size = settings.embedding_batch_size

        inserted = 0
        for offset in range(start, len(pieces), batch_size):
            chunks = await self._embed_chunks(pieces[offset : offset + batch_size])
            await self.engine.chunks.insert(entry_id, chunks, offset)
            inserted += len(chunks)

        await self.engine.entries.promote_to_ready(entry_id)
        logger.info("Streamed %d chunks into entry %s", inserted, entry_id)
        return inserted

    async def index_many(
        self,
        config: NamespaceConfig,
        documents: Sequence[IndexDocument],
        namespace_id: Optional[str] = None,
    ) -> BatchIndexSummary:
        """
        Index documents one by one, isolating failures per document.
        """
        namespace_id = await self._target(config, namespace_id)
        summary = BatchIndexSummary()

        for document in documents:
            try:
                result = await self.index_document(config, document, namespace_id=namespace_id)
            except Exception as exc:
                logger.exception("Failed to index document %r", document.key)
                summary.failed += 1
                summary.errors[document.key] = str(exc)
                continue

            if result.created:
                summary.indexed += 1
            else:
                summary.skipped += 1

        logger.info(
            "Batch into %s done: %d indexed, %d skipped, %d failed",
            namespace_id,
            summary.indexed,
            summary.skipped,
            summary.failed,
        )
        return summary
