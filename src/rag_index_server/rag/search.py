"""
Search Engine

Query side of the engine. All searches resolve the ready namespace of a
configuration first and only ever read ready entries, so a namespace or
entry that is still being rebuilt is never visible to readers.

Operations
----------
- ``search``         vector search with optional chunk-context expansion
- ``text_search``    keyword search, one result per entry
- ``hybrid_search``  keyword and vector search run concurrently, merged by
                     HybridRanker
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..core.errors import DimensionMismatchError, NamespaceNotFoundError
from ..storage.base import ChunkHit, RagStorage
from .entries import check_filters
from .hybrid import HybridRanker
from .models import (
    ChunkContext,
    Entry,
    FilterValue,
    Namespace,
    NamespaceConfig,
    RankedEntry,
    SearchResponse,
    SearchResultRow,
)
from .namespaces import NamespaceManager

logger = logging.getLogger("rag.search")

# Chunk hits fetched per requested entry when results are grouped by entry
CHUNKS_PER_ENTRY = 5


def _rank_key(hit: ChunkHit) -> Tuple[float, float, int]:
    chunk, entry, score = hit
    return (-score, -entry.importance, chunk.order)


def _collapse(hits: Sequence[ChunkHit], limit: int) -> List[RankedEntry]:
    """Keep each entry's best hit, preserving rank order."""
    ranked: List[RankedEntry] = []
    seen: Set[str] = set()

    for _, entry, score in sorted(hits, key=_rank_key):
        if entry.entry_id in seen:
            continue
        seen.add(entry.entry_id)
        ranked.append(RankedEntry(entry=entry, score=score))
        if len(ranked) >= limit:
            break

    return ranked


class SearchEngine:
    def __init__(self, storage: RagStorage, namespaces: NamespaceManager) -> None:
        self._storage = storage
        self._namespaces = namespaces

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        config: NamespaceConfig,
        filters: Sequence[FilterValue],
        embedding: Optional[Sequence[float]] = None,
    ) -> Namespace:
        namespace = await self._namespaces.get(config)
        if namespace is None:
            raise NamespaceNotFoundError(
                f"No ready namespace for {config.namespace!r} "
                f"(model={config.model_id}, dimension={config.dimension})."
            )

        if embedding is not None and len(embedding) != namespace.dimension:
            raise DimensionMismatchError(
                f"Query embedding has dimension {len(embedding)}; "
                f"namespace {namespace.namespace_id} expects {namespace.dimension}."
            )

        check_filters(namespace, filters)
        return namespace

    async def _expand(
        self,
        hits: Sequence[ChunkHit],
        chunk_context: Optional[ChunkContext],
    ) -> List[SearchResultRow]:
        """
        Attach surrounding chunks to each hit.

        Hits are handled in rank order. A context window grows outward from
        its hit and stops at another hit or at a chunk an earlier window
        already emitted, so every row is contiguous and no chunk appears twice.
        """
        before = chunk_context.before if chunk_context else 0
        after = chunk_context.after if chunk_context else 0

        hit_positions = {(chunk.entry_id, chunk.order) for chunk, _, _ in hits}
        emitted: Set[Tuple[str, int]] = set()
        rows: List[SearchResultRow] = []

        for chunk, entry, score in hits:
            entry_id = entry.entry_id

            def taken(order: int) -> bool:
                return (entry_id, order) in hit_positions or (entry_id, order) in emitted

            first = chunk.order
            while first > 0 and first > chunk.order - before and not taken(first - 1):
                first -= 1

            last = chunk.order
            while last < chunk.order + after and not taken(last + 1):
                last += 1

            if first == last == chunk.order:
                window = [chunk]
            else:
                # The tail of an entry simply yields a shorter window
                window = await self._storage.get_chunk_window(entry_id, first, last) or [chunk]

            emitted.update((entry_id, c.order) for c in window)
            rows.append(
                SearchResultRow(
                    entry_id=entry_id,
                    order=chunk.order,
                    score=score,
                    start_order=window[0].order,
                    content=[c.content for c in window],
                )
            )

        return rows

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        config: NamespaceConfig,
        embedding: Sequence[float],
        filters: Optional[Sequence[FilterValue]] = None,
        limit: int = 10,
        chunk_context: Optional[ChunkContext] = None,
        vector_score_threshold: Optional[float] = None,
    ) -> SearchResponse:
        """
        Vector search over the ready namespace of ``config``.

        Parameters
        ----------
        config : NamespaceConfig
            Configuration whose ready version is searched.
        embedding : Sequence[float]
            Query vector; must match the namespace dimension.
        filters : Optional[Sequence[FilterValue]]
            Every pair must appear in a matching entry's filter values.
        limit : int
            Maximum number of chunk hits.
        chunk_context : Optional[ChunkContext]
            Number of neighbouring chunks to attach before and after each hit.
        vector_score_threshold : Optional[float]
            Drop hits with a cosine similarity below this value.

        Returns
        -------
        SearchResponse
            One row per hit, best first, and the matched entries in
            first-appearance order.

        Raises
        ------
        NamespaceNotFoundError
            If the configuration has no ready namespace.
        DimensionMismatchError, InvalidFilterError
            If the query does not fit the namespace.
        """
        filters = list(filters or [])
        namespace = await self._resolve(config, filters, embedding)

        hits = await self._storage.vector_search(
            namespace.namespace_id,
            embedding,
            filters,
            limit,
            score_threshold=vector_score_threshold,
        )
        hits = sorted(hits, key=_rank_key)[:limit]

        results = await self._expand(hits, chunk_context)

        entries: Dict[str, Entry] = {}
        for _, entry, _ in hits:
            entries.setdefault(entry.entry_id, entry)

        logger.debug(
            "Vector search in %s returned %d hits from %d entries",
            namespace.namespace_id,
            len(results),
            len(entries),
        )
        return SearchResponse(results=results, entries=list(entries.values()))

    async def text_search(
        self,
        config: NamespaceConfig,
        query: str,
        filters: Optional[Sequence[FilterValue]] = None,
        limit: int = 10,
    ) -> List[RankedEntry]:
        """Keyword search, one result per entry with its best chunk score."""
        filters = list(filters or [])
        namespace = await self._resolve(config, filters)
        return await self._text_entries(namespace, query, filters, limit)

    async def hybrid_search(
        self,
        config: NamespaceConfig,
        query: str,
        embedding: Sequence[float],
        filters: Optional[Sequence[FilterValue]] = None,
        limit: int = 20,
        semantic_weight: float = 0.5,
    ) -> List[RankedEntry]:
        """
        Run keyword and vector search concurrently and merge them by position.

        The returned score is the merged positional score, not a similarity.

        Raises
        ------
        InvalidWeightError
            If ``semantic_weight`` is outside [0, 1].
        """
        ranker: HybridRanker[RankedEntry] = HybridRanker(
            semantic_weight,
            key=lambda ranked: ranked.entry.entry_id,
        )

        filters = list(filters or [])
        namespace = await self._resolve(config, filters, embedding)

        text_ranked, vector_ranked = await asyncio.gather(
            self._text_entries(namespace, query, filters, limit),
            self._vector_entries(namespace, embedding, filters, limit),
        )

        merged = ranker.score(text_ranked, vector_ranked, limit)
        logger.debug(
            "Hybrid search in %s: %d keyword, %d vector, %d merged",
            namespace.namespace_id,
            len(text_ranked),
            len(vector_ranked),
            len(merged),
        )
        return [RankedEntry(entry=ranked.entry, score=score) for ranked, score in merged]

    async def _text_entries(
        self,
        namespace: Namespace,
        query: str,
        filters: Sequence[FilterValue],
        limit: int,
    ) -> List[RankedEntry]:
        if not query.strip():
            return []
        hits = await self._storage.text_search(
            namespace.namespace_id, query, filters, limit * CHUNKS_PER_ENTRY
        )
        return _collapse(hits, limit)

    async def _vector_entries(
        self,
        namespace: Namespace,
        embedding: Sequence[float],
        filters: Sequence[FilterValue],
        limit: int,
    ) -> List[RankedEntry]:
        hits = await self._storage.vector_search(
            namespace.namespace_id, embedding, filters, limit * CHUNKS_PER_ENTRY
        )
        return _collapse(hits, limit)
