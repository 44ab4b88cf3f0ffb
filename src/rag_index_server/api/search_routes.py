"""
Search Routes

This module defines the query endpoints over ready namespaces:
- Vector search with optional chunk-context expansion
- Keyword search
- Hybrid (keyword + vector) search

Vector-backed routes accept a precomputed embedding or a query string that
is embedded server-side.
"""

from fastapi import APIRouter, Depends, status
from typing import List, Annotated

from .models import SearchRequest, TextSearchRequest, HybridSearchRequest
from .dependencies import get_engine, get_embedder
from ..embeddings.embedder import Embedder
from ..rag.engine import RagEngine
from ..rag.models import RankedEntry, SearchResponse

router = APIRouter(prefix="/search", tags=["search"])


@router.post(
    "/",
    response_model=SearchResponse,
    summary="Vector search with chunk context",
    status_code=status.HTTP_200_OK,
)
async def search(
    req: SearchRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
    embedder: Annotated[Embedder, Depends(get_embedder)],
) -> SearchResponse:
    """
    Perform a vector search over the ready namespace of ``req.config``.

    Parameters
    ----------
    req : SearchRequest
        Contains:
        - config: namespace configuration to search
        - embedding or query: the query vector, or text to embed
        - filters, limit, chunk_context, vector_score_threshold

    Returns
    -------
    SearchResponse
        Ranked hits with their context, plus the matched entries.
    """
    embedding = req.embedding
    if embedding is None:
        embedding = await embedder.embed_query(req.query)

    return await engine.search.search(
        req.config,
        embedding,
        filters=req.filters,
        limit=req.limit,
        chunk_context=req.chunk_context,
        vector_score_threshold=req.vector_score_threshold,
    )


@router.post(
    "/text",
    response_model=List[RankedEntry],
    summary="Keyword search",
)
async def text_search(
    req: TextSearchRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> List[RankedEntry]:
    return await engine.search.text_search(
        req.config,
        req.query,
        filters=req.filters,
        limit=req.limit,
    )


@router.post(
    "/hybrid",
    response_model=List[RankedEntry],
    summary="Hybrid keyword and vector search",
)
async def hybrid_search(
    req: HybridSearchRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
    embedder: Annotated[Embedder, Depends(get_embedder)],
) -> List[RankedEntry]:
    """
    Run keyword and vector search in parallel and merge them by rank
    position. ``score`` in the response is the merged positional score.
    """
    embedding = req.embedding
    if embedding is None:
        embedding = await embedder.embed_query(req.query)

    return await engine.search.hybrid_search(
        req.config,
        req.query,
        embedding,
        filters=req.filters,
        limit=req.limit,
        semantic_weight=req.semantic_weight,
    )
