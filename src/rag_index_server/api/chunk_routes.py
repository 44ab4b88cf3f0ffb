"""
Chunk Routes

Ordered chunk writes and reads for a single entry. Inserts must append at
the entry's current chunk count; replacement removes pages from the tail.
"""

from fastapi import APIRouter, Depends
from typing import Annotated

from .models import InsertChunksRequest, ListChunksRequest, ReplaceChunksPageRequest
from .dependencies import get_engine
from ..rag.engine import RagEngine
from ..rag.models import Chunk, InsertChunksResult, ReplaceChunksResult
from ..rag.pagination import PaginationResult

router = APIRouter(prefix="/chunks", tags=["chunks"])


@router.post(
    "/insert",
    response_model=InsertChunksResult,
    summary="Append chunks to a pending entry",
)
async def insert_chunks(
    req: InsertChunksRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> InsertChunksResult:
    return await engine.chunks.insert(req.entry_id, req.chunks, req.start_order)


@router.post(
    "/list",
    response_model=PaginationResult[Chunk],
    summary="List an entry's chunks in order",
)
async def list_chunks(
    req: ListChunksRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> PaginationResult[Chunk]:
    return await engine.chunks.list(req.entry_id, req.pagination)


@router.post(
    "/replace-page",
    response_model=ReplaceChunksResult,
    summary="Delete one page of chunks from the tail of a pending entry",
)
async def replace_chunks_page(
    req: ReplaceChunksPageRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> ReplaceChunksResult:
    """
    Call repeatedly until ``is_done``, then insert from ``next_start_order``.
    """
    return await engine.chunks.replace_chunks_page(
        req.entry_id,
        req.start_order,
        page_size=req.page_size,
    )
