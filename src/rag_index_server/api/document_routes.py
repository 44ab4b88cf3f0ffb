"""
Document Routes

Raw-text ingestion: the server hashes, splits and embeds documents itself.
Unchanged documents (same key and content hash as a ready entry) are
skipped without any embedding call.
"""

from fastapi import APIRouter, Depends
from typing import Annotated

from .models import IndexDocumentRequest, BatchIndexRequest
from .dependencies import get_indexer
from ..rag.indexer import BatchIndexSummary, DocumentIndexer, IndexResult
from ..rag.models import AddAsyncResult

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post(
    "/index",
    response_model=IndexResult,
    summary="Index one document synchronously",
)
async def index_document(
    req: IndexDocumentRequest,
    indexer: Annotated[DocumentIndexer, Depends(get_indexer)],
) -> IndexResult:
    return await indexer.index_document(req.config, req.document, namespace_id=req.namespace_id)


@router.post(
    "/index-async",
    response_model=AddAsyncResult,
    summary="Queue one document for background indexing",
)
async def index_document_async(
    req: IndexDocumentRequest,
    indexer: Annotated[DocumentIndexer, Depends(get_indexer)],
) -> AddAsyncResult:
    return await indexer.index_document_async(
        req.config,
        req.document,
        namespace_id=req.namespace_id,
    )


@router.post(
    "/batch",
    response_model=BatchIndexSummary,
    summary="Index many documents, isolating failures per document",
)
async def index_batch(
    req: BatchIndexRequest,
    indexer: Annotated[DocumentIndexer, Depends(get_indexer)],
) -> BatchIndexSummary:
    return await indexer.index_many(req.config, req.documents, namespace_id=req.namespace_id)
