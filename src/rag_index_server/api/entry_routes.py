"""
Entry Routes

This module exposes the entry lifecycle:
- Synchronous add (all chunks at once, promoted immediately)
- Asynchronous add (pending entry, chunks streamed later)
- Promotion, lookup, listing and deletion
- Manual sweep of abandoned pending entries
"""

from datetime import timedelta
from fastapi import APIRouter, Depends
from typing import Annotated, Optional

from .models import (
    AddEntryRequest,
    AddEntryAsyncRequest,
    DeleteEntryRequest,
    FindByContentHashRequest,
    ListEntriesRequest,
    OperationResult,
    SweepRequest,
)
from .dependencies import get_engine
from ..core.errors import EntryNotFoundError
from ..rag.engine import RagEngine
from ..rag.models import (
    AddAsyncResult,
    AddEntryResult,
    Entry,
    PromoteEntryResult,
)
from ..rag.pagination import PaginationResult

router = APIRouter(prefix="/entries", tags=["entries"])


@router.post(
    "/add",
    response_model=AddEntryResult,
    summary="Add an entry with all of its chunks",
)
async def add_entry(
    req: AddEntryRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> AddEntryResult:
    """
    Create, fill and promote an entry in one call.

    When an entry with the same key and content hash is already ready, it is
    returned with ``created=False`` and nothing is written.
    """
    return await engine.entries.add(req.namespace_id, req.entry, req.all_chunks)


@router.post(
    "/add-async",
    response_model=AddAsyncResult,
    summary="Create a pending entry",
)
async def add_entry_async(
    req: AddEntryAsyncRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> AddAsyncResult:
    return await engine.entries.add_async(req.namespace_id, req.entry, chunker=req.chunker)


@router.post(
    "/find-by-content-hash",
    response_model=Optional[Entry],
    summary="Find a ready entry by key and content hash",
)
async def find_by_content_hash(
    req: FindByContentHashRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> Optional[Entry]:
    return await engine.entries.find_by_content_hash(req.config, req.key, req.content_hash)


@router.post(
    "/list",
    response_model=PaginationResult[Entry],
    summary="List entries of a namespace by status",
)
async def list_entries(
    req: ListEntriesRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> PaginationResult[Entry]:
    return await engine.entries.list(
        req.namespace_id,
        req.status,
        order=req.order,
        pagination=req.pagination,
    )


@router.post(
    "/sweep",
    response_model=OperationResult,
    summary="Delete stale pending entries",
)
async def sweep_stale_pending(
    req: SweepRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> OperationResult:
    older_than = (
        timedelta(seconds=req.older_than_seconds)
        if req.older_than_seconds is not None
        else None
    )
    count = await engine.entries.sweep_stale_pending(req.namespace_id, older_than)
    return OperationResult(status="scheduled", count=count)


@router.get(
    "/{entry_id}",
    response_model=Entry,
    summary="Get an entry",
)
async def get_entry(
    entry_id: str,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> Entry:
    entry = await engine.entries.get(entry_id)
    if entry is None:
        raise EntryNotFoundError(f"Entry {entry_id} not found.")
    return entry


@router.post(
    "/{entry_id}/promote",
    response_model=PromoteEntryResult,
    summary="Promote a pending entry to ready",
)
async def promote_entry(
    entry_id: str,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> PromoteEntryResult:
    return await engine.entries.promote_to_ready(entry_id)


@router.post(
    "/{entry_id}/delete-async",
    response_model=OperationResult,
    summary="Delete an entry and schedule its chunk purge",
)
async def delete_entry_async(
    entry_id: str,
    engine: Annotated[RagEngine, Depends(get_engine)],
    req: Optional[DeleteEntryRequest] = None,
) -> OperationResult:
    start_order = req.start_order if req is not None else 0
    await engine.entries.delete_async(entry_id, start_order=start_order)
    return OperationResult(status="scheduled")
