"""
Namespace Routes

Resolution, creation and promotion of versioned index configurations.
"""

from fastapi import APIRouter, Depends
from typing import Annotated, Optional

from .models import GetOrCreateNamespaceRequest, ListNamespacesRequest, LookupResponse
from .dependencies import get_engine
from ..rag.engine import RagEngine
from ..rag.models import (
    GetOrCreateResult,
    Namespace,
    NamespaceConfig,
    PromoteNamespaceResult,
    Status,
)
from ..rag.pagination import PaginationResult

router = APIRouter(prefix="/namespaces", tags=["namespaces"])


@router.post(
    "/get",
    response_model=Optional[Namespace],
    summary="Get the ready namespace for a configuration",
)
async def get_namespace(
    config: NamespaceConfig,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> Optional[Namespace]:
    return await engine.namespaces.get(config)


@router.post(
    "/lookup",
    response_model=LookupResponse,
    summary="Resolve the ready namespace ID for a configuration",
)
async def lookup_namespace(
    config: NamespaceConfig,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> LookupResponse:
    return LookupResponse(namespace_id=await engine.namespaces.lookup(config))


@router.post(
    "/get-or-create",
    response_model=GetOrCreateResult,
    summary="Get or create a namespace for a configuration",
)
async def get_or_create_namespace(
    req: GetOrCreateNamespaceRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> GetOrCreateResult:
    return await engine.namespaces.get_or_create(req.config, Status(req.status))


@router.post(
    "/start-rebuild",
    response_model=GetOrCreateResult,
    summary="Get or create the pending version of a configuration",
)
async def start_rebuild(
    config: NamespaceConfig,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> GetOrCreateResult:
    return await engine.namespaces.start_rebuild(config)


@router.post(
    "/list",
    response_model=PaginationResult[Namespace],
    summary="List namespaces by status",
)
async def list_namespaces(
    req: ListNamespacesRequest,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> PaginationResult[Namespace]:
    return await engine.namespaces.list(req.status, req.pagination)


@router.post(
    "/{namespace_id}/promote",
    response_model=PromoteNamespaceResult,
    summary="Promote a pending namespace to ready",
)
async def promote_namespace(
    namespace_id: str,
    engine: Annotated[RagEngine, Depends(get_engine)],
) -> PromoteNamespaceResult:
    return await engine.namespaces.promote_to_ready(namespace_id)
