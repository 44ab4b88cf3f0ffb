"""
API Models for the RAG Index Server

This module defines the Pydantic request/response models for the chunk,
entry, namespace, search and document endpoints. Domain records
(Namespace, Entry, Chunk, ...) are returned as-is; the models here only
wrap operation arguments.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Unknown fields rejected
"""

from __future__ import annotations

from typing import List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, model_validator

from ..rag.indexer import IndexDocument
from ..rag.models import (
    ChunkContext,
    ChunkInput,
    EntryInput,
    FilterValue,
    NamespaceConfig,
    Status,
)
from ..rag.pagination import PaginationOpts


class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["scheduled", "ok"]
    count: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Chunk Models
# ---------------------------------------------------------------------

class InsertChunksRequest(BaseModel):
    entry_id: str = Field(..., min_length=1)
    start_order: int = Field(..., ge=0)
    chunks: List[ChunkInput]

    model_config = ConfigDict(extra="forbid")


class ListChunksRequest(BaseModel):
    entry_id: str = Field(..., min_length=1)
    pagination: PaginationOpts = Field(default_factory=PaginationOpts)

    model_config = ConfigDict(extra="forbid")


class ReplaceChunksPageRequest(BaseModel):
    entry_id: str = Field(..., min_length=1)
    start_order: int
    page_size: Optional[int] = Field(default=None, ge=1)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Entry Models
# ---------------------------------------------------------------------

class AddEntryRequest(BaseModel):
    namespace_id: str = Field(..., min_length=1)
    entry: EntryInput
    all_chunks: Optional[List[ChunkInput]] = None

    model_config = ConfigDict(extra="forbid")


class AddEntryAsyncRequest(BaseModel):
    namespace_id: str = Field(..., min_length=1)
    entry: EntryInput
    chunker: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class DeleteEntryRequest(BaseModel):
    start_order: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="forbid")


class FindByContentHashRequest(BaseModel):
    config: NamespaceConfig
    key: str = Field(..., min_length=1)
    content_hash: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class ListEntriesRequest(BaseModel):
    namespace_id: str = Field(..., min_length=1)
    status: Status
    order: Literal["asc", "desc"] = "asc"
    pagination: PaginationOpts = Field(default_factory=PaginationOpts)

    model_config = ConfigDict(extra="forbid")


class SweepRequest(BaseModel):
    """
    Delete pending entries older than ``older_than_seconds``; the server
    default applies when omitted.
    """
    namespace_id: str = Field(..., min_length=1)
    older_than_seconds: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Namespace Models
# ---------------------------------------------------------------------

class GetOrCreateNamespaceRequest(BaseModel):
    config: NamespaceConfig
    status: Literal["pending", "ready"] = "pending"

    model_config = ConfigDict(extra="forbid")


class ListNamespacesRequest(BaseModel):
    status: Status
    pagination: PaginationOpts = Field(default_factory=PaginationOpts)

    model_config = ConfigDict(extra="forbid")


class LookupResponse(BaseModel):
    namespace_id: Optional[str] = None


# ---------------------------------------------------------------------
# Search Models
# ---------------------------------------------------------------------

class SearchRequest(BaseModel):
    """
    Vector search request. Supply either a precomputed ``embedding`` or a
    ``query`` to embed server-side.
    """
    config: NamespaceConfig
    embedding: Optional[List[float]] = Field(default=None, min_length=1)
    query: Optional[str] = Field(default=None, min_length=1)
    filters: List[FilterValue] = Field(default_factory=list)
    limit: int = Field(default=10, ge=1, le=1000)
    chunk_context: Optional[ChunkContext] = None
    vector_score_threshold: Optional[float] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _needs_vector_source(self) -> "SearchRequest":
        if self.embedding is None and self.query is None:
            raise ValueError("Either 'embedding' or 'query' is required.")
        return self


class TextSearchRequest(BaseModel):
    config: NamespaceConfig
    query: str = Field(..., min_length=1)
    filters: List[FilterValue] = Field(default_factory=list)
    limit: int = Field(default=10, ge=1, le=1000)

    model_config = ConfigDict(extra="forbid")


class HybridSearchRequest(BaseModel):
    config: NamespaceConfig
    query: str = Field(..., min_length=1)
    embedding: Optional[List[float]] = Field(default=None, min_length=1)
    filters: List[FilterValue] = Field(default_factory=list)
    limit: int = Field(default=20, ge=1, le=1000)
    # Range is checked by the ranker so callers get an invalid_weight error
    semantic_weight: float = 0.5

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Document Models
# ---------------------------------------------------------------------

class IndexDocumentRequest(BaseModel):
    config: NamespaceConfig
    document: IndexDocument
    namespace_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class BatchIndexRequest(BaseModel):
    config: NamespaceConfig
    documents: List[IndexDocument] = Field(..., min_length=1)
    namespace_id: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
