"""
RAG Domain Models

This module defines the canonical records of the indexing engine:
namespaces, entries and chunks, plus the small result objects returned by
the managers.

Stored records are immutable once created. Status transitions produce a new
instance via ``model_copy(update=...)`` so that a record handed to a caller
can never be mutated behind the storage layer's back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    """Lifecycle status shared by namespaces, entries and chunks."""

    PENDING = "pending"
    READY = "ready"
    REPLACED = "replaced"


# ---------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------

class NamespaceConfig(BaseModel):
    """
    The identity of one index configuration.

    Two namespaces are versions of the same index iff all four fields match,
    including the order of ``filter_names``.
    """

    namespace: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    dimension: int = Field(..., ge=1)
    filter_names: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("filter_names")
    @classmethod
    def _unique_filter_names(cls, value: List[str]) -> List[str]:
        if len(set(value)) != len(value):
            raise ValueError("filter_names must not contain duplicates")
        return value


class Namespace(BaseModel):
    namespace_id: str
    namespace: str
    model_id: str
    dimension: int
    filter_names: List[str] = Field(default_factory=list)
    status: Status
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)

    # Creation sequence, used as the pagination key
    seq: int = Field(default=0, exclude=True)

    model_config = ConfigDict(frozen=True)

    def to_config(self) -> NamespaceConfig:
        return NamespaceConfig(
            namespace=self.namespace,
            model_id=self.model_id,
            dimension=self.dimension,
            filter_names=list(self.filter_names),
        )


# ---------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------

class FilterValue(BaseModel):
    name: str = Field(..., min_length=1)
    value: Any = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class EntryInput(BaseModel):
    """
    Caller-supplied description of a logical document.

    ``key`` is the stable identity used to recognise a new version of the
    same document; ``content_hash`` fingerprints its full text.
    """

    key: Optional[str] = None
    title: Optional[str] = None
    content_hash: Optional[str] = None
    filter_values: List[FilterValue] = Field(default_factory=list)
    importance: float = Field(default=1.0, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


class Entry(BaseModel):
    entry_id: str
    namespace_id: str
    key: Optional[str] = None
    title: Optional[str] = None
    content_hash: Optional[str] = None
    filter_values: List[FilterValue] = Field(default_factory=list)
    importance: float = 1.0
    metadata: Optional[Dict[str, Any]] = None
    status: Status
    chunker: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    seq: int = Field(default=0, exclude=True)

    model_config = ConfigDict(frozen=True)

    def matches_filters(self, filters: List[FilterValue]) -> bool:
        """Return True if every filter pair appears in this entry's values."""
        own = [(fv.name, fv.value) for fv in self.filter_values]
        return all((f.name, f.value) in own for f in filters)


# ---------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------

class ChunkContent(BaseModel):
    text: str
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class ChunkInput(BaseModel):
    content: ChunkContent
    embedding: List[float] = Field(..., min_length=1)
    searchable_text: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class Chunk(BaseModel):
    entry_id: str
    order: int = Field(..., ge=0)
    content: ChunkContent
    embedding: List[float]
    searchable_text: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def keyword_text(self) -> str:
        return self.searchable_text if self.searchable_text is not None else self.content.text


# ---------------------------------------------------------------------
# Operation Results
# ---------------------------------------------------------------------

class GetOrCreateResult(BaseModel):
    namespace_id: str
    status: Status


class PromoteNamespaceResult(BaseModel):
    replaced_version: Optional[Namespace] = None


class PromoteEntryResult(BaseModel):
    replaced_version: Optional[Entry] = None


class AddEntryResult(BaseModel):
    entry_id: str
    created: bool
    status: Status
    replaced_version: Optional[Entry] = None


class AddAsyncResult(BaseModel):
    entry_id: str
    created: bool
    status: Status


class InsertChunksResult(BaseModel):
    status: Status


class ReplaceChunksResult(BaseModel):
    next_start_order: int
    status: Status
    is_done: bool


class ChunkContext(BaseModel):
    before: int = Field(default=0, ge=0)
    after: int = Field(default=0, ge=0)


class SearchResultRow(BaseModel):
    """
    One vector hit, with its surrounding context chunks.

    ``content`` is contiguous and starts at ``start_order``; the hit chunk
    itself sits at position ``order - start_order``.
    """

    entry_id: str
    order: int
    score: float
    start_order: int
    content: List[ChunkContent]

    @property
    def text(self) -> str:
        return "\n".join(c.text for c in self.content)


class SearchResponse(BaseModel):
    results: List[SearchResultRow] = Field(default_factory=list)
    entries: List[Entry] = Field(default_factory=list)


class RankedEntry(BaseModel):
    entry: Entry
    score: float
