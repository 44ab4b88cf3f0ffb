"""
Shared builders for the test suite.
"""

from typing import List, Optional

from rag_index_server.rag.engine import RagEngine
from rag_index_server.rag.models import (
    ChunkContent,
    ChunkInput,
    EntryInput,
    FilterValue,
    NamespaceConfig,
)

DIM = 8


def axis(i: int, dim: int = DIM) -> List[float]:
    """Unit vector along axis ``i``."""
    return [1.0 if j == i else 0.0 for j in range(dim)]


def chunk(text: str, embedding: Optional[List[float]] = None) -> ChunkInput:
    return ChunkInput(content=ChunkContent(text=text), embedding=embedding or axis(0))


def chunks(n: int) -> List[ChunkInput]:
    """``n`` chunks, chunk i pointing along axis i (mod DIM)."""
    return [chunk(f"chunk {i}", axis(i % DIM)) for i in range(n)]


def make_config(**overrides) -> NamespaceConfig:
    values = dict(
        namespace="docs",
        model_id="test-model",
        dimension=DIM,
        filter_names=["lang", "team"],
    )
    values.update(overrides)
    return NamespaceConfig(**values)


def entry(key: Optional[str] = None, content_hash: Optional[str] = None, **kwargs) -> EntryInput:
    return EntryInput(key=key, content_hash=content_hash, **kwargs)


def lang(value: str) -> FilterValue:
    return FilterValue(name="lang", value=value)


async def ready_namespace(engine: RagEngine, config: NamespaceConfig) -> str:
    """Create and promote a namespace, returning its ID."""
    created = await engine.namespaces.get_or_create(config)
    await engine.namespaces.promote_to_ready(created.namespace_id)
    return created.namespace_id
