from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from ..embeddings.embedder import Embedder
from ..rag.engine import RagEngine
from ..rag.indexer import DocumentIndexer


@lru_cache
def get_engine() -> RagEngine:
    return RagEngine()


@lru_cache
def get_embedder() -> Embedder:
    return Embedder()


def get_indexer(
    engine: Annotated[RagEngine, Depends(get_engine)],
    embedder: Annotated[Embedder, Depends(get_embedder)],
) -> DocumentIndexer:
    return DocumentIndexer(engine, embedder)
