"""
Engine assembly: one storage backend shared by every manager.
"""

from __future__ import annotations

from typing import Optional

from ..config import settings
from ..embeddings.queue import JobQueue, job_queue
from ..storage.base import RagStorage
from ..storage.memory import MemoryRagStorage
from .chunks import ChunkStore
from .entries import EntryManager
from .namespaces import NamespaceManager
from .search import SearchEngine


def build_storage(backend: Optional[str] = None) -> RagStorage:
    """
    Create the storage backend named by ``backend`` (or settings.storage_backend).
    """
    backend = backend or settings.storage_backend
    if backend == "postgres":
        from ..storage.sql import SqlRagStorage

        return SqlRagStorage()
    if backend == "memory":
        return MemoryRagStorage()
    raise ValueError(f"Unknown storage backend: {backend!r}")


class RagEngine:
    """
    Bundles the chunk store, managers and search engine over one backend.
    """

    def __init__(
        self,
        storage: Optional[RagStorage] = None,
        queue: Optional[JobQueue] = None,
    ) -> None:
        self.storage = storage or build_storage()
        self.queue = queue or job_queue

        self.chunks = ChunkStore(self.storage)
        self.entries = EntryManager(self.storage, self.chunks, self.queue)
        self.namespaces = NamespaceManager(self.storage)
        self.search = SearchEngine(self.storage, self.namespaces)
