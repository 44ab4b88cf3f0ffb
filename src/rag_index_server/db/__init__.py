"""
Database Package

Provides SQLAlchemy async session management and model definitions
for PostgreSQL with pgvector.
"""

from .session import get_async_engine, get_session_factory, init_models
from .models import Base, NamespaceRecord, EntryRecord, ChunkRecord

__all__ = [
    "get_async_engine",
    "get_session_factory",
    "init_models",
    "Base",
    "NamespaceRecord",
    "EntryRecord",
    "ChunkRecord",
]
