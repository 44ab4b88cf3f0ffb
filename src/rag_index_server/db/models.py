"""
SQLAlchemy Models

Defines the database schema for the PostgreSQL storage backend:
- Namespaces (index configurations and their versions)
- Entries (logical documents)
- Chunks (ordered, embedded text units, vectors stored with pgvector)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Namespace Model
# ---------------------------------------------------------------------

class NamespaceRecord(Base):
    """
    One version of an index configuration.

    The partial unique indexes allow at most one ready and one pending
    version per configuration tuple.
    """
    __tablename__ = "rag_namespace"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    namespace: Mapped[str] = mapped_column(Text, nullable=False)
    model_id: Mapped[str] = mapped_column(Text, nullable=False)
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    filter_names: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # pending | ready | replaced
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "uq_namespace_ready",
            "namespace", "model_id", "dimension", "filter_names",
            unique=True,
            postgresql_where=text("status = 'ready'"),
        ),
        Index(
            "uq_namespace_pending",
            "namespace", "model_id", "dimension", "filter_names",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_namespace_status", "status", "seq"),
    )


# ---------------------------------------------------------------------
# Entry Model
# ---------------------------------------------------------------------

class EntryRecord(Base):
    """
    A logical document inside a namespace.
    """
    __tablename__ = "rag_entry"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    namespace_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("rag_namespace.namespace_id", ondelete="CASCADE"),
        nullable=False,
    )
    key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    filter_values: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    importance: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    chunker: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "uq_entry_ready_key",
            "namespace_id", "key",
            unique=True,
            postgresql_where=text("status = 'ready' AND key IS NOT NULL"),
        ),
        Index(
            "uq_entry_pending_key",
            "namespace_id", "key",
            unique=True,
            postgresql_where=text("status = 'pending' AND key IS NOT NULL"),
        ),
        Index("idx_entry_namespace_status", "namespace_id", "status", "seq"),
        Index("idx_entry_hash", "namespace_id", "key", "content_hash"),
    )


# ---------------------------------------------------------------------
# Chunk Model
# ---------------------------------------------------------------------

class ChunkRecord(Base):
    """
    One embedded chunk of an entry.

    Chunks reference their entry by ID without a foreign key: a deleted
    entry's chunks stay behind until the background purge removes them.
    """
    __tablename__ = "rag_chunk"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(32), nullable=False)
    namespace_id: Mapped[str] = mapped_column(String(32), nullable=False)
    chunk_order: Mapped[int] = mapped_column(Integer, nullable=False)
    content_text: Mapped[str] = mapped_column("text", Text, nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
    )
    searchable_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Dimension is fixed per namespace, not per table
    embedding = Column(Vector(), nullable=False)

    __table_args__ = (
        UniqueConstraint("entry_id", "chunk_order", name="uq_chunk_entry_order"),
        Index("idx_chunk_namespace", "namespace_id"),
    )
