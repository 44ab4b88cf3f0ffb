"""
Database Model Tests

Simple tests for the PostgreSQL schema and record conversion:
- Record construction
- Column mapping
- Partial unique indexes
- Record -> domain model conversion
"""

from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector

from rag_index_server.db.models import ChunkRecord, EntryRecord, NamespaceRecord
from rag_index_server.rag.models import Status
from rag_index_server.storage.sql import _to_chunk, _to_entry, _to_namespace

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestRecordModels:
    """Tests for the table definitions."""

    def test_namespace_record_creation(self):
        record = NamespaceRecord(
            namespace_id="ns1",
            namespace="docs",
            model_id="m",
            dimension=8,
            filter_names=["lang"],
            status="pending",
        )

        assert record.namespace == "docs"
        assert record.filter_names == ["lang"]
        # created_at is a server default, not set until persisted
        assert record.created_at is None

    def test_namespace_partial_unique_indexes(self):
        indexes = {ix.name: ix for ix in NamespaceRecord.__table__.indexes}

        assert indexes["uq_namespace_ready"].unique
        assert indexes["uq_namespace_pending"].unique
        assert "ready" in str(indexes["uq_namespace_ready"].dialect_options["postgresql"]["where"])

    def test_entry_metadata_column_name(self):
        column = EntryRecord.__table__.c["metadata"]
        assert column.nullable

        record = EntryRecord(entry_id="e1", namespace_id="ns1", status="ready", metadata_={"a": 1})
        assert record.metadata_ == {"a": 1}

    def test_entry_key_indexes(self):
        names = {ix.name for ix in EntryRecord.__table__.indexes}
        assert {"uq_entry_ready_key", "uq_entry_pending_key", "idx_entry_hash"} <= names

    def test_chunk_text_column(self):
        assert "text" in ChunkRecord.__table__.c
        assert isinstance(ChunkRecord.__table__.c["embedding"].type, Vector)

        record = ChunkRecord(entry_id="e1", namespace_id="ns1", chunk_order=0, content_text="hi")
        assert record.content_text == "hi"

    def test_chunk_order_unique_per_entry(self):
        constraints = {c.name for c in ChunkRecord.__table__.constraints}
        assert "uq_chunk_entry_order" in constraints


class TestRecordConversion:
    """Tests for record -> domain model conversion in the SQL backend."""

    def test_to_namespace(self):
        record = NamespaceRecord(
            seq=3,
            namespace_id="ns1",
            namespace="docs",
            model_id="m",
            dimension=8,
            filter_names=["lang"],
            status="ready",
            version=2,
            created_at=NOW,
        )

        namespace = _to_namespace(record)

        assert namespace.status == Status.READY
        assert namespace.version == 2
        assert namespace.seq == 3
        assert namespace.to_config().filter_names == ["lang"]

    def test_to_entry(self):
        record = EntryRecord(
            seq=1,
            entry_id="e1",
            namespace_id="ns1",
            key="doc",
            content_hash="h",
            filter_values=[{"name": "lang", "value": "en"}],
            importance=0.5,
            status="pending",
            created_at=NOW,
        )

        entry = _to_entry(record)

        assert entry.status == Status.PENDING
        assert entry.filter_values[0].name == "lang"
        assert entry.filter_values[0].value == "en"
        assert entry.metadata is None

    def test_to_chunk(self):
        record = ChunkRecord(
            entry_id="e1",
            namespace_id="ns1",
            chunk_order=4,
            content_text="hello",
            metadata_={"page": 2},
            embedding=[1, 0, 0.5],
        )

        chunk = _to_chunk(record)

        assert chunk.order == 4
        assert chunk.content.text == "hello"
        assert chunk.content.metadata == {"page": 2}
        assert chunk.embedding == [1.0, 0.0, 0.5]
