import contextlib
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from rag_index_server.main import app
from rag_index_server.api.dependencies import get_embedder, get_engine
from rag_index_server.embeddings.embedder import Embedder
from rag_index_server.embeddings.queue import JobQueue
from rag_index_server.rag.engine import RagEngine
from rag_index_server.storage.memory import MemoryRagStorage

from helpers import axis, make_config

CONFIG = make_config().model_dump()


def _chunk(text, i=0):
    return {"content": {"text": text}, "embedding": axis(i)}


@pytest.fixture
def mock_embedder():
    mock = AsyncMock(spec=Embedder)
    mock.embed.side_effect = lambda texts, batch_size=None: [axis(0) for _ in texts]
    mock.embed_query.return_value = axis(0)
    return mock


@pytest.fixture
def api_engine():
    return RagEngine(MemoryRagStorage(), queue=JobQueue())


@pytest.fixture
def client(api_engine, mock_embedder):
    app.dependency_overrides[get_engine] = lambda: api_engine
    app.dependency_overrides[get_embedder] = lambda: mock_embedder

    # Mock lifespan to avoid the DB and the background worker
    @contextlib.asynccontextmanager
    async def mock_lifespan(app):
        yield

    app.router.lifespan_context = mock_lifespan

    with TestClient(app) as c:
        yield c

    app.dependency_overrides = {}


def _ready_namespace(client):
    created = client.post("/namespaces/get-or-create", json={"config": CONFIG}).json()
    client.post(f"/namespaces/{created['namespace_id']}/promote")
    return created["namespace_id"]


def _add(client, namespace_id, key, text, axis_index=0):
    return client.post("/entries/add", json={
        "namespace_id": namespace_id,
        "entry": {"key": key, "content_hash": f"hash-{text}"},
        "all_chunks": [_chunk(text, axis_index)],
    })


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage_backend": "memory"}


def test_namespace_lifecycle(client):
    created = client.post("/namespaces/get-or-create", json={"config": CONFIG})
    assert created.status_code == 200
    assert created.json()["status"] == "pending"

    assert client.post("/namespaces/lookup", json=CONFIG).json() == {"namespace_id": None}

    namespace_id = created.json()["namespace_id"]
    promoted = client.post(f"/namespaces/{namespace_id}/promote")
    assert promoted.status_code == 200
    assert promoted.json() == {"replaced_version": None}

    assert client.post("/namespaces/lookup", json=CONFIG).json() == {"namespace_id": namespace_id}


def test_add_then_search(client):
    namespace_id = _ready_namespace(client)
    added = _add(client, namespace_id, "doc", "hello world")
    assert added.status_code == 200
    assert added.json()["created"] is True
    assert added.json()["status"] == "ready"

    response = client.post("/search/", json={"config": CONFIG, "embedding": axis(0)})

    assert response.status_code == 200
    body = response.json()
    assert [r["entry_id"] for r in body["results"]] == [added.json()["entry_id"]]
    assert body["results"][0]["content"][0]["text"] == "hello world"
    assert body["entries"][0]["key"] == "doc"


def test_search_embeds_query_text(client, mock_embedder):
    namespace_id = _ready_namespace(client)
    _add(client, namespace_id, "doc", "hello world")

    response = client.post("/search/", json={"config": CONFIG, "query": "hello"})

    assert response.status_code == 200
    assert len(response.json()["results"]) == 1
    mock_embedder.embed_query.assert_awaited_once_with("hello")


def test_search_requires_embedding_or_query(client):
    response = client.post("/search/", json={"config": CONFIG})
    assert response.status_code == 422


def test_search_unknown_namespace(client):
    response = client.post("/search/", json={"config": CONFIG, "embedding": axis(0)})

    assert response.status_code == 404
    assert response.json()["error"] == "namespace_not_found"


def test_get_unknown_entry(client):
    response = client.get("/entries/missing")

    assert response.status_code == 404
    assert response.json()["error"] == "entry_not_found"


def test_out_of_order_insert(client):
    namespace_id = _ready_namespace(client)
    pending = client.post("/entries/add-async", json={
        "namespace_id": namespace_id,
        "entry": {"key": "doc"},
    }).json()

    response = client.post("/chunks/insert", json={
        "entry_id": pending["entry_id"],
        "start_order": 1,
        "chunks": [_chunk("late")],
    })

    assert response.status_code == 409
    assert response.json()["error"] == "out_of_order"


def test_hybrid_rejects_bad_weight(client):
    _ready_namespace(client)

    response = client.post("/search/hybrid", json={
        "config": CONFIG,
        "query": "hello",
        "embedding": axis(0),
        "semantic_weight": 2,
    })

    assert response.status_code == 422
    assert response.json()["error"] == "invalid_weight"


def test_list_entries_paginates(client):
    namespace_id = _ready_namespace(client)
    for i in range(3):
        _add(client, namespace_id, f"doc{i}", f"text {i}")

    first = client.post("/entries/list", json={
        "namespace_id": namespace_id,
        "status": "ready",
        "pagination": {"num_items": 2},
    }).json()
    second = client.post("/entries/list", json={
        "namespace_id": namespace_id,
        "status": "ready",
        "pagination": {"num_items": 2, "cursor": first["continue_cursor"]},
    }).json()

    assert [e["key"] for e in first["page"]] == ["doc0", "doc1"]
    assert first["is_done"] is False
    assert [e["key"] for e in second["page"]] == ["doc2"]
    assert second["is_done"] is True


def test_delete_entry_schedules_purge(client, api_engine):
    namespace_id = _ready_namespace(client)
    added = _add(client, namespace_id, "doc", "hello").json()

    response = client.post(f"/entries/{added['entry_id']}/delete-async")

    assert response.status_code == 200
    assert response.json()["status"] == "scheduled"
    assert api_engine.queue.qsize() == 1
    assert client.get(f"/entries/{added['entry_id']}").status_code == 404


def test_index_document_endpoint(client, mock_embedder):
    _ready_namespace(client)
    payload = {"config": CONFIG, "document": {"key": "doc", "text": "some document text"}}

    first = client.post("/documents/index", json=payload)
    second = client.post("/documents/index", json=payload)

    assert first.status_code == 200
    assert first.json()["created"] is True
    assert second.json()["created"] is False
    assert mock_embedder.embed.await_count == 1
