import pytest

from rag_index_server.embeddings.queue import JobQueue
from rag_index_server.rag.engine import RagEngine
from rag_index_server.storage.memory import MemoryRagStorage

from helpers import make_config


@pytest.fixture
def queue():
    return JobQueue()


@pytest.fixture
def storage():
    return MemoryRagStorage()


@pytest.fixture
def engine(storage, queue):
    return RagEngine(storage, queue=queue)


@pytest.fixture
def config():
    return make_config()
