import pytest
from unittest.mock import MagicMock

from knowledge_base.core.exceptions import ExternalDependencyError
from knowledge_base.services.vector_store import Mem0VectorStore


@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def store(mock_client):
    return Mem0VectorStore(client=mock_client)


@pytest.mark.asyncio
async def test_upsert_stores_text_verbatim(store, mock_client):
    mock_client.add.return_value = {"results": [{"id": "mem-1", "event": "ADD"}]}

    rag_entry_id = await store.upsert("agent-1", "chunk-1", " some text ", {"document_id": "doc-1"})

    assert rag_entry_id == "mem-1"
    args, kwargs = mock_client.add.call_args
    assert args[0] == [{"role": "user", "content": "some text"}]
    assert kwargs["user_id"] == "agent-1"
    assert kwargs["metadata"] == {"document_id": "doc-1", "chunk_id": "chunk-1"}
    assert kwargs["infer"] is False


@pytest.mark.asyncio
async def test_upsert_without_id_is_an_error(store, mock_client):
    mock_client.add.return_value = {"results": []}

    with pytest.raises(ExternalDependencyError):
        await store.upsert("agent-1", "chunk-1", "text")


@pytest.mark.asyncio
async def test_delete_reports_missing_memory(store, mock_client):
    assert await store.delete("agent-1", "mem-1") is True
    mock_client.delete.assert_called_once_with(memory_id="mem-1")

    mock_client.delete.side_effect = Exception("Memory not found")
    assert await store.delete("agent-1", "mem-2") is False


@pytest.mark.asyncio
async def test_delete_propagates_other_errors(store, mock_client):
    mock_client.delete.side_effect = ConnectionError("timeout")

    with pytest.raises(ConnectionError):
        await store.delete("agent-1", "mem-1")


@pytest.mark.asyncio
async def test_search_maps_results(store, mock_client):
    mock_client.search.return_value = [
        {"id": "mem-1", "score": 0.92, "memory": "a"},
        {"memory": "no id"},
        {"id": "mem-2", "score": None},
    ]

    hits = await store.search("agent-1", "query", limit=5)

    assert [(hit.rag_entry_id, hit.score) for hit in hits] == [("mem-1", 0.92), ("mem-2", 0.0)]
    assert mock_client.search.call_args.kwargs["user_id"] == "agent-1"
