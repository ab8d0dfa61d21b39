import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from knowledge_base.api.deps import (
    get_clock,
    get_db,
    get_deletion_dispatcher,
    get_ingestion_manager,
    get_vector_store,
)
from knowledge_base.core.config import settings
from knowledge_base.main import app
from knowledge_base.schemas.knowledge import VectorHit
from knowledge_base.services.ingestion.service import IngestionSessionManager
from knowledge_base.tests.conftest import ParagraphChunker, TextParser, paragraphs

PREFIX = settings.API_PREFIX


@pytest.fixture
def dispatched():
    return []


@pytest_asyncio.fixture
async def client(session_factory, vector_store, clock, dispatched):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_ingestion_manager(db=Depends(get_db)):
        return IngestionSessionManager(
            db,
            vector_store,
            parser=TextParser(),
            chunker=ParagraphChunker(),
            clock=clock,
            preview_enabled=lambda organization_id: True,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vector_store] = lambda: vector_store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_deletion_dispatcher] = lambda: dispatched.append
    app.dependency_overrides[get_ingestion_manager] = override_get_ingestion_manager

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


async def upload(client, agent_id="agent-1", chunk_count=2, file_name="notes.txt"):
    return await client.post(
        f"{PREFIX}/documents/ingest",
        files={"file": (file_name, paragraphs(chunk_count), "text/plain")},
        data={"agent_id": agent_id, "organization_id": "org-1"},
    )


async def upload_and_confirm(client, **kwargs):
    response = await upload(client, **kwargs)
    session_id = response.json()["session_id"]
    response = await client.post(f"{PREFIX}/documents/{session_id}/confirm")
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get(f"{PREFIX}/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["open_deletions"] == 0


@pytest.mark.asyncio
async def test_upload_preview_confirm_flow(client, vector_store):
    response = await upload(client, chunk_count=2)

    assert response.status_code == 201
    body = response.json()
    assert body["stage"] == "preview_ready"
    assert [chunk["index"] for chunk in body["preview_chunks"]] == [0, 1]
    assert body["expires_at"] is not None

    response = await client.post(f"{PREFIX}/documents/{body['session_id']}/confirm")
    assert response.status_code == 200
    confirmed = response.json()
    assert confirmed["chunks_created"] == 2

    response = await client.get(f"{PREFIX}/documents", params={"agent_id": "agent-1"})
    listing = response.json()
    assert [doc["document_id"] for doc in listing["documents"]] == [confirmed["document_id"]]
    assert listing["pending_sessions"] == []

    response = await client.get(f"{PREFIX}/documents/{confirmed['document_id']}/chunks")
    assert [chunk["chunk_index"] for chunk in response.json()] == [0, 1]

    response = await client.get(f"{PREFIX}/knowledge/agents/agent-1/stats")
    stats = response.json()
    assert stats["total_chunks"] == 2
    assert stats["document_count"] == 1
    assert vector_store.count("agent-1") == 2


@pytest.mark.asyncio
async def test_cancelled_upload_is_reported(client):
    session_id = (await upload(client)).json()["session_id"]

    response = await client.post(f"{PREFIX}/documents/{session_id}/cancel")

    assert response.status_code == 200
    assert response.json()["stage"] == "cancelled"
    assert response.json()["preview_chunks"] is None


@pytest.mark.asyncio
async def test_error_mapping(client, clock):
    response = await upload(client, file_name="slides.pptx")
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidInput"

    response = await client.post(f"{PREFIX}/documents/missing/confirm")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"

    confirmed = await upload_and_confirm(client)
    response = await client.post(f"{PREFIX}/documents/{confirmed['session_id']}/confirm")
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidState"

    session_id = (await upload(client)).json()["session_id"]
    clock.advance(hours=25)
    response = await client.post(f"{PREFIX}/documents/{session_id}/confirm")
    assert response.status_code == 410
    assert response.json()["error"] == "ExpiredSession"

    response = await client.get(f"{PREFIX}/documents/{session_id}/status")
    assert response.json()["stage"] == "cancelled"


@pytest.mark.asyncio
async def test_delete_document_is_queued(client, dispatched):
    confirmed = await upload_and_confirm(client, chunk_count=3)

    response = await client.delete(
        f"{PREFIX}/documents/{confirmed['document_id']}", params={"reason": "outdated"}
    )

    assert response.status_code == 202
    queued = response.json()
    assert queued["deletion_type"] == "specific_documents"
    assert queued["total_items"] == 3
    assert dispatched == [queued["queue_id"]]

    response = await client.get(f"{PREFIX}/knowledge/agents/agent-1/deletion-status")
    assert response.json()["in_progress"] is True

    response = await client.get(f"{PREFIX}/knowledge/agents/agent-1/deleted")
    assert [record["deletion_reason"] for record in response.json()] == ["outdated"]

    response = await client.post(f"{PREFIX}/knowledge/deletions/{queued['queue_id']}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    response = await client.post(f"{PREFIX}/knowledge/deletions/{queued['queue_id']}/cancel")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_namespace_deletion_blocks_search(client):
    await upload_and_confirm(client, chunk_count=2)

    response = await client.delete(f"{PREFIX}/knowledge/agents/agent-1", params={"organization_id": "org-1"})
    assert response.status_code == 202
    first = response.json()
    assert first["deletion_type"] == "full_namespace"

    response = await client.delete(f"{PREFIX}/knowledge/agents/agent-1", params={"organization_id": "org-1"})
    assert response.json()["queue_id"] == first["queue_id"]

    response = await client.post(f"{PREFIX}/knowledge/agents/agent-1/search", json={"query": "knowledge"})
    assert response.status_code == 409
    assert response.json()["error"] == "AgentDeleting"

    response = await client.get(f"{PREFIX}/knowledge/agents/agent-1/stats")
    assert response.json()["status"] == "deleting"


@pytest.mark.asyncio
async def test_search_and_hot_chunks(client, vector_store):
    await upload_and_confirm(client, chunk_count=2)
    rag_entry_id = next(iter(vector_store.entries))
    vector_store.search_results = [VectorHit(rag_entry_id=rag_entry_id, score=0.7)]

    response = await client.post(f"{PREFIX}/knowledge/agents/agent-1/search", json={"query": "knowledge", "limit": 3})
    assert response.status_code == 200
    hits = response.json()
    assert len(hits) == 1

    response = await client.get(f"{PREFIX}/knowledge/agents/agent-1/hot-chunks")
    hot = response.json()
    assert [(chunk["chunk_key"], chunk["access_count"]) for chunk in hot] == [(hits[0]["chunk_id"], 1)]


@pytest.mark.asyncio
async def test_search_request_validation(client):
    response = await client.post(f"{PREFIX}/knowledge/agents/agent-1/search", json={"query": ""})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stats_for_unknown_agent_and_organization(client):
    response = await client.get(f"{PREFIX}/knowledge/agents/nobody/stats")
    assert response.status_code == 200
    assert response.json()["exists"] is False

    response = await client.get(f"{PREFIX}/knowledge/organizations/org-9/stats")
    assert response.json()["total_agents"] == 0


@pytest.mark.asyncio
async def test_orphan_cleanup_endpoint(client, dispatched):
    response = await client.post(f"{PREFIX}/knowledge/agents/agent-1/orphans/cleanup",
                                 params={"organization_id": "org-1"})

    assert response.status_code == 202
    assert response.json()["deletion_type"] == "cleanup_orphans"
    assert response.json()["total_items"] == 0
    assert dispatched == [response.json()["queue_id"]]
