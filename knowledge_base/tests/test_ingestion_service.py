from datetime import timedelta

import pytest
from sqlalchemy import func, select

from knowledge_base.core.clock import ensure_utc
from knowledge_base.core.exceptions import (
    AgentDeleting,
    ExpiredSession,
    ExternalDependencyError,
    InvalidInput,
    InvalidState,
    NotFound,
)
from knowledge_base.db.models.chunk import Chunk
from knowledge_base.db.models.document import Document, DocumentStatus
from knowledge_base.db.models.ingestion_session import IngestionSession, IngestionStage
from knowledge_base.schemas.ingestion import ChunkDraft
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.tests.conftest import paragraphs


async def count_rows(db_session, model) -> int:
    result = await db_session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def preview_session(manager, chunk_count=3, agent_id="agent-1", organization_id="org-1"):
    raw = paragraphs(chunk_count)
    session = await manager.create_session(agent_id, organization_id, "notes.txt", ".txt", len(raw))
    return await manager.process_upload(session.session_id, raw)


@pytest.mark.asyncio
async def test_create_session_starts_uploading(manager, clock):
    session = await manager.create_session("agent-1", "org-1", "notes.txt", "txt", 120)

    assert session.stage == IngestionStage.UPLOADING
    assert session.progress == 0
    assert session.file_type == ".txt"
    assert session.source_type == "general"


@pytest.mark.asyncio
async def test_create_session_rejects_oversized_file(manager_factory, db_session):
    manager = manager_factory(max_file_size=1000)

    with pytest.raises(InvalidInput):
        await manager.create_session("agent-1", "org-1", "big.txt", ".txt", 1001)

    assert await count_rows(db_session, IngestionSession) == 0


@pytest.mark.asyncio
async def test_create_session_rejects_unsupported_type(manager, db_session):
    with pytest.raises(InvalidInput):
        await manager.create_session("agent-1", "org-1", "movie.mp4", ".mp4", 10)
    with pytest.raises(InvalidInput):
        await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", -1)

    assert await count_rows(db_session, IngestionSession) == 0


@pytest.mark.asyncio
async def test_preview_then_confirm_persists_three_chunks(manager, db_session, clock, vector_store):
    session = await preview_session(manager, chunk_count=3)

    assert session.stage == IngestionStage.PREVIEW_READY
    assert len(session.preview_chunks) == 3
    assert session.expires_at is not None
    assert ensure_utc(session.expires_at) == clock.now() + timedelta(hours=24)
    assert await count_rows(db_session, Chunk) == 0

    result = await manager.confirm(session.session_id)

    assert result.chunks_created == 3
    document = await db_session.get(Document, result.document_id)
    assert document.chunk_count == 3
    assert document.status == DocumentStatus.COMPLETED
    assert await count_rows(db_session, Chunk) == 3
    assert vector_store.count("agent-1") == 3

    stats = await AgentKnowledgeMetadataIndex(db_session, clock).get_stats("agent-1")
    assert stats.total_chunks == 3
    assert stats.document_count == 1

    status = await manager.get_status(session.session_id)
    assert status.stage == "completed"
    assert status.progress == 100
    assert status.document_id == result.document_id
    assert status.preview_chunks is None


@pytest.mark.asyncio
async def test_cancel_discards_preview(manager, db_session, clock, vector_store):
    session = await preview_session(manager, chunk_count=3)

    cancelled = await manager.cancel(session.session_id)

    assert cancelled.stage == IngestionStage.CANCELLED
    assert cancelled.preview_chunks is None
    assert await count_rows(db_session, Chunk) == 0
    assert vector_store.count("agent-1") == 0
    stats = await AgentKnowledgeMetadataIndex(db_session, clock).get_stats("agent-1")
    assert stats.exists is False
    assert stats.total_chunks == 0


@pytest.mark.asyncio
async def test_cancel_is_idempotent(manager):
    session = await preview_session(manager)
    await manager.cancel(session.session_id)

    again = await manager.cancel(session.session_id)

    assert again.stage == IngestionStage.CANCELLED


@pytest.mark.asyncio
async def test_cancel_outside_preview_is_rejected(manager):
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", 10)

    with pytest.raises(InvalidState):
        await manager.cancel(session.session_id)

    assert (await manager.get_session(session.session_id)).stage == IngestionStage.UPLOADING


@pytest.mark.asyncio
async def test_second_confirm_fails_and_one_document_exists(manager, db_session):
    session = await preview_session(manager)
    await manager.confirm(session.session_id)

    with pytest.raises(InvalidState):
        await manager.confirm(session.session_id)

    assert await count_rows(db_session, Document) == 1
    assert await count_rows(db_session, Chunk) == 3


@pytest.mark.asyncio
async def test_confirm_after_expiry_cancels_without_writing(manager, db_session, clock, vector_store):
    session = await preview_session(manager)
    clock.advance(hours=24, seconds=1)

    with pytest.raises(ExpiredSession):
        await manager.confirm(session.session_id)

    assert await count_rows(db_session, Document) == 0
    assert await count_rows(db_session, Chunk) == 0
    assert vector_store.upsert_calls == 0
    current = await manager.get_session(session.session_id)
    assert current.stage == IngestionStage.CANCELLED
    assert current.preview_chunks is None


@pytest.mark.asyncio
async def test_confirm_after_expiry_sweep_is_still_expired(manager, db_session, clock):
    session = await preview_session(manager)
    clock.advance(hours=25)
    assert await manager.expire_stale() == 1

    with pytest.raises(ExpiredSession):
        await manager.confirm(session.session_id)

    assert await count_rows(db_session, Document) == 0
    assert (await manager.get_session(session.session_id)).stage == IngestionStage.CANCELLED


@pytest.mark.asyncio
async def test_confirm_after_user_cancel_is_invalid(manager):
    session = await preview_session(manager)
    await manager.cancel(session.session_id)

    with pytest.raises(InvalidState) as exc_info:
        await manager.confirm(session.session_id)

    assert not isinstance(exc_info.value, ExpiredSession)


@pytest.mark.asyncio
async def test_namespace_wipe_started_during_embedding_blocks_persisting(manager_factory, db_session,
                                                                         clock, vector_store):
    manager = manager_factory(preview=True, embedding_concurrency=1)
    session = await preview_session(manager)
    index = AgentKnowledgeMetadataIndex(db_session, clock)
    upsert = vector_store.upsert

    async def upsert_while_wiped(*args, **kwargs):
        if not await index.is_deleting("agent-1"):
            await index.mark_deleting("agent-1", "org-1")
            await db_session.commit()
        return await upsert(*args, **kwargs)

    vector_store.upsert = upsert_while_wiped

    with pytest.raises(AgentDeleting):
        await manager.confirm(session.session_id)

    assert await count_rows(db_session, Document) == 0
    assert await count_rows(db_session, Chunk) == 0
    assert vector_store.count("agent-1") == 0
    assert (await manager.get_session(session.session_id)).stage == IngestionStage.FAILED
    assert await index.is_deleting("agent-1") is True


@pytest.mark.asyncio
async def test_confirm_outside_preview_ready_is_invalid(manager):
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", 10)

    with pytest.raises(InvalidState):
        await manager.confirm(session.session_id)


@pytest.mark.asyncio
async def test_confirm_blocked_while_agent_is_deleting(manager, db_session, clock):
    session = await preview_session(manager)
    await AgentKnowledgeMetadataIndex(db_session, clock).mark_deleting("agent-1", "org-1")
    await db_session.commit()

    with pytest.raises(AgentDeleting):
        await manager.confirm(session.session_id)

    assert (await manager.get_session(session.session_id)).stage == IngestionStage.PREVIEW_READY
    assert await count_rows(db_session, Document) == 0


@pytest.mark.asyncio
async def test_persisted_chunk_indexes_are_contiguous(manager, db_session):
    session = await preview_session(manager, chunk_count=7)
    result = await manager.confirm(session.session_id)

    rows = await db_session.execute(
        select(Chunk.chunk_index).where(Chunk.document_id == result.document_id)
    )
    assert sorted(rows.scalars().all()) == list(range(7))


@pytest.mark.asyncio
async def test_complete_chunking_reassigns_indexes_in_order(manager):
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", 10)
    await manager.advance_to_parsing(session.session_id)
    await manager.advance_to_chunking(session.session_id)

    drafts = [
        ChunkDraft(text="first", chunk_index=5),
        ChunkDraft(text="second", chunk_index=5),
        ChunkDraft(text="third"),
    ]
    session = await manager.complete_chunking(session.session_id, drafts)

    assert [(c["index"], c["text"]) for c in session.preview_chunks] == [
        (0, "first"), (1, "second"), (2, "third"),
    ]


@pytest.mark.asyncio
async def test_preview_disabled_persists_directly(manager_factory, db_session):
    manager = manager_factory(preview=False)
    raw = paragraphs(4)
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", len(raw))

    session = await manager.process_upload(session.session_id, raw)

    assert session.stage == IngestionStage.COMPLETED
    assert session.preview_chunks is None
    assert session.document_id is not None
    assert await count_rows(db_session, Chunk) == 4


@pytest.mark.asyncio
async def test_embedding_failure_rolls_back_everything(manager, db_session, vector_store):
    session = await preview_session(manager, chunk_count=3)
    vector_store.fail_upsert_after = 2

    with pytest.raises(ExternalDependencyError):
        await manager.confirm(session.session_id)

    assert await count_rows(db_session, Document) == 0
    assert await count_rows(db_session, Chunk) == 0
    # Entries created before the failure are removed again
    assert vector_store.count("agent-1") == 0
    failed = await manager.get_status(session.session_id)
    assert failed.stage == "failed"
    assert "embedding service unavailable" in failed.error
    assert failed.preview_chunks is None


@pytest.mark.asyncio
async def test_parser_failure_fails_session(manager):
    raw = b"\xff\xfe not utf-8"
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", len(raw))

    with pytest.raises(ExternalDependencyError):
        await manager.process_upload(session.session_id, raw)

    status = await manager.get_status(session.session_id)
    assert status.stage == "failed"
    assert status.error.startswith("Parsing failed")


@pytest.mark.asyncio
async def test_empty_document_fails_session(manager):
    session = await manager.create_session("agent-1", "org-1", "empty.txt", ".txt", 0)

    with pytest.raises(ExternalDependencyError):
        await manager.process_upload(session.session_id, b"   ")

    assert (await manager.get_status(session.session_id)).stage == "failed"


@pytest.mark.asyncio
async def test_illegal_advance_does_not_mutate(manager):
    session = await manager.create_session("agent-1", "org-1", "notes.txt", ".txt", 10)

    with pytest.raises(InvalidState):
        await manager.advance_to_chunking(session.session_id)

    current = await manager.get_session(session.session_id)
    assert current.stage == IngestionStage.UPLOADING
    assert current.progress == 0


@pytest.mark.asyncio
async def test_expire_stale_cancels_only_expired_previews(manager, clock):
    old = await preview_session(manager, agent_id="agent-1")
    clock.advance(hours=12)
    fresh = await preview_session(manager, agent_id="agent-2")
    in_flight = await manager.create_session("agent-3", "org-1", "notes.txt", ".txt", 10)
    clock.advance(hours=13)

    expired = await manager.expire_stale()

    assert expired == 1
    assert (await manager.get_session(old.session_id)).stage == IngestionStage.CANCELLED
    assert (await manager.get_session(old.session_id)).preview_chunks is None
    assert (await manager.get_session(fresh.session_id)).stage == IngestionStage.PREVIEW_READY
    assert (await manager.get_session(in_flight.session_id)).stage == IngestionStage.UPLOADING
    assert await manager.expire_stale() == 0


@pytest.mark.asyncio
async def test_preview_chunks_only_present_at_the_gate(manager, db_session):
    confirmed = await preview_session(manager, agent_id="agent-1")
    await manager.confirm(confirmed.session_id)
    cancelled = await preview_session(manager, agent_id="agent-2")
    await manager.cancel(cancelled.session_id)
    waiting = await preview_session(manager, agent_id="agent-3")

    result = await db_session.execute(select(IngestionSession).execution_options(populate_existing=True))
    for session in result.scalars().all():
        if session.stage in (IngestionStage.PREVIEW_READY, IngestionStage.CONFIRMING):
            assert session.preview_chunks
        else:
            assert not session.preview_chunks
    assert waiting.preview_chunks


@pytest.mark.asyncio
async def test_list_pending_sessions(manager):
    waiting = await preview_session(manager)
    done = await preview_session(manager)
    await manager.confirm(done.session_id)

    pending = await manager.list_pending_sessions("agent-1")

    assert [session.session_id for session in pending] == [waiting.session_id]


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(manager):
    with pytest.raises(NotFound):
        await manager.get_status("missing")
    with pytest.raises(NotFound):
        await manager.confirm("missing")
