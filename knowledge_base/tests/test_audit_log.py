import pytest
from sqlalchemy import func, select

from knowledge_base.db.models.deleted_file import DeletedFile
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog


@pytest.mark.asyncio
async def test_purge_removes_only_expired_records(deletion_engine, ingest_document, db_session, clock):
    old = await ingest_document(chunk_count=2, file_name="old.txt")
    await deletion_engine.delete_document(old.document_id, reason="superseded")
    clock.advance(days=10)
    recent = await ingest_document(chunk_count=2, file_name="recent.txt")
    await deletion_engine.delete_document(recent.document_id)

    audit_log = DeletedFileAuditLog(db_session, clock, retention_days=30)
    assert await audit_log.purge_expired() == 0

    clock.advance(days=21)
    assert await audit_log.purge_expired() == 1

    remaining = await audit_log.list_deleted("agent-1")
    assert [record.file_name for record in remaining] == ["recent.txt"]
    total = await db_session.execute(select(func.count()).select_from(DeletedFile))
    assert total.scalar_one() == 1


@pytest.mark.asyncio
async def test_record_snapshots_document(deletion_engine, ingest_document, db_session, clock):
    session = await ingest_document(chunk_count=3, file_name="guide.txt")

    await deletion_engine.delete_document(session.document_id, deleted_by="admin")

    audit_log = DeletedFileAuditLog(db_session, clock)
    (record,) = await audit_log.list_deleted("agent-1")
    assert record.file_type == ".txt"
    assert record.deleted_by == "admin"
    assert record.backup_metadata["status"] == "completed"
    assert record.backup_metadata["document_metadata"] == {"title": "guide.txt"}
    assert record.is_purged is False
    assert (record.purge_at - record.deleted_at).days == 30
    assert await audit_log.list_deleted("agent-2") == []
