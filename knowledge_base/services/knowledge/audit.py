"""Deleted-File Audit Log.

One denormalized record per removed document, kept for a retention window so
"what existed and why is it gone" can be answered after the chunk rows are
gone. Purging first flags the record, then removes it.
"""

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.core.config import settings
from knowledge_base.core.constants import PURGE_SWEEP_LIMIT
from knowledge_base.db.models.deleted_file import DeletedFile
from knowledge_base.db.models.document import Document

logger = logging.getLogger(__name__)


class DeletedFileAuditLog:
    """Service for recording and purging deleted-file records."""

    def __init__(self, db_session: AsyncSession, clock: Optional[Clock] = None,
                 retention_days: Optional[int] = None):
        self.db = db_session
        self.clock = clock or SystemClock()
        self.retention = timedelta(days=retention_days or settings.DELETED_FILE_RETENTION_DAYS)

    async def record_deletion(self, document: Document, deleted_by: Optional[str] = None,
                              reason: Optional[str] = None) -> DeletedFile:
        """Snapshot ``document`` before it is removed. Flushes, does not commit."""
        now = self.clock.now()
        record = DeletedFile(
            id=str(uuid4()),
            document_id=document.document_id,
            organization_id=document.organization_id,
            agent_id=document.agent_id,
            file_name=document.file_name,
            file_type=document.file_type,
            file_size=document.file_size or 0,
            source_type=document.source_type,
            chunk_count=document.chunk_count or 0,
            rag_entry_ids=list(document.rag_entry_ids or []),
            deleted_by=deleted_by,
            deletion_reason=reason,
            deleted_at=now,
            backup_metadata={
                "status": document.status.value if document.status else None,
                "document_metadata": dict(document.document_metadata or {}),
                "error_message": document.error_message,
            },
            purge_at=now + self.retention,
            is_purged=False,
            original_uploaded_at=document.uploaded_at,
            original_processed_at=document.processed_at,
        )
        self.db.add(record)
        await self.db.flush()
        logger.info(f"Recorded deletion of document {document.document_id} ({document.file_name})")
        return record

    async def purge_expired(self, limit: int = PURGE_SWEEP_LIMIT) -> int:
        """Remove records past ``purge_at``; returns how many were purged."""
        now = self.clock.now()
        try:
            result = await self.db.execute(
                select(DeletedFile.id)
                .where(DeletedFile.is_purged.is_(False))
                .where(DeletedFile.purge_at < now)
                .order_by(DeletedFile.purge_at)
                .limit(limit)
            )
            record_ids = list(result.scalars().all())
            if not record_ids:
                return 0

            # Flag first so the purge itself is visible if removal is interrupted
            await self.db.execute(
                update(DeletedFile)
                .where(DeletedFile.id.in_(record_ids))
                .values(is_purged=True, purged_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

            await self.db.execute(
                delete(DeletedFile)
                .where(DeletedFile.id.in_(record_ids))
                .where(DeletedFile.is_purged.is_(True))
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error purging deleted-file records: {str(e)}")
            raise

        logger.info(f"Purged {len(record_ids)} deleted-file records")
        return len(record_ids)

    async def list_deleted(self, agent_id: str) -> List[DeletedFile]:
        query = (
            select(DeletedFile)
            .where(DeletedFile.agent_id == agent_id)
            .where(DeletedFile.is_purged.is_(False))
            .order_by(DeletedFile.deleted_at.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
