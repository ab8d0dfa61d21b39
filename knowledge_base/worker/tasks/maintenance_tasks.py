"""Periodic sweeps scheduled by Celery beat."""

import logging
from typing import Any, Dict

from knowledge_base.db.session import get_async_session
from knowledge_base.services.ingestion.service import IngestionSessionManager
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog
from knowledge_base.services.vector_store import Mem0VectorStore
from knowledge_base.worker.celery_app import celery_app
from knowledge_base.worker.tasks.runner import run_async

logger = logging.getLogger(__name__)


async def _expire_stale() -> int:
    async with get_async_session() as db:
        manager = IngestionSessionManager(db, Mem0VectorStore())
        return await manager.expire_stale()


async def _purge_expired() -> int:
    async with get_async_session() as db:
        return await DeletedFileAuditLog(db).purge_expired()


@celery_app.task(name="knowledge_base.worker.tasks.maintenance_tasks.expire_stale_sessions")
def expire_stale_sessions() -> Dict[str, Any]:
    """Cancel ingestion sessions whose preview window elapsed."""
    expired = run_async(_expire_stale)
    logger.info(f"Expired {expired} stale ingestion sessions")
    return {"status": "success", "expired": expired}


@celery_app.task(name="knowledge_base.worker.tasks.maintenance_tasks.purge_expired_deletions")
def purge_expired_deletions() -> Dict[str, Any]:
    """Remove deleted-file records past their retention window."""
    purged = run_async(_purge_expired)
    logger.info(f"Purged {purged} deleted-file records")
    return {"status": "success", "purged": purged}
