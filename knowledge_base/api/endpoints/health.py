from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.api.deps import get_db
from knowledge_base.core.config import settings
from knowledge_base.db.models.deletion_queue import DeletionQueueEntry, OPEN_DELETION_STATUSES

router = APIRouter()


@router.get("")
async def health_check(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    """Health check endpoint that verifies the database and reports deletion backlog."""
    open_deletions = None
    try:
        await db.execute(text("SELECT 1"))
        result = await db.execute(
            select(func.count(DeletionQueueEntry.id)).where(DeletionQueueEntry.status.in_(OPEN_DELETION_STATUSES))
        )
        open_deletions = result.scalar_one()
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    return {
        "status": "healthy",
        "database": db_status,
        "vector_store": "configured" if settings.MEM0_API_KEY else "not configured",
        "open_deletions": open_deletions,
    }
