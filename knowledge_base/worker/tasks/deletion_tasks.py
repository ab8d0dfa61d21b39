"""Celery tasks that work off the deletion queue."""

import logging
from typing import Any, Dict

import redis

from knowledge_base.core.config import settings
from knowledge_base.core.exceptions import KnowledgeBaseError, NotFound
from knowledge_base.db.session import get_async_session
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine
from knowledge_base.services.vector_store import Mem0VectorStore
from knowledge_base.worker.celery_app import celery_app
from knowledge_base.worker.tasks.runner import run_async

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL)


async def _run_deletion(queue_id: str) -> Dict[str, Any]:
    async with get_async_session() as db:
        engine = DeletionQueueEngine(db, Mem0VectorStore())
        result = await engine.run(queue_id, max_retries=settings.DELETION_MAX_RETRIES)
        return result.model_dump()


async def _resumable_entries() -> list:
    async with get_async_session() as db:
        engine = DeletionQueueEngine(db, Mem0VectorStore())
        return await engine.resumable_entries()


@celery_app.task(name="knowledge_base.worker.tasks.deletion_tasks.process_deletion_queue")
def process_deletion_queue(queue_id: str) -> Dict[str, Any]:
    """Process every remaining batch of a deletion queue entry.

    Args:
        queue_id: ID of the deletion queue entry

    Returns:
        Final batch result, or a skipped/error marker
    """
    lock = get_redis_client().lock(
        f"knowledge_base:deletion:{queue_id}",
        timeout=settings.DELETION_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    if not lock.acquire():
        logger.info(f"Deletion {queue_id} is already being processed by another worker")
        return {"status": "skipped", "queue_id": queue_id, "reason": "locked"}

    logger.info(f"TASK: Processing deletion queue entry {queue_id}")
    try:
        result = run_async(lambda: _run_deletion(queue_id))
        logger.info(f"Deletion {queue_id} finished with status {result['status']}")
        return result
    except NotFound:
        logger.warning(f"Deletion queue entry {queue_id} no longer exists")
        return {"status": "error", "queue_id": queue_id, "reason": "not found"}
    except KnowledgeBaseError as e:
        logger.error(f"Deletion {queue_id} failed: {e.message}")
        return {"status": "error", "queue_id": queue_id, "reason": e.message}
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            logger.warning(f"Lock for deletion {queue_id} expired before release")


@celery_app.task(name="knowledge_base.worker.tasks.deletion_tasks.resume_deletion_queue")
def resume_deletion_queue() -> Dict[str, Any]:
    """Re-dispatch pending and processing entries, e.g. after a worker restart."""
    queue_ids = run_async(_resumable_entries)
    for queue_id in queue_ids:
        process_deletion_queue.delay(queue_id)
    if queue_ids:
        logger.info(f"Re-dispatched {len(queue_ids)} open deletion queue entries")
    return {"status": "success", "dispatched": len(queue_ids)}


def dispatch_deletion(queue_id: str) -> None:
    """Hand a committed queue entry to the worker."""
    process_deletion_queue.delay(queue_id)
