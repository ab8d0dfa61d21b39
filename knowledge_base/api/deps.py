from collections.abc import AsyncIterator
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.db.session import AsyncSessionLocal
from knowledge_base.services.ingestion.service import IngestionSessionManager
from knowledge_base.services.interfaces import VectorStore
from knowledge_base.services.knowledge.access_log import ChunkAccessLog
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.search import KnowledgeSearchService
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry
from knowledge_base.services.vector_store import Mem0VectorStore

logger = logging.getLogger(__name__)

_vector_store: Optional[VectorStore] = None


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for getting async database session."""
    async with AsyncSessionLocal() as session:
        yield session


def get_vector_store() -> VectorStore:
    """Process-wide vector store; the Mem0 client itself is created on first use."""
    global _vector_store
    if _vector_store is None:
        _vector_store = Mem0VectorStore()
    return _vector_store


def get_clock() -> Clock:
    return SystemClock()


def get_deletion_dispatcher() -> Callable[[str], None]:
    """Hands queued deletions to the Celery worker."""
    from knowledge_base.worker.tasks.deletion_tasks import dispatch_deletion
    return dispatch_deletion


def get_ingestion_manager(
    db: AsyncSession = Depends(get_db),
    vector_store: VectorStore = Depends(get_vector_store),
    clock: Clock = Depends(get_clock),
) -> IngestionSessionManager:
    return IngestionSessionManager(db, vector_store, clock=clock)


def get_deletion_engine(
    db: AsyncSession = Depends(get_db),
    vector_store: VectorStore = Depends(get_vector_store),
    clock: Clock = Depends(get_clock),
    dispatcher: Callable[[str], None] = Depends(get_deletion_dispatcher),
) -> DeletionQueueEngine:
    return DeletionQueueEngine(db, vector_store, clock=clock, dispatcher=dispatcher)


def get_metadata_index(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AgentKnowledgeMetadataIndex:
    return AgentKnowledgeMetadataIndex(db, clock)


def get_search_service(
    db: AsyncSession = Depends(get_db),
    vector_store: VectorStore = Depends(get_vector_store),
    clock: Clock = Depends(get_clock),
) -> KnowledgeSearchService:
    return KnowledgeSearchService(db, vector_store, clock=clock)


def get_access_log(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ChunkAccessLog:
    return ChunkAccessLog(db, clock)


def get_audit_log(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> DeletedFileAuditLog:
    return DeletedFileAuditLog(db, clock)


def get_document_registry(db: AsyncSession = Depends(get_db)) -> DocumentRegistry:
    return DocumentRegistry(db)


def get_chunk_store(db: AsyncSession = Depends(get_db)) -> ChunkStore:
    return ChunkStore(db)
