"""Deletion Queue Engine.

Deletion requests are queued and worked off in batches so no request ever
deletes a whole namespace inline. ``processed_items`` is the durable
checkpoint: every batch advances it with a compare-and-set against the value
the batch started from, in the same transaction that removes the local chunk
rows. A worker that dies mid-batch leaves the checkpoint untouched and the
remaining rows in place, so the next run resumes where the last commit ended.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.core.config import settings
from knowledge_base.core.exceptions import (
    AgentDeleting,
    DeletionPartialFailure,
    InvalidInput,
    InvalidState,
    KnowledgeBaseError,
    NotFound,
)
from knowledge_base.db.models.deletion_queue import (
    DeletionQueueEntry,
    DeletionStatus,
    DeletionType,
    OPEN_DELETION_STATUSES,
)
from knowledge_base.schemas.knowledge import BatchResult, DeletionProgress
from knowledge_base.services.interfaces import VectorStore
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry

logger = logging.getLogger(__name__)


class DeletionQueueEngine:
    """Service for queueing and executing batched deletions."""

    def __init__(
        self,
        db_session: AsyncSession,
        vector_store: VectorStore,
        clock: Optional[Clock] = None,
        batch_size: Optional[int] = None,
        dispatcher: Optional[Callable[[str], None]] = None,
    ):
        """Initialize the engine.

        Args:
            db_session: SQLAlchemy async session
            vector_store: Store whose entries are removed alongside the chunk rows
            clock: Time source for queue timestamps
            batch_size: Chunks removed per batch step
            dispatcher: Called with the queue id after an entry is committed,
                typically to schedule the background worker
        """
        self.db = db_session
        self.vector_store = vector_store
        self.clock = clock or SystemClock()
        self.batch_size = batch_size or settings.DELETION_BATCH_SIZE
        self.dispatcher = dispatcher

        self.chunks = ChunkStore(db_session)
        self.documents = DocumentRegistry(db_session)
        self.metadata_index = AgentKnowledgeMetadataIndex(db_session, self.clock)
        self.audit_log = DeletedFileAuditLog(db_session, self.clock)

    async def _get(self, queue_id: str) -> DeletionQueueEntry:
        entry = await self.db.get(DeletionQueueEntry, queue_id, populate_existing=True)
        if entry is None:
            raise NotFound(f"Deletion queue entry not found: {queue_id}")
        return entry

    async def get_entry(self, queue_id: str) -> DeletionQueueEntry:
        return await self._get(queue_id)

    async def _open_entry(self, agent_id: str, deletion_type: DeletionType) -> Optional[DeletionQueueEntry]:
        result = await self.db.execute(
            select(DeletionQueueEntry)
            .where(DeletionQueueEntry.agent_id == agent_id)
            .where(DeletionQueueEntry.deletion_type == deletion_type)
            .where(DeletionQueueEntry.status.in_(OPEN_DELETION_STATUSES))
            .order_by(DeletionQueueEntry.created_at)
            .limit(1)
        )
        return result.scalars().first()

    def _dispatch(self, entry: DeletionQueueEntry) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher(entry.id)
        except Exception as e:
            # The recovery sweep picks up entries that were never dispatched
            logger.error(f"Failed to dispatch deletion {entry.id}: {e}")

    # Enqueueing

    async def _create_entry(
        self,
        agent_id: str,
        organization_id: str,
        deletion_type: DeletionType,
        target_keys: Optional[Sequence[str]] = None,
        document_ids: Optional[Sequence[str]] = None,
        remove_agent: bool = False,
    ) -> DeletionQueueEntry:
        if deletion_type == DeletionType.SPECIFIC_DOCUMENTS and target_keys is None:
            raise InvalidInput("specific_documents deletion requires target_keys")
        if deletion_type == DeletionType.CLEANUP_ORPHANS and target_keys is None:
            target_keys = await self.chunks.orphan_ids(agent_id)

        namespace_keys: Optional[List[str]] = None
        if deletion_type == DeletionType.FULL_NAMESPACE:
            # Counted under the metadata row lock so no confirm can add chunks unseen
            await self.metadata_index.lock(agent_id, organization_id)
            namespace_keys = await self.chunks.ids_for_agent(agent_id)

        if target_keys is not None:
            keys: Optional[List[str]] = sorted(set(target_keys))
            total_items = len(keys)
        elif namespace_keys is not None:
            keys = None
            total_items = len(namespace_keys)
        else:
            keys = None
            total_items = await self.chunks.count_for_agent(agent_id)

        entry = DeletionQueueEntry(
            id=str(uuid4()),
            agent_id=agent_id,
            organization_id=organization_id,
            deletion_type=deletion_type,
            target_keys=keys,
            document_ids=list(document_ids or []),
            remove_agent=remove_agent,
            total_items=total_items,
            processed_items=0,
            status=DeletionStatus.PENDING,
            batch_size=self.batch_size,
            created_at=self.clock.now(),
        )
        self.db.add(entry)
        await self.db.flush()

        if deletion_type == DeletionType.FULL_NAMESPACE:
            await self.metadata_index.mark_deleting(agent_id, organization_id, chunk_keys=namespace_keys)

        logger.info(f"Queued {deletion_type.value} deletion {entry.id} for agent {agent_id}: {total_items} items")
        return entry

    async def enqueue(
        self,
        agent_id: str,
        organization_id: str,
        deletion_type: DeletionType,
        target_keys: Optional[Sequence[str]] = None,
        remove_agent: bool = False,
    ) -> DeletionQueueEntry:
        """Queue a deletion request.

        A ``full_namespace`` request unregisters the agent's documents like
        ``delete_agent_namespace``; while one is already open for the agent the
        open entry is returned instead of queueing a second one.
        """
        deletion_type = DeletionType(deletion_type)
        if deletion_type == DeletionType.FULL_NAMESPACE:
            return await self.delete_agent_namespace(agent_id, organization_id, remove_agent=remove_agent)

        try:
            entry = await self._create_entry(agent_id, organization_id, deletion_type,
                                             target_keys=target_keys, remove_agent=remove_agent)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error queueing deletion for agent {agent_id}: {str(e)}")
            raise

        self._dispatch(entry)
        return entry

    async def enqueue_orphan_cleanup(self, agent_id: str, organization_id: str) -> DeletionQueueEntry:
        return await self.enqueue(agent_id, organization_id, DeletionType.CLEANUP_ORPHANS)

    async def delete_document(self, document_id: str, deleted_by: Optional[str] = None,
                              reason: Optional[str] = None) -> DeletionQueueEntry:
        """Audit and unregister a document, then queue removal of its chunks."""
        document = await self.documents.require(document_id)
        agent_id = document.agent_id
        organization_id = document.organization_id
        if await self.metadata_index.is_deleting(agent_id):
            raise AgentDeleting(f"Agent {agent_id} knowledge is already being deleted")

        try:
            chunk_ids = await self.chunks.ids_for_document(document_id)
            await self.audit_log.record_deletion(document, deleted_by=deleted_by, reason=reason)
            await self.documents.remove(document)
            entry = await self._create_entry(
                agent_id,
                organization_id,
                DeletionType.SPECIFIC_DOCUMENTS,
                target_keys=chunk_ids,
                document_ids=[document_id],
            )
            await self.metadata_index.refresh(agent_id, organization_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error deleting document {document_id}: {str(e)}")
            raise

        logger.info(f"Document {document_id} removed from registry; {len(chunk_ids)} chunks queued in {entry.id}")
        self._dispatch(entry)
        return entry

    async def delete_agent_namespace(
        self,
        agent_id: str,
        organization_id: str,
        remove_agent: bool = False,
        deleted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> DeletionQueueEntry:
        """Audit and unregister every document of an agent, then queue a namespace wipe."""
        existing = await self._open_entry(agent_id, DeletionType.FULL_NAMESPACE)
        if existing is not None:
            logger.info(f"Full namespace deletion already queued for agent {agent_id}: {existing.id}")
            return existing

        try:
            # A wipe queued while this one waited on the row lock wins
            await self.metadata_index.lock(agent_id, organization_id)
            existing = await self._open_entry(agent_id, DeletionType.FULL_NAMESPACE)
            if existing is not None:
                existing_id = existing.id
                await self.db.rollback()
                return await self._get(existing_id)

            documents = await self.documents.list_by_agent(agent_id)
            for document in documents:
                await self.audit_log.record_deletion(document, deleted_by=deleted_by,
                                                     reason=reason or "agent namespace deleted")
                await self.documents.remove(document)
            entry = await self._create_entry(
                agent_id,
                organization_id,
                DeletionType.FULL_NAMESPACE,
                document_ids=[document.document_id for document in documents],
                remove_agent=remove_agent,
            )
            await self.metadata_index.refresh(agent_id, organization_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error deleting namespace of agent {agent_id}: {str(e)}")
            raise

        logger.info(f"Agent {agent_id}: {len(documents)} documents unregistered, namespace wipe queued in {entry.id}")
        self._dispatch(entry)
        return entry

    # Execution

    def _result(self, entry: DeletionQueueEntry, removed: int = 0) -> BatchResult:
        return BatchResult(
            queue_id=entry.id,
            removed=removed,
            processed_items=entry.processed_items,
            total_items=entry.total_items,
            status=entry.status.value,
            done=not entry.is_open,
        )

    async def _claim(self, entry: DeletionQueueEntry) -> DeletionQueueEntry:
        """Move a pending entry to processing; a lost race just reloads it."""
        await self.db.execute(
            update(DeletionQueueEntry)
            .where(DeletionQueueEntry.id == entry.id)
            .where(DeletionQueueEntry.status == DeletionStatus.PENDING)
            .values(status=DeletionStatus.PROCESSING, started_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return await self._get(entry.id)

    async def _delete_vector(self, namespace: str, rag_entry_id: Optional[str]) -> bool:
        if not rag_entry_id:
            return False
        return await self.vector_store.delete(namespace, rag_entry_id)

    async def process_batch(self, queue_id: str) -> BatchResult:
        """Execute one batch step of a queue entry.

        Terminal entries are returned unchanged. Chunks whose vector entry
        could not be deleted stay in place and are retried by a later batch;
        the successful part of the batch is committed before
        ``DeletionPartialFailure`` is raised.
        """
        entry = await self._get(queue_id)
        if not entry.is_open:
            return self._result(entry)
        if entry.status == DeletionStatus.PENDING:
            entry = await self._claim(entry)
            if entry.status != DeletionStatus.PROCESSING:
                return self._result(entry)

        checkpoint = entry.processed_items
        total_items = entry.total_items
        rows = await self.chunks.next_batch(entry.agent_id, entry.target_keys, entry.batch_size)
        if not rows:
            return await self._finalize(entry)

        batch = [(row.chunk_id, row.rag_namespace or entry.agent_id, row.rag_entry_id) for row in rows]
        # End the read transaction before calling out to the vector store
        await self.db.commit()

        results = await asyncio.gather(
            *[self._delete_vector(namespace, rag_entry_id) for _, namespace, rag_entry_id in batch],
            return_exceptions=True,
        )
        succeeded = [chunk_id for (chunk_id, _, _), result in zip(batch, results)
                     if not isinstance(result, BaseException)]
        failed = [(chunk_id, result) for (chunk_id, _, _), result in zip(batch, results)
                  if isinstance(result, BaseException)]

        try:
            removed = await self.chunks.delete_ids(succeeded)
            processed = checkpoint + removed
            # A namespace wipe also takes chunks that landed after it was counted
            total_items = max(total_items, processed)
            advanced = await self.db.execute(
                update(DeletionQueueEntry)
                .where(DeletionQueueEntry.id == queue_id)
                .where(DeletionQueueEntry.status == DeletionStatus.PROCESSING)
                .where(DeletionQueueEntry.processed_items == checkpoint)
                .values(processed_items=processed, total_items=total_items)
                .execution_options(synchronize_session=False)
            )
            if advanced.rowcount != 1:
                await self.db.rollback()
                entry = await self._get(queue_id)
                logger.warning(f"Deletion {queue_id} changed while a batch ran "
                               f"(status {entry.status.value}, processed {entry.processed_items}); batch discarded")
                return self._result(entry)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error committing deletion batch for {queue_id}: {str(e)}")
            raise

        logger.info(f"Deletion {queue_id}: removed {removed} chunks, progress {processed}/{total_items}")
        entry = await self._get(queue_id)

        if failed:
            failed_keys = [chunk_id for chunk_id, _ in failed]
            first_error = failed[0][1]
            logger.warning(f"Deletion {queue_id}: {len(failed_keys)} vector deletes failed: {first_error}")
            raise DeletionPartialFailure(
                f"{len(failed_keys)} of {len(batch)} vector deletes failed: {first_error}",
                removed=removed,
                failed_keys=failed_keys,
            )

        if processed >= total_items:
            return await self._finalize(entry, removed=removed)
        return self._result(entry, removed=removed)

    async def _finalize(self, entry: DeletionQueueEntry, removed: int = 0) -> BatchResult:
        queue_id = entry.id
        agent_id = entry.agent_id
        organization_id = entry.organization_id
        if entry.deletion_type == DeletionType.FULL_NAMESPACE:
            remaining = await self.chunks.count_for_agent(agent_id)
            if remaining:
                await self.db.commit()
                logger.info(f"Deletion {queue_id}: {remaining} chunks still in namespace of agent {agent_id}")
                return self._result(entry, removed=removed)
        if entry.processed_items < entry.total_items:
            logger.warning(f"Deletion {queue_id} drained its scope at "
                           f"{entry.processed_items}/{entry.total_items}; some targets were already gone")

        try:
            completed = await self.db.execute(
                update(DeletionQueueEntry)
                .where(DeletionQueueEntry.id == queue_id)
                .where(DeletionQueueEntry.status == DeletionStatus.PROCESSING)
                .values(
                    status=DeletionStatus.COMPLETED,
                    processed_items=DeletionQueueEntry.total_items,
                    completed_at=self.clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if completed.rowcount != 1:
                await self.db.rollback()
                return self._result(await self._get(queue_id), removed=removed)

            metadata = await self.metadata_index.refresh(agent_id, organization_id)
            if entry.deletion_type == DeletionType.FULL_NAMESPACE:
                if entry.remove_agent and metadata.total_chunks == 0:
                    await self.metadata_index.mark_deleted(agent_id, organization_id)
                else:
                    await self.metadata_index.mark_active(agent_id, organization_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error completing deletion {queue_id}: {str(e)}")
            raise

        logger.info(f"Deletion {queue_id} completed for agent {agent_id}")
        return self._result(await self._get(queue_id), removed=removed)

    async def run(self, queue_id: str, max_retries: Optional[int] = None) -> BatchResult:
        """Process batches until the entry is terminal.

        ``DeletionPartialFailure`` is retried up to ``max_retries`` consecutive
        times; past that, or on any other error, the entry is failed.
        """
        max_retries = settings.DELETION_MAX_RETRIES if max_retries is None else max_retries
        retries = 0
        while True:
            try:
                result = await self.process_batch(queue_id)
            except DeletionPartialFailure as e:
                retries += 1
                if retries > max_retries:
                    await self.fail(queue_id, e.message)
                    raise
                logger.warning(f"Retrying deletion {queue_id} after partial failure ({retries}/{max_retries})")
                continue
            except NotFound:
                raise
            except Exception as e:
                message = e.message if isinstance(e, KnowledgeBaseError) else str(e)
                await self.fail(queue_id, message)
                raise

            if result.done:
                return result
            retries = 0

    # Status changes

    async def _settle_agent(self, entry: DeletionQueueEntry) -> None:
        """Recount what a stopped entry left behind and lift the namespace block."""
        await self.metadata_index.refresh(entry.agent_id, entry.organization_id)
        if entry.deletion_type == DeletionType.FULL_NAMESPACE:
            await self.metadata_index.mark_active(entry.agent_id, entry.organization_id)

    async def _close(self, queue_id: str, status: DeletionStatus,
                     error_message: Optional[str] = None) -> DeletionQueueEntry:
        entry = await self._get(queue_id)
        if not entry.is_open:
            raise InvalidState(f"Deletion {queue_id} is already {entry.status.value}")

        try:
            closed = await self.db.execute(
                update(DeletionQueueEntry)
                .where(DeletionQueueEntry.id == queue_id)
                .where(DeletionQueueEntry.status.in_(OPEN_DELETION_STATUSES))
                .values(status=status, error_message=error_message, completed_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                await self.db.rollback()
                entry = await self._get(queue_id)
                raise InvalidState(f"Deletion {queue_id} is already {entry.status.value}")
            await self._settle_agent(entry)
            await self.db.commit()
        except KnowledgeBaseError:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error closing deletion {queue_id}: {str(e)}")
            raise

        return await self._get(queue_id)

    async def cancel(self, queue_id: str) -> DeletionQueueEntry:
        """Stop a pending or processing entry; the next batch observes the flag."""
        entry = await self._close(queue_id, DeletionStatus.CANCELLED)
        logger.info(f"Cancelled deletion {queue_id} at {entry.processed_items}/{entry.total_items}")
        return entry

    async def fail(self, queue_id: str, message: str) -> Optional[DeletionQueueEntry]:
        """Mark an entry failed. No-op for entries that are already terminal."""
        try:
            entry = await self._close(queue_id, DeletionStatus.FAILED, error_message=message)
        except InvalidState:
            return None
        logger.error(f"Deletion {queue_id} failed: {message}")
        return entry

    # Queries

    async def get_status(self, agent_id: str) -> DeletionProgress:
        """Progress of the agent's open deletion, else of its latest one."""
        base = select(DeletionQueueEntry).where(DeletionQueueEntry.agent_id == agent_id)
        result = await self.db.execute(
            base.where(DeletionQueueEntry.status.in_(OPEN_DELETION_STATUSES))
            .order_by(DeletionQueueEntry.created_at.desc())
            .limit(1)
        )
        entry = result.scalars().first()
        if entry is None:
            result = await self.db.execute(base.order_by(DeletionQueueEntry.created_at.desc()).limit(1))
            entry = result.scalars().first()
        if entry is None:
            return DeletionProgress(in_progress=False)

        if entry.total_items:
            progress = round(entry.processed_items / entry.total_items * 100, 1)
        else:
            progress = 100.0 if entry.status == DeletionStatus.COMPLETED else 0.0
        return DeletionProgress(
            in_progress=entry.is_open,
            queue_id=entry.id,
            status=entry.status.value,
            deletion_type=entry.deletion_type.value,
            processed_items=entry.processed_items,
            total_items=entry.total_items,
            progress=progress,
            created_at=entry.created_at,
            completed_at=entry.completed_at,
            error=entry.error_message,
        )

    async def resumable_entries(self) -> List[str]:
        """Ids of entries a restarted worker must pick up, oldest first."""
        result = await self.db.execute(
            select(DeletionQueueEntry.id)
            .where(DeletionQueueEntry.status.in_(OPEN_DELETION_STATUSES))
            .order_by(DeletionQueueEntry.created_at)
        )
        return list(result.scalars().all())
