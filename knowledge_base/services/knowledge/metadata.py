"""Agent Knowledge Metadata Index.

Per-agent rollup of chunk counts, byte sizes and search warmth. Counts are
never incremented in place: every boundary (confirm, batch completion)
recomputes them from the Chunk Store, which keeps the rollup correct even
when ingestion and deletion interleave.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.db.models.agent_knowledge_metadata import AgentKnowledgeMetadata, KnowledgeStatus
from knowledge_base.schemas.knowledge import AgentKnowledgeStats, OrganizationStats
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry

logger = logging.getLogger(__name__)


class AgentKnowledgeMetadataIndex:
    """Reads and recomputes ``agent_knowledge_metadata`` rows.

    Like the stores it sits on, the index flushes but never commits.
    """

    def __init__(self, db_session: AsyncSession, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or SystemClock()
        self.chunks = ChunkStore(db_session)
        self.documents = DocumentRegistry(db_session)

    async def get(self, agent_id: str) -> Optional[AgentKnowledgeMetadata]:
        return await self.db.get(AgentKnowledgeMetadata, agent_id, populate_existing=True)

    async def get_or_create(self, agent_id: str, organization_id: str) -> AgentKnowledgeMetadata:
        metadata = await self.get(agent_id)
        if metadata is None:
            now = self.clock.now()
            metadata = AgentKnowledgeMetadata(
                agent_id=agent_id,
                organization_id=organization_id,
                total_chunks=0,
                total_size_bytes=0,
                document_count=0,
                status=KnowledgeStatus.ACTIVE,
                search_count=0,
                created_at=now,
                updated_at=now,
            )
            self.db.add(metadata)
            await self.db.flush()
            logger.info(f"Created knowledge metadata for agent {agent_id}")
        return metadata

    async def get_stats(self, agent_id: str) -> AgentKnowledgeStats:
        """Row projection, or the "no knowledge yet" default for unknown agents."""
        metadata = await self.get(agent_id)
        if metadata is None:
            return AgentKnowledgeStats(agent_id=agent_id)
        return AgentKnowledgeStats(
            agent_id=metadata.agent_id,
            organization_id=metadata.organization_id,
            exists=True,
            total_chunks=metadata.total_chunks,
            total_size_bytes=metadata.total_size_bytes,
            document_count=metadata.document_count,
            status=metadata.status.value,
            last_ingested_at=metadata.last_ingested_at,
            last_searched_at=metadata.last_searched_at,
            search_cache_hit_rate=metadata.search_cache_hit_rate,
            avg_search_latency_ms=metadata.avg_search_latency_ms,
        )

    async def refresh(self, agent_id: str, organization_id: str, ingested: bool = False) -> AgentKnowledgeMetadata:
        """Recompute totals from the Chunk Store and Document Registry."""
        # Pending chunk/document rows must be visible to the aggregate queries
        await self.db.flush()
        metadata = await self.get_or_create(agent_id, organization_id)
        total_chunks, total_size = await self.chunks.totals_for_agent(agent_id)
        document_count = await self.documents.count_for_agent(agent_id)

        now = self.clock.now()
        metadata.total_chunks = total_chunks
        metadata.total_size_bytes = total_size
        metadata.document_count = document_count
        metadata.updated_at = now
        if ingested:
            metadata.last_ingested_at = now
        await self.db.flush()

        logger.debug(f"Refreshed metadata for agent {agent_id}: {total_chunks} chunks, "
                     f"{total_size} bytes, {document_count} documents")
        return metadata

    async def lock(self, agent_id: str, organization_id: str) -> AgentKnowledgeMetadata:
        """Load the agent row with ``SELECT ... FOR UPDATE``.

        The lock is held until the caller commits, which serializes a confirm
        against a namespace wipe of the same agent.
        """
        await self.get_or_create(agent_id, organization_id)
        return await self.db.get(AgentKnowledgeMetadata, agent_id, populate_existing=True, with_for_update=True)

    async def is_deleting(self, agent_id: str) -> bool:
        metadata = await self.get(agent_id)
        return metadata is not None and metadata.status == KnowledgeStatus.DELETING

    async def _set_status(self, agent_id: str, organization_id: str, status: KnowledgeStatus) -> AgentKnowledgeMetadata:
        metadata = await self.get_or_create(agent_id, organization_id)
        if metadata.status != status:
            logger.info(f"Agent {agent_id} knowledge status {metadata.status.value} -> {status.value}")
        metadata.status = status
        if status != KnowledgeStatus.DELETING:
            # Keys of a settled wipe
            metadata.chunk_keys_cache = None
        metadata.updated_at = self.clock.now()
        await self.db.flush()
        return metadata

    async def mark_deleting(self, agent_id: str, organization_id: str,
                            chunk_keys: Optional[List[str]] = None) -> AgentKnowledgeMetadata:
        """Block ingestion for the agent and cache the keys the wipe will remove."""
        await self.lock(agent_id, organization_id)
        metadata = await self._set_status(agent_id, organization_id, KnowledgeStatus.DELETING)
        if chunk_keys is not None:
            metadata.chunk_keys_cache = list(chunk_keys)
            await self.db.flush()
        return metadata

    async def mark_active(self, agent_id: str, organization_id: str) -> AgentKnowledgeMetadata:
        return await self._set_status(agent_id, organization_id, KnowledgeStatus.ACTIVE)

    async def mark_deleted(self, agent_id: str, organization_id: str) -> AgentKnowledgeMetadata:
        return await self._set_status(agent_id, organization_id, KnowledgeStatus.DELETED)

    async def record_search(self, agent_id: str, organization_id: str,
                            latency_ms: float, cache_hit: bool = False) -> AgentKnowledgeMetadata:
        """Fold one search into the running latency and cache-hit averages."""
        metadata = await self.get_or_create(agent_id, organization_id)
        count = metadata.search_count or 0
        avg_latency = metadata.avg_search_latency_ms or 0.0
        hit_rate = metadata.search_cache_hit_rate or 0.0

        metadata.avg_search_latency_ms = (avg_latency * count + latency_ms) / (count + 1)
        metadata.search_cache_hit_rate = (hit_rate * count + (1.0 if cache_hit else 0.0)) / (count + 1)
        metadata.search_count = count + 1
        metadata.last_searched_at = self.clock.now()
        await self.db.flush()
        return metadata

    async def get_organization_stats(self, organization_id: str) -> OrganizationStats:
        query = (
            select(
                func.count(AgentKnowledgeMetadata.agent_id),
                func.coalesce(func.sum(AgentKnowledgeMetadata.total_chunks), 0),
                func.coalesce(func.sum(AgentKnowledgeMetadata.total_size_bytes), 0),
                func.coalesce(func.sum(AgentKnowledgeMetadata.document_count), 0),
                func.coalesce(func.sum(case((AgentKnowledgeMetadata.status == KnowledgeStatus.ACTIVE, 1), else_=0)), 0),
                func.coalesce(func.sum(case((AgentKnowledgeMetadata.status == KnowledgeStatus.DELETING, 1), else_=0)), 0),
            )
            .where(AgentKnowledgeMetadata.organization_id == organization_id)
        )
        result = await self.db.execute(query)
        agents, chunks, size, documents, active, deleting = result.one()
        return OrganizationStats(
            organization_id=organization_id,
            total_agents=int(agents or 0),
            total_chunks=int(chunks or 0),
            total_size_bytes=int(size or 0),
            total_documents=int(documents or 0),
            active_agents=int(active or 0),
            deleting_agents=int(deleting or 0),
        )
