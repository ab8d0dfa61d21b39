"""Knowledge search: vector lookup resolved to chunk rows, with access tracking."""

import logging
import time
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.core.exceptions import AgentDeleting, ExternalDependencyError, InvalidInput
from knowledge_base.schemas.knowledge import SearchHit
from knowledge_base.services.interfaces import VectorStore
from knowledge_base.services.knowledge.access_log import ChunkAccessLog
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.store import ChunkStore

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50


class KnowledgeSearchService:
    """Searches one agent namespace and records which chunks were retrieved."""

    def __init__(self, db_session: AsyncSession, vector_store: VectorStore, clock: Optional[Clock] = None):
        self.db = db_session
        self.vector_store = vector_store
        self.clock = clock or SystemClock()
        self.chunks = ChunkStore(db_session)
        self.access_log = ChunkAccessLog(db_session, self.clock)
        self.metadata_index = AgentKnowledgeMetadataIndex(db_session, self.clock)

    async def search(self, agent_id: str, query: str, limit: int = 5) -> List[SearchHit]:
        if not query or not query.strip():
            raise InvalidInput("Search query must not be empty")
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise InvalidInput(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")
        if await self.metadata_index.is_deleting(agent_id):
            raise AgentDeleting(f"Agent {agent_id} knowledge is being deleted")

        started = time.perf_counter()
        try:
            hits = await self.vector_store.search(agent_id, query, limit)
        except Exception as e:
            logger.error(f"Vector search failed for agent {agent_id}: {e}")
            raise ExternalDependencyError(f"Vector search failed: {e}") from e
        latency_ms = (time.perf_counter() - started) * 1000

        try:
            by_rag_id = await self.chunks.by_rag_entry_ids(agent_id, [hit.rag_entry_id for hit in hits])
            now = self.clock.now()
            results = []
            for hit in hits:
                chunk = by_rag_id.get(hit.rag_entry_id)
                if chunk is None:
                    # Vector entry whose chunk row is already gone (deletion in flight)
                    continue

                await self.access_log.record_access(agent_id, chunk.chunk_id, hit.score)
                count = chunk.access_count or 0
                chunk.avg_relevance_score = ((chunk.avg_relevance_score or 0.0) * count + hit.score) / (count + 1)
                chunk.access_count = count + 1
                chunk.last_accessed_at = now

                results.append(SearchHit(
                    chunk_id=chunk.chunk_id,
                    document_id=chunk.document_id,
                    chunk_index=chunk.chunk_index,
                    text=chunk.text,
                    score=hit.score,
                ))

            metadata = await self.metadata_index.get(agent_id)
            if metadata is not None:
                await self.metadata_index.record_search(agent_id, metadata.organization_id, latency_ms)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error recording search for agent {agent_id}: {str(e)}")
            raise

        logger.info(f"Search in agent {agent_id} returned {len(results)} chunks in {latency_ms:.1f}ms")
        return results
