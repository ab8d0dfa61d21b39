"""Chunk Access Log: how often, and how relevantly, each chunk is retrieved."""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock
from knowledge_base.core.constants import HOT_CHUNKS_DEFAULT_LIMIT
from knowledge_base.db.models.chunk_access_log import ChunkAccessLogEntry

logger = logging.getLogger(__name__)


class ChunkAccessLog:
    """Upserts one counter row per (agent, chunk key). Flushes, does not commit."""

    def __init__(self, db_session: AsyncSession, clock: Optional[Clock] = None):
        self.db = db_session
        self.clock = clock or SystemClock()

    async def _bump(self, agent_id: str, chunk_key: str, score: float) -> bool:
        # Both SET expressions read the pre-update row
        result = await self.db.execute(
            update(ChunkAccessLogEntry)
            .where(ChunkAccessLogEntry.agent_id == agent_id)
            .where(ChunkAccessLogEntry.chunk_key == chunk_key)
            .values(
                avg_relevance_score=(
                    ChunkAccessLogEntry.avg_relevance_score * ChunkAccessLogEntry.access_count + score
                ) / (ChunkAccessLogEntry.access_count + 1),
                access_count=ChunkAccessLogEntry.access_count + 1,
                last_accessed_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_access(self, agent_id: str, chunk_key: str, relevance_score: float) -> ChunkAccessLogEntry:
        """Count one retrieval and fold ``relevance_score`` into the running average."""
        score = float(relevance_score)
        if not await self._bump(agent_id, chunk_key, score):
            now = self.clock.now()
            try:
                async with self.db.begin_nested():
                    self.db.add(ChunkAccessLogEntry(
                        agent_id=agent_id,
                        chunk_key=chunk_key,
                        access_count=1,
                        avg_relevance_score=score,
                        first_accessed_at=now,
                        last_accessed_at=now,
                    ))
            except IntegrityError:
                # A concurrent first access created the row
                await self._bump(agent_id, chunk_key, score)

        return await self.get(agent_id, chunk_key)

    async def get(self, agent_id: str, chunk_key: str) -> Optional[ChunkAccessLogEntry]:
        result = await self.db.execute(
            select(ChunkAccessLogEntry)
            .where(ChunkAccessLogEntry.agent_id == agent_id)
            .where(ChunkAccessLogEntry.chunk_key == chunk_key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_hot_chunks(self, agent_id: str, limit: int = HOT_CHUNKS_DEFAULT_LIMIT) -> List[ChunkAccessLogEntry]:
        """Most frequently retrieved chunks, for cache preloading."""
        query = (
            select(ChunkAccessLogEntry)
            .where(ChunkAccessLogEntry.agent_id == agent_id)
            .order_by(ChunkAccessLogEntry.access_count.desc(), ChunkAccessLogEntry.last_accessed_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
