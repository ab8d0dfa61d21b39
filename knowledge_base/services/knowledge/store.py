"""Chunk Store and Document Registry.

Thin data-access services over the ``chunks`` and ``documents`` tables. They
never commit; the caller owns the transaction boundary.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.exceptions import NotFound
from knowledge_base.db.models.chunk import Chunk
from knowledge_base.db.models.document import Document

logger = logging.getLogger(__name__)


class ChunkStore:
    """Durable record of persisted chunks, keyed by document and agent."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def add_all(self, chunks: Sequence[Chunk]) -> None:
        self.db.add_all(list(chunks))

    async def totals_for_agent(self, agent_id: str) -> Tuple[int, int]:
        """Return ``(chunk_count, size_bytes)`` for an agent."""
        query = (
            select(func.count(Chunk.chunk_id), func.coalesce(func.sum(Chunk.size_bytes), 0))
            .where(Chunk.agent_id == agent_id)
        )
        result = await self.db.execute(query)
        count, size = result.one()
        return int(count or 0), int(size or 0)

    async def count_for_agent(self, agent_id: str) -> int:
        count, _ = await self.totals_for_agent(agent_id)
        return count

    async def list_by_document(self, document_id: str) -> List[Chunk]:
        query = (
            select(Chunk)
            .where(Chunk.document_id == document_id)
            .order_by(Chunk.chunk_index)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def ids_for_document(self, document_id: str) -> List[str]:
        query = select(Chunk.chunk_id).where(Chunk.document_id == document_id).order_by(Chunk.chunk_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def ids_for_agent(self, agent_id: str) -> List[str]:
        query = select(Chunk.chunk_id).where(Chunk.agent_id == agent_id).order_by(Chunk.chunk_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def orphan_ids(self, agent_id: str) -> List[str]:
        """Chunk ids of an agent whose document row no longer exists."""
        has_document = select(Document.document_id).where(Document.document_id == Chunk.document_id).exists()
        query = (
            select(Chunk.chunk_id)
            .where(Chunk.agent_id == agent_id)
            .where(~has_document)
            .order_by(Chunk.chunk_id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def next_batch(self, agent_id: str, keys: Optional[Sequence[str]], limit: int) -> List[Chunk]:
        """Remaining chunks of a deletion scope, ordered by ``chunk_id``.

        Removed rows drop out of the scope, so repeated calls walk the scope
        without skipping or repeating an item.
        """
        query = select(Chunk).where(Chunk.agent_id == agent_id)
        if keys is not None:
            if not keys:
                return []
            query = query.where(Chunk.chunk_id.in_(list(keys)))
        query = query.order_by(Chunk.chunk_id).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def delete_ids(self, chunk_ids: Sequence[str]) -> int:
        """Delete chunk rows and return how many rows were actually removed."""
        if not chunk_ids:
            return 0
        result = await self.db.execute(
            delete(Chunk)
            .where(Chunk.chunk_id.in_(list(chunk_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def by_rag_entry_ids(self, agent_id: str, rag_entry_ids: Sequence[str]) -> Dict[str, Chunk]:
        if not rag_entry_ids:
            return {}
        query = (
            select(Chunk)
            .where(Chunk.agent_id == agent_id)
            .where(Chunk.rag_entry_id.in_(list(rag_entry_ids)))
        )
        result = await self.db.execute(query)
        return {chunk.rag_entry_id: chunk for chunk in result.scalars().all()}


class DocumentRegistry:
    """Durable record of confirmed documents."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def add(self, document: Document) -> None:
        self.db.add(document)

    async def get(self, document_id: str) -> Optional[Document]:
        return await self.db.get(Document, document_id)

    async def require(self, document_id: str) -> Document:
        document = await self.get(document_id)
        if document is None:
            raise NotFound(f"Document not found: {document_id}")
        return document

    async def list_by_agent(self, agent_id: str) -> List[Document]:
        query = (
            select(Document)
            .where(Document.agent_id == agent_id)
            .order_by(Document.uploaded_at.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_for_agent(self, agent_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Document.document_id)).where(Document.agent_id == agent_id)
        )
        return int(result.scalar_one() or 0)

    async def remove(self, document: Document) -> None:
        await self.db.delete(document)
