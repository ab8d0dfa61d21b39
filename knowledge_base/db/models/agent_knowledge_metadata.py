from datetime import datetime, UTC
from enum import Enum
from typing import List, Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, JSON, Float, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class KnowledgeStatus(str, Enum):
    """Lifecycle of an agent's knowledge namespace."""
    ACTIVE = "active"
    DELETING = "deleting"
    DELETED = "deleted"


class AgentKnowledgeMetadata(Base):
    """Per-agent rollup of the knowledge base.

    While ``status`` is ``deleting`` no ingestion may be confirmed for the agent.
    """
    __tablename__ = "agent_knowledge_metadata"

    agent_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    total_chunks: Mapped[int] = mapped_column(Integer, default=0)
    total_size_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    document_count: Mapped[int] = mapped_column(Integer, default=0)
    last_ingested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_searched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[KnowledgeStatus] = mapped_column(
        SQLEnum(KnowledgeStatus, values_callable=lambda x: [e.value for e in x], native_enum=False, length=16),
        default=KnowledgeStatus.ACTIVE,
        index=True,
    )
    chunk_keys_cache: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    search_cache_hit_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_search_latency_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    search_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True),
                                               default=lambda: datetime.now(UTC),
                                               onupdate=lambda: datetime.now(UTC))

    def __repr__(self):
        return f"<AgentKnowledgeMetadata(agent_id='{self.agent_id}', status='{self.status}', chunks={self.total_chunks})>"
