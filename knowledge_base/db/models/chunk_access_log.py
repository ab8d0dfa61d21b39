from datetime import datetime, UTC

from sqlalchemy import String, Integer, DateTime, Float, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class ChunkAccessLogEntry(Base):
    """Retrieval frequency of one chunk key within an agent namespace."""
    __tablename__ = "chunk_access_log"
    __table_args__ = (
        UniqueConstraint("agent_id", "chunk_key", name="uq_chunk_access_agent_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    chunk_key: Mapped[str] = mapped_column(String(255))
    access_count: Mapped[int] = mapped_column(Integer, default=0, index=True)
    avg_relevance_score: Mapped[float] = mapped_column(Float, default=0.0)
    first_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
