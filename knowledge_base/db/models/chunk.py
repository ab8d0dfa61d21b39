from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Text, Boolean, Float, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class Chunk(Base):
    """Persisted content fragment of a document."""
    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
        {"extend_existing": True},
    )

    chunk_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(36), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    organization_id: Mapped[str] = mapped_column(String(255))

    text: Mapped[str] = mapped_column(Text)
    token_count: Mapped[int] = mapped_column(Integer, default=0)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0)

    # Position tracking
    chunk_index: Mapped[int] = mapped_column(Integer)
    total_chunks: Mapped[int] = mapped_column(Integer)

    # Hierarchy
    page_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    section_title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    hierarchy_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    parent_chunk_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Quality flags
    quality_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    has_code: Mapped[bool] = mapped_column(Boolean, default=False)
    has_table: Mapped[bool] = mapped_column(Boolean, default=False)
    has_image: Mapped[bool] = mapped_column(Boolean, default=False)

    # Vector store mapping
    rag_entry_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    rag_namespace: Mapped[str] = mapped_column(String(255))

    # Search counters
    access_count: Mapped[int] = mapped_column(Integer, default=0)
    avg_relevance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    def __repr__(self):
        return f"<Chunk(chunk_id='{self.chunk_id}', document_id='{self.document_id}', index={self.chunk_index})>"

    def to_dict(self):
        """Convert model to dict."""
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "text": self.text,
            "token_count": self.token_count,
            "page_number": self.page_number,
            "section_title": self.section_title,
            "quality_score": self.quality_score,
        }
