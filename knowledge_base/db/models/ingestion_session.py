"""IngestionSession model: one row per upload attempt."""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, JSON, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class IngestionStage(str, Enum):
    """Pipeline stages of an ingestion session."""
    UPLOADING = "uploading"
    PARSING = "parsing"
    CHUNKING = "chunking"
    PREVIEW_READY = "preview_ready"
    CONFIRMING = "confirming"
    PERSISTING = "persisting"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class IngestionSession(Base):
    """Tracks an upload through parse, chunk, preview and persist.

    ``preview_chunks`` holds the serialized preview only while the session
    waits at the gate (``preview_ready``) or is being confirmed.
    """
    __tablename__ = "ingestion_sessions"

    session_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)

    # File information
    file_name: Mapped[str] = mapped_column(String(512))
    file_type: Mapped[str] = mapped_column(String(32))
    file_size: Mapped[int] = mapped_column(BigInteger)
    source_type: Mapped[str] = mapped_column(String(64), default="general")

    # Workflow state
    stage: Mapped[IngestionStage] = mapped_column(
        SQLEnum(IngestionStage, values_callable=lambda x: [e.value for e in x], native_enum=False, length=32),
        default=IngestionStage.UPLOADING,
        index=True,
    )
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # Preview data (temporary)
    preview_chunks: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON(none_as_null=True), nullable=True)
    parsed_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON(none_as_null=True), nullable=True)

    # Result tracking
    document_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    previewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self):
        return f"<IngestionSession(session_id='{self.session_id}', agent_id='{self.agent_id}', stage='{self.stage}')>"
