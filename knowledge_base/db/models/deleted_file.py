from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, JSON, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class DeletedFile(Base):
    """Soft-delete audit record, kept until ``purge_at``."""
    __tablename__ = "deleted_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Original document info
    document_id: Mapped[str] = mapped_column(String(36), index=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    file_name: Mapped[str] = mapped_column(String(512))
    file_type: Mapped[str] = mapped_column(String(32))
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    source_type: Mapped[str] = mapped_column(String(64), default="general")
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    rag_entry_ids: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Deletion tracking
    deleted_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deletion_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True)
    backup_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    # Retention
    purge_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_purged: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    purged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    original_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    original_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
