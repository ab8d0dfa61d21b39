from datetime import datetime, UTC
from enum import Enum
from typing import List, Optional

from sqlalchemy import String, Integer, DateTime, JSON, Text, Boolean, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class DeletionType(str, Enum):
    """Scope of a deletion request."""
    FULL_NAMESPACE = "full_namespace"
    SPECIFIC_DOCUMENTS = "specific_documents"
    CLEANUP_ORPHANS = "cleanup_orphans"


class DeletionStatus(str, Enum):
    """Status of a deletion queue entry."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


OPEN_DELETION_STATUSES = (DeletionStatus.PENDING, DeletionStatus.PROCESSING)


class DeletionQueueEntry(Base):
    """One deletion request, processed in batches.

    ``processed_items`` only grows and never exceeds ``total_items``; it is the
    checkpoint a restarted worker resumes from.
    """
    __tablename__ = "deletion_queue"
    __table_args__ = (
        CheckConstraint("processed_items <= total_items", name="progress"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    organization_id: Mapped[str] = mapped_column(String(255))
    deletion_type: Mapped[DeletionType] = mapped_column(
        SQLEnum(DeletionType, values_callable=lambda x: [e.value for e in x], native_enum=False, length=32),
    )
    target_keys: Mapped[Optional[List[str]]] = mapped_column(JSON(none_as_null=True), nullable=True)
    document_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    remove_agent: Mapped[bool] = mapped_column(Boolean, default=False)
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[DeletionStatus] = mapped_column(
        SQLEnum(DeletionStatus, values_callable=lambda x: [e.value for e in x], native_enum=False, length=16),
        default=DeletionStatus.PENDING,
        index=True,
    )
    batch_size: Mapped[int] = mapped_column(Integer, default=50)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_DELETION_STATUSES

    def __repr__(self):
        return (f"<DeletionQueueEntry(id='{self.id}', agent_id='{self.agent_id}', "
                f"status='{self.status}', progress={self.processed_items}/{self.total_items})>")
