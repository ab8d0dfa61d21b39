"""Document model: one row per confirmed ingestion."""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, JSON, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from knowledge_base.db.base_class import Base


class DocumentStatus(str, Enum):
    """Processing status of a document."""
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Document(Base):
    """Model for documents whose chunks live in the agent knowledge base."""
    __tablename__ = "documents"

    document_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    agent_id: Mapped[str] = mapped_column(String(255), index=True)
    file_name: Mapped[str] = mapped_column(String(512))
    file_type: Mapped[str] = mapped_column(String(32))
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    source_type: Mapped[str] = mapped_column(String(64), default="general")
    status: Mapped[DocumentStatus] = mapped_column(
        SQLEnum(DocumentStatus, values_callable=lambda x: [e.value for e in x], native_enum=False, length=32),
        default=DocumentStatus.PROCESSING,
    )
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    rag_entry_ids: Mapped[List[str]] = mapped_column(JSON, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    document_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Document(document_id='{self.document_id}', file_name='{self.file_name}', status='{self.status}')>"

    def to_dict(self):
        """Convert model to dict."""
        return {
            "document_id": self.document_id,
            "organization_id": self.organization_id,
            "agent_id": self.agent_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "source_type": self.source_type,
            "status": self.status.value if isinstance(self.status, DocumentStatus) else self.status,
            "chunk_count": self.chunk_count,
            "error": self.error_message,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
