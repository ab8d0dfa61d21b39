"""Pydantic schemas for API endpoints and data validation."""

from knowledge_base.schemas.ingestion import (
    ParsedDocument,
    ChunkDraft,
    PreviewChunk,
    SessionStatus,
    ConfirmResult,
)
from knowledge_base.schemas.knowledge import (
    AgentKnowledgeStats,
    OrganizationStats,
    DeletionProgress,
    BatchResult,
    VectorHit,
    SearchHit,
    HotChunk,
    DeletionRequestResult,
    SearchRequest,
    DeletedFileRecord,
)

__all__ = [
    "ParsedDocument",
    "ChunkDraft",
    "PreviewChunk",
    "SessionStatus",
    "ConfirmResult",
    "AgentKnowledgeStats",
    "OrganizationStats",
    "DeletionProgress",
    "BatchResult",
    "VectorHit",
    "SearchHit",
    "HotChunk",
    "DeletionRequestResult",
    "SearchRequest",
    "DeletedFileRecord",
]
