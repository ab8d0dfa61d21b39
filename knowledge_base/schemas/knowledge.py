"""Pydantic schemas for knowledge base stats, deletion and search."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentKnowledgeStats(BaseModel):
    """Per-agent rollup; the default instance means "no knowledge yet"."""

    agent_id: str
    organization_id: Optional[str] = None
    exists: bool = False
    total_chunks: int = 0
    total_size_bytes: int = 0
    document_count: int = 0
    status: str = "active"
    last_ingested_at: Optional[datetime] = None
    last_searched_at: Optional[datetime] = None
    search_cache_hit_rate: Optional[float] = None
    avg_search_latency_ms: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class OrganizationStats(BaseModel):
    organization_id: str
    total_agents: int = 0
    total_chunks: int = 0
    total_size_bytes: int = 0
    total_documents: int = 0
    active_agents: int = 0
    deleting_agents: int = 0


class DeletionProgress(BaseModel):
    """Polling view of an agent's deletion work."""

    in_progress: bool = False
    queue_id: Optional[str] = None
    status: Optional[str] = None
    deletion_type: Optional[str] = None
    processed_items: int = 0
    total_items: int = 0
    progress: float = Field(0.0, description="Percent complete, 0-100")
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class BatchResult(BaseModel):
    """Outcome of one deletion batch step."""

    queue_id: str
    removed: int = 0
    processed_items: int = 0
    total_items: int = 0
    status: str
    done: bool = False


class VectorHit(BaseModel):
    rag_entry_id: str
    score: float = 0.0


class SearchHit(BaseModel):
    chunk_id: str
    document_id: str
    chunk_index: int
    text: str
    score: float


class HotChunk(BaseModel):
    chunk_key: str
    access_count: int
    avg_relevance_score: float
    last_accessed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeletionRequestResult(BaseModel):
    """Acknowledgement of a queued deletion."""

    queue_id: str
    agent_id: str
    deletion_type: str
    status: str
    total_items: int
    processed_items: int = 0


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(5, ge=1, le=50)


class DeletedFileRecord(BaseModel):
    document_id: str
    agent_id: str
    file_name: str
    file_type: str
    chunk_count: int
    deleted_by: Optional[str] = None
    deletion_reason: Optional[str] = None
    deleted_at: datetime
    purge_at: datetime
    is_purged: bool = False

    model_config = ConfigDict(from_attributes=True)
