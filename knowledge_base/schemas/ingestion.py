"""Pydantic schemas for the ingestion pipeline."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from knowledge_base.core.constants import PREVIEW_SNIPPET_CHARS


class ParsedDocument(BaseModel):
    """Output of a parser."""

    content: str = Field(..., description="Extracted plain text")
    structured_elements: List[Dict[str, Any]] = Field(default_factory=list,
                                                      description="Optional structural elements (headings, tables)")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Parser metadata (title, format, ...)")


class ChunkDraft(BaseModel):
    """A chunk produced by a chunker, before it is indexed."""

    text: str
    chunk_index: Optional[int] = Field(None, description="Position reported by the chunker")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PreviewChunk(BaseModel):
    """A chunk held on the session while it waits at the preview gate."""

    index: int
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def snippet(self) -> str:
        return self.text[:PREVIEW_SNIPPET_CHARS] + ("..." if len(self.text) > PREVIEW_SNIPPET_CHARS else "")


class SessionStatus(BaseModel):
    """Read-only projection of an ingestion session for polling callers."""

    session_id: str
    file_name: str
    stage: str
    progress: int
    chunk_count: int
    error: Optional[str] = None
    document_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    preview_chunks: Optional[List[PreviewChunk]] = None

    model_config = ConfigDict(from_attributes=True)


class ConfirmResult(BaseModel):
    """Outcome of persisting a session's chunks."""

    session_id: str
    document_id: str
    chunks_created: int
    rag_entry_ids: List[str] = Field(default_factory=list)
