"""Collaborator interfaces the knowledge base services are constructed with."""

from typing import Any, Dict, List, Optional, Protocol

from knowledge_base.schemas.ingestion import ChunkDraft, ParsedDocument
from knowledge_base.schemas.knowledge import VectorHit


class Parser(Protocol):
    """Turns raw file bytes into text. Deterministic and stateless."""

    def parse(self, raw_file: bytes, file_name: str) -> ParsedDocument:
        ...


class Chunker(Protocol):
    """Splits parsed content into ordered chunks. Deterministic for identical input."""

    def chunk(self, parsed: ParsedDocument, hints: Optional[Dict[str, Any]] = None) -> List[ChunkDraft]:
        ...


class VectorStore(Protocol):
    """Embedding and similarity search, partitioned by namespace (the agent id)."""

    async def upsert(self, namespace: str, chunk_id: str, text: str,
                     metadata: Optional[Dict[str, Any]] = None) -> str:
        ...

    async def delete(self, namespace: str, rag_entry_id: str) -> bool:
        ...

    async def search(self, namespace: str, query: str, limit: int = 5) -> List[VectorHit]:
        ...
