"""Test fixtures for the knowledge base."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from knowledge_base.core.config import settings
from knowledge_base.db.base import Base
from knowledge_base.schemas.ingestion import ChunkDraft, ParsedDocument
from knowledge_base.schemas.knowledge import VectorHit
from knowledge_base.services.ingestion.service import IngestionSessionManager
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeVectorStore:
    """In-memory vector store with failure injection."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.upsert_calls = 0
        self.fail_upsert_after: Optional[int] = None
        self.failing_deletes: set = set()
        self.fail_search = False
        self.search_results: List[VectorHit] = []

    async def upsert(self, namespace: str, chunk_id: str, text: str,
                     metadata: Optional[Dict[str, Any]] = None) -> str:
        self.upsert_calls += 1
        if self.fail_upsert_after is not None and self.upsert_calls > self.fail_upsert_after:
            raise RuntimeError("embedding service unavailable")
        rag_entry_id = f"rag-{chunk_id}"
        self.entries[rag_entry_id] = {
            "namespace": namespace,
            "chunk_id": chunk_id,
            "text": text,
            "metadata": metadata or {},
        }
        return rag_entry_id

    async def delete(self, namespace: str, rag_entry_id: str) -> bool:
        if rag_entry_id in self.failing_deletes:
            raise RuntimeError("vector store timeout")
        return self.entries.pop(rag_entry_id, None) is not None

    async def search(self, namespace: str, query: str, limit: int = 5) -> List[VectorHit]:
        if self.fail_search:
            raise RuntimeError("vector store unavailable")
        return self.search_results[:limit]

    def count(self, namespace: str) -> int:
        return sum(1 for entry in self.entries.values() if entry["namespace"] == namespace)


class TextParser:
    """Decodes bytes as-is."""

    def parse(self, raw_file: bytes, file_name: str) -> ParsedDocument:
        return ParsedDocument(content=raw_file.decode("utf-8"), metadata={"title": file_name})


class ParagraphChunker:
    """One chunk per blank-line separated paragraph, reporting no indexes of its own."""

    def chunk(self, parsed: ParsedDocument, hints: Optional[Dict[str, Any]] = None) -> List[ChunkDraft]:
        paragraphs = [p.strip() for p in parsed.content.split("\n\n") if p.strip()]
        return [ChunkDraft(text=p, metadata={"token_count": len(p.split())}) for p in paragraphs]


def paragraphs(count: int, prefix: str = "Paragraph") -> bytes:
    return "\n\n".join(f"{prefix} {i} about the knowledge base." for i in range(count)).encode("utf-8")


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory database shared by every session of a test."""
    engine = create_async_engine(
        settings.TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    """Create a clean database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def manager_factory(db_session, vector_store, clock):
    def _make(preview: bool = True, **kwargs) -> IngestionSessionManager:
        return IngestionSessionManager(
            db_session,
            vector_store,
            parser=TextParser(),
            chunker=ParagraphChunker(),
            clock=clock,
            preview_enabled=lambda organization_id: preview,
            **kwargs,
        )
    return _make


@pytest.fixture
def manager(manager_factory):
    return manager_factory(preview=True)


@pytest.fixture
def deletion_engine(db_session, vector_store, clock):
    return DeletionQueueEngine(db_session, vector_store, clock=clock, batch_size=100)


@pytest.fixture
def ingest_document(manager_factory):
    """Ingest a document straight through to ``completed`` and return its session."""
    async def _ingest(agent_id: str = "agent-1", organization_id: str = "org-1",
                      chunk_count: int = 3, file_name: str = "notes.txt"):
        manager = manager_factory(preview=False)
        raw = paragraphs(chunk_count, prefix=file_name)
        session = await manager.create_session(agent_id, organization_id, file_name, ".txt", len(raw))
        return await manager.process_upload(session.session_id, raw)
    return _ingest
