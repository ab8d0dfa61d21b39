"""Ingestion Session Manager.

Drives one upload through parse, chunk, preview, confirm/cancel, persist and
embed. Every stage change is a compare-and-set ``UPDATE`` on the current
stage, so racing callers (two confirms, a confirm and a cancel) cannot both
win. No database transaction is held open while the vector store is called.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_base.core.clock import Clock, SystemClock, ensure_utc
from knowledge_base.core.config import settings
from knowledge_base.core.constants import CHARS_PER_TOKEN, DEFAULT_SOURCE_TYPE, SESSION_SWEEP_LIMIT
from knowledge_base.core.exceptions import (
    AgentDeleting,
    ExpiredSession,
    ExternalDependencyError,
    InvalidInput,
    InvalidState,
    KnowledgeBaseError,
    NotFound,
)
from knowledge_base.db.models.agent_knowledge_metadata import KnowledgeStatus
from knowledge_base.db.models.chunk import Chunk
from knowledge_base.db.models.document import Document, DocumentStatus
from knowledge_base.db.models.ingestion_session import IngestionSession, IngestionStage
from knowledge_base.schemas.ingestion import ChunkDraft, ConfirmResult, PreviewChunk, SessionStatus
from knowledge_base.services.ingestion.chunking import DocumentChunker
from knowledge_base.services.ingestion.parsers import RegistryParser
from knowledge_base.services.ingestion.stages import (
    PREVIEW_STAGES,
    TERMINAL_STAGES,
    progress_for,
    validate_transition,
)
from knowledge_base.services.interfaces import Chunker, Parser, VectorStore
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry

logger = logging.getLogger(__name__)


def normalize_file_type(file_type: str) -> str:
    file_type = (file_type or "").strip().lower()
    if file_type and not file_type.startswith("."):
        file_type = f".{file_type}"
    return file_type


class IngestionSessionManager:
    """Service for moving ingestion sessions through their stages."""

    def __init__(
        self,
        db_session: AsyncSession,
        vector_store: VectorStore,
        parser: Optional[Parser] = None,
        chunker: Optional[Chunker] = None,
        clock: Optional[Clock] = None,
        preview_enabled: Optional[Callable[[str], bool]] = None,
        max_file_size: Optional[int] = None,
        supported_file_types: Optional[Sequence[str]] = None,
        preview_ttl: Optional[timedelta] = None,
        embedding_concurrency: Optional[int] = None,
    ):
        """Initialize the manager.

        Args:
            db_session: SQLAlchemy async session
            vector_store: Embedding store the chunks are indexed in
            parser: Raw bytes to text; defaults to the extension registry parser
            chunker: Text to chunks; defaults to the tiktoken chunker
            clock: Time source for stage timestamps and preview expiry
            preview_enabled: Per-organization switch for the preview gate
        """
        self.db = db_session
        self.vector_store = vector_store
        self.parser = parser or RegistryParser()
        self.chunker = chunker or DocumentChunker()
        self.clock = clock or SystemClock()
        self.preview_enabled = preview_enabled or settings.preview_enabled_for
        self.max_file_size = max_file_size if max_file_size is not None else settings.MAX_FILE_SIZE_BYTES
        self.supported_file_types = {
            normalize_file_type(t) for t in (supported_file_types or settings.SUPPORTED_FILE_TYPES)
        }
        self.preview_ttl = preview_ttl or timedelta(hours=settings.PREVIEW_TTL_HOURS)
        self.embedding_concurrency = max(1, embedding_concurrency or settings.EMBEDDING_CONCURRENCY)

        self.chunks = ChunkStore(db_session)
        self.documents = DocumentRegistry(db_session)
        self.metadata_index = AgentKnowledgeMetadataIndex(db_session, self.clock)

    # Lookups

    async def _get(self, session_id: str) -> IngestionSession:
        session = await self.db.get(IngestionSession, session_id, populate_existing=True)
        if session is None:
            raise NotFound(f"Ingestion session not found: {session_id}")
        return session

    async def get_session(self, session_id: str) -> IngestionSession:
        return await self._get(session_id)

    async def get_status(self, session_id: str) -> SessionStatus:
        """Last committed stage and progress of a session."""
        session = await self._get(session_id)
        preview = None
        if session.stage in PREVIEW_STAGES and session.preview_chunks:
            preview = [PreviewChunk.model_validate(item) for item in session.preview_chunks]
        return SessionStatus(
            session_id=session.session_id,
            file_name=session.file_name,
            stage=session.stage.value,
            progress=session.progress,
            chunk_count=session.chunk_count,
            error=session.error_message,
            document_id=session.document_id,
            expires_at=session.expires_at,
            preview_chunks=preview,
        )

    async def list_pending_sessions(self, agent_id: str) -> List[IngestionSession]:
        """Sessions of an agent that have not reached a terminal stage."""
        query = (
            select(IngestionSession)
            .where(IngestionSession.agent_id == agent_id)
            .where(IngestionSession.stage.notin_(list(TERMINAL_STAGES)))
            .order_by(IngestionSession.created_at.desc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # Stage changes

    async def _advance(self, session: IngestionSession, target: IngestionStage,
                       commit: bool = True, **fields: Any) -> IngestionSession:
        """Compare-and-set ``session`` from its loaded stage to ``target``."""
        expected = session.stage
        session_id = session.session_id
        validate_transition(expected, target)

        values = {"stage": target, "progress": progress_for(target, session.progress), **fields}
        result = await self.db.execute(
            update(IngestionSession)
            .where(IngestionSession.session_id == session_id)
            .where(IngestionSession.stage == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            current = await self._get(session_id)
            raise InvalidState(
                f"Session {session_id} moved to {current.stage.value} before {target.value} could be applied"
            )
        if commit:
            await self.db.commit()
        logger.debug(f"Session {session_id}: {expected.value} -> {target.value}")
        return await self._get(session_id)

    async def _fail(self, session_id: str, message: str) -> None:
        """Move a session to ``failed`` unless it already reached a terminal stage."""
        session = await self._get(session_id)
        if session.stage in TERMINAL_STAGES:
            return
        try:
            await self._advance(session, IngestionStage.FAILED, error_message=message, preview_chunks=None)
        except InvalidState:
            logger.warning(f"Session {session_id} changed stage while being failed")
            return
        logger.error(f"Ingestion session {session_id} failed: {message}")

    def _is_expired(self, session: IngestionSession, now: datetime) -> bool:
        expires_at = ensure_utc(session.expires_at)
        return expires_at is not None and expires_at < now

    async def create_session(
        self,
        agent_id: str,
        organization_id: str,
        file_name: str,
        file_type: str,
        file_size: int,
        source_type: str = DEFAULT_SOURCE_TYPE,
    ) -> IngestionSession:
        """Register an upload. Nothing is created when validation fails."""
        if not agent_id or not organization_id:
            raise InvalidInput("agent_id and organization_id are required")
        if not file_name:
            raise InvalidInput("file_name is required")
        if file_size is None or file_size < 0:
            raise InvalidInput(f"Invalid file size: {file_size}")
        if file_size > self.max_file_size:
            raise InvalidInput(f"File too large: {file_size} bytes (max {self.max_file_size})")
        file_type = normalize_file_type(file_type)
        if file_type not in self.supported_file_types:
            raise InvalidInput(f"Unsupported file type: {file_type or 'unknown'}")

        now = self.clock.now()
        session = IngestionSession(
            session_id=str(uuid4()),
            organization_id=organization_id,
            agent_id=agent_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            source_type=source_type or DEFAULT_SOURCE_TYPE,
            stage=IngestionStage.UPLOADING,
            progress=0,
            chunk_count=0,
            created_at=now,
            uploaded_at=now,
        )
        try:
            self.db.add(session)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error creating ingestion session: {str(e)}")
            raise

        logger.info(f"Created ingestion session {session.session_id} for agent {agent_id}: {file_name}")
        return session

    async def advance_to_parsing(self, session_id: str) -> IngestionSession:
        session = await self._get(session_id)
        return await self._advance(session, IngestionStage.PARSING)

    async def advance_to_chunking(self, session_id: str) -> IngestionSession:
        session = await self._get(session_id)
        return await self._advance(session, IngestionStage.CHUNKING)

    async def complete_chunking(
        self,
        session_id: str,
        chunks: Sequence[ChunkDraft],
        document_metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestionSession:
        """Accept the chunker output.

        Indexes are reassigned 0..n-1 in list order. With the preview gate on
        for the organization the session waits at ``preview_ready``; otherwise
        the chunks are persisted right away.
        """
        session = await self._get(session_id)
        if session.stage != IngestionStage.CHUNKING:
            raise InvalidState(f"Session {session_id} is {session.stage.value}, expected chunking")
        if not chunks:
            await self._fail(session_id, "Chunker produced no chunks")
            raise ExternalDependencyError(f"No chunks produced for session {session_id}")

        previews = [
            PreviewChunk(index=i, text=draft.text, metadata=dict(draft.metadata))
            for i, draft in enumerate(chunks)
        ]

        if self.preview_enabled(session.organization_id):
            now = self.clock.now()
            session = await self._advance(
                session,
                IngestionStage.PREVIEW_READY,
                preview_chunks=[preview.model_dump() for preview in previews],
                parsed_metadata=document_metadata or {},
                chunk_count=len(previews),
                previewed_at=now,
                expires_at=now + self.preview_ttl,
            )
            logger.info(f"Session {session_id} ready for preview with {len(previews)} chunks")
            return session

        await self._persist(session, previews, document_metadata or {})
        return await self._get(session_id)

    async def process_upload(self, session_id: str, raw_file: bytes,
                             hints: Optional[Dict[str, Any]] = None) -> IngestionSession:
        """Parse and chunk an uploaded file up to the preview gate (or to completion)."""
        session = await self.advance_to_parsing(session_id)
        file_name = session.file_name
        try:
            parsed = self.parser.parse(raw_file, file_name)
        except Exception as e:
            await self._fail(session_id, f"Parsing failed: {e}")
            raise ExternalDependencyError(f"Failed to parse {file_name}: {e}") from e

        await self.advance_to_chunking(session_id)
        try:
            drafts = self.chunker.chunk(parsed, hints)
        except Exception as e:
            await self._fail(session_id, f"Chunking failed: {e}")
            raise ExternalDependencyError(f"Failed to chunk {file_name}: {e}") from e

        return await self.complete_chunking(session_id, drafts, document_metadata=parsed.metadata)

    async def confirm(self, session_id: str) -> ConfirmResult:
        """Persist a previewed session. Only one of several racing confirms wins."""
        session = await self._get(session_id)
        now = self.clock.now()

        if session.stage == IngestionStage.PREVIEW_READY and self._is_expired(session, now):
            try:
                await self._advance(session, IngestionStage.CANCELLED, preview_chunks=None)
            except InvalidState:
                pass
            logger.info(f"Session {session_id} expired before confirmation")
            raise ExpiredSession(f"Preview for session {session_id} expired")
        if session.stage == IngestionStage.CANCELLED and self._is_expired(session, now):
            # Already cancelled by the expiry sweep
            raise ExpiredSession(f"Preview for session {session_id} expired")
        if session.stage != IngestionStage.PREVIEW_READY:
            raise InvalidState(f"Session {session_id} is {session.stage.value}, expected preview_ready")
        if await self.metadata_index.is_deleting(session.agent_id):
            raise AgentDeleting(f"Agent {session.agent_id} knowledge is being deleted")

        session = await self._advance(session, IngestionStage.CONFIRMING, confirmed_at=now)
        previews = [PreviewChunk.model_validate(item) for item in session.preview_chunks or []]
        return await self._persist(session, previews, session.parsed_metadata or {})

    async def _persist(self, session: IngestionSession, previews: List[PreviewChunk],
                       document_metadata: Dict[str, Any]) -> ConfirmResult:
        session_id = session.session_id
        agent_id = session.agent_id
        organization_id = session.organization_id

        if await self.metadata_index.is_deleting(agent_id):
            await self._fail(session_id, "Agent knowledge is being deleted")
            raise AgentDeleting(f"Agent {agent_id} knowledge is being deleted")

        created: List[str] = []
        try:
            session = await self._advance(
                session,
                IngestionStage.PERSISTING,
                preview_chunks=None,
                chunk_count=len(previews),
            )
            document_id = str(uuid4())
            chunk_ids = [str(uuid4()) for _ in previews]

            session = await self._advance(session, IngestionStage.EMBEDDING)
            rag_entry_ids = await self._embed(session, document_id, chunk_ids, previews, created)

            # Document, chunks, rollup and completion commit together
            now = self.clock.now()
            # Held until commit; a namespace wipe counts chunks under the same lock
            metadata = await self.metadata_index.lock(agent_id, organization_id)
            if metadata.status == KnowledgeStatus.DELETING:
                raise AgentDeleting(f"Agent {agent_id} knowledge deletion started during ingestion")

            self.documents.add(Document(
                document_id=document_id,
                organization_id=organization_id,
                agent_id=agent_id,
                file_name=session.file_name,
                file_type=session.file_type,
                file_size=session.file_size,
                source_type=session.source_type,
                status=DocumentStatus.COMPLETED,
                chunk_count=len(previews),
                rag_entry_ids=list(rag_entry_ids),
                document_metadata=document_metadata,
                uploaded_at=session.uploaded_at or session.created_at,
                processed_at=now,
            ))
            self.chunks.add_all([
                self._build_chunk(session, document_id, chunk_id, preview, rag_entry_id, len(previews), now)
                for chunk_id, preview, rag_entry_id in zip(chunk_ids, previews, rag_entry_ids)
            ])
            await self.db.flush()
            await self.metadata_index.refresh(agent_id, organization_id, ingested=True)
            await self._advance(session, IngestionStage.COMPLETED, commit=False,
                                document_id=document_id, completed_at=now)
            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error persisting session {session_id}: {str(e)}")
            await self._discard_vectors(agent_id, created)
            await self._fail(session_id, str(e))
            if isinstance(e, KnowledgeBaseError):
                raise
            raise ExternalDependencyError(f"Failed to persist session {session_id}: {e}") from e

        logger.info(f"Session {session_id} completed: document {document_id} with {len(previews)} chunks")
        return ConfirmResult(
            session_id=session_id,
            document_id=document_id,
            chunks_created=len(previews),
            rag_entry_ids=list(rag_entry_ids),
        )

    async def _embed(self, session: IngestionSession, document_id: str, chunk_ids: List[str],
                     previews: List[PreviewChunk], created: List[str]) -> List[str]:
        """Upsert chunks in groups of ``embedding_concurrency``.

        Every entry the store acknowledges is appended to ``created`` so a
        failure can undo it.
        """
        rag_entry_ids: List[str] = []
        for start in range(0, len(previews), self.embedding_concurrency):
            group = range(start, min(start + self.embedding_concurrency, len(previews)))
            results = await asyncio.gather(
                *[
                    self.vector_store.upsert(
                        session.agent_id,
                        chunk_ids[i],
                        previews[i].text,
                        {
                            "document_id": document_id,
                            "chunk_index": previews[i].index,
                            "organization_id": session.organization_id,
                            "file_name": session.file_name,
                            "source_type": session.source_type,
                        },
                    )
                    for i in group
                ],
                return_exceptions=True,
            )
            errors = [result for result in results if isinstance(result, BaseException)]
            created.extend(result for result in results if not isinstance(result, BaseException))
            if errors:
                raise errors[0]
            rag_entry_ids.extend(results)
        return rag_entry_ids

    async def _discard_vectors(self, namespace: str, rag_entry_ids: List[str]) -> None:
        if not rag_entry_ids:
            return
        results = await asyncio.gather(
            *[self.vector_store.delete(namespace, rag_entry_id) for rag_entry_id in rag_entry_ids],
            return_exceptions=True,
        )
        failed = [rid for rid, result in zip(rag_entry_ids, results) if isinstance(result, BaseException)]
        if failed:
            logger.warning(f"Could not remove {len(failed)} vector entries from {namespace} after a failed ingestion")

    def _build_chunk(self, session: IngestionSession, document_id: str, chunk_id: str,
                     preview: PreviewChunk, rag_entry_id: str, total_chunks: int, now: datetime) -> Chunk:
        metadata = preview.metadata
        token_count = metadata.get("token_count") or max(1, len(preview.text) // CHARS_PER_TOKEN)
        return Chunk(
            chunk_id=chunk_id,
            document_id=document_id,
            agent_id=session.agent_id,
            organization_id=session.organization_id,
            text=preview.text,
            token_count=token_count,
            size_bytes=len(preview.text.encode("utf-8")),
            chunk_index=preview.index,
            total_chunks=total_chunks,
            page_number=metadata.get("page_number"),
            section_title=metadata.get("section_title"),
            hierarchy_level=metadata.get("hierarchy_level"),
            quality_score=metadata.get("quality_score"),
            has_code=bool(metadata.get("has_code", False)),
            has_table=bool(metadata.get("has_table", False)),
            has_image=bool(metadata.get("has_image", False)),
            rag_entry_id=rag_entry_id,
            rag_namespace=session.agent_id,
            access_count=0,
            created_at=now,
        )

    async def cancel(self, session_id: str) -> IngestionSession:
        """Drop a session waiting at (or passing through) the preview gate."""
        session = await self._get(session_id)
        if session.stage == IngestionStage.CANCELLED:
            return session
        session = await self._advance(session, IngestionStage.CANCELLED, preview_chunks=None)
        logger.info(f"Cancelled ingestion session {session_id}")
        return session

    async def expire_stale(self) -> int:
        """Cancel every ``preview_ready`` session whose preview window elapsed."""
        now = self.clock.now()
        query = (
            select(IngestionSession.session_id)
            .where(IngestionSession.stage == IngestionStage.PREVIEW_READY)
            .where(IngestionSession.expires_at < now)
            .order_by(IngestionSession.expires_at)
            .limit(SESSION_SWEEP_LIMIT)
        )
        result = await self.db.execute(query)
        stale_ids = list(result.scalars().all())

        expired = 0
        for session_id in stale_ids:
            session = await self._get(session_id)
            if session.stage != IngestionStage.PREVIEW_READY:
                continue
            try:
                await self._advance(session, IngestionStage.CANCELLED, preview_chunks=None)
                expired += 1
            except InvalidState:
                logger.info(f"Session {session_id} left preview_ready before it could expire")

        if expired:
            logger.info(f"Expired {expired} stale ingestion sessions")
        return expired
