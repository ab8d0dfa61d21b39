import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from knowledge_base.api.deps import (
    get_chunk_store,
    get_deletion_engine,
    get_document_registry,
    get_ingestion_manager,
)
from knowledge_base.core.constants import DEFAULT_ORGANIZATION_ID, DEFAULT_SOURCE_TYPE
from knowledge_base.core.exceptions import NotFound
from knowledge_base.schemas.ingestion import ConfirmResult, SessionStatus
from knowledge_base.schemas.knowledge import DeletionRequestResult
from knowledge_base.services.ingestion.service import IngestionSessionManager
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


def deletion_result(entry) -> DeletionRequestResult:
    return DeletionRequestResult(
        queue_id=entry.id,
        agent_id=entry.agent_id,
        deletion_type=entry.deletion_type.value,
        status=entry.status.value,
        total_items=entry.total_items,
        processed_items=entry.processed_items,
    )


@router.post("/ingest", response_model=SessionStatus, status_code=status.HTTP_201_CREATED)
async def ingest_document(
    file: UploadFile = File(...),
    agent_id: str = Form(...),
    organization_id: str = Form(DEFAULT_ORGANIZATION_ID),
    source_type: str = Form(DEFAULT_SOURCE_TYPE),
    strategy: Optional[str] = Form(None),
    manager: IngestionSessionManager = Depends(get_ingestion_manager),
):
    """
    Upload a file and run it through parsing and chunking.

    With the preview gate enabled the session stops at ``preview_ready`` and
    must be confirmed; otherwise it is persisted right away.
    """
    content = await file.read()
    file_name = file.filename or "upload"
    file_type = os.path.splitext(file_name)[1].lower()

    session = await manager.create_session(
        agent_id=agent_id,
        organization_id=organization_id,
        file_name=file_name,
        file_type=file_type,
        file_size=len(content),
        source_type=source_type,
    )
    hints = {"strategy": strategy} if strategy else None
    await manager.process_upload(session.session_id, content, hints=hints)
    return await manager.get_status(session.session_id)


@router.post("/{session_id}/confirm", response_model=ConfirmResult)
async def confirm_session(
    session_id: str,
    manager: IngestionSessionManager = Depends(get_ingestion_manager),
):
    """Confirm a previewed upload and persist its chunks."""
    return await manager.confirm(session_id)


@router.post("/{session_id}/cancel", response_model=SessionStatus)
async def cancel_session(
    session_id: str,
    manager: IngestionSessionManager = Depends(get_ingestion_manager),
):
    await manager.cancel(session_id)
    return await manager.get_status(session_id)


@router.get("/{session_id}/status", response_model=SessionStatus)
async def get_session_status(
    session_id: str,
    manager: IngestionSessionManager = Depends(get_ingestion_manager),
):
    return await manager.get_status(session_id)


@router.get("")
async def list_documents(
    agent_id: str = Query(...),
    registry: DocumentRegistry = Depends(get_document_registry),
    manager: IngestionSessionManager = Depends(get_ingestion_manager),
) -> Dict[str, Any]:
    """List an agent's documents together with uploads still in flight."""
    documents = await registry.list_by_agent(agent_id)
    pending = await manager.list_pending_sessions(agent_id)
    return {
        "agent_id": agent_id,
        "documents": [document.to_dict() for document in documents],
        "pending_sessions": [
            {
                "session_id": session.session_id,
                "file_name": session.file_name,
                "stage": session.stage.value,
                "progress": session.progress,
                "chunk_count": session.chunk_count,
                "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            }
            for session in pending
        ],
    }


@router.get("/{document_id}/chunks")
async def list_document_chunks(
    document_id: str,
    registry: DocumentRegistry = Depends(get_document_registry),
    chunk_store: ChunkStore = Depends(get_chunk_store),
) -> List[Dict[str, Any]]:
    if await registry.get(document_id) is None:
        raise NotFound(f"Document not found: {document_id}")
    chunks = await chunk_store.list_by_document(document_id)
    return [chunk.to_dict() for chunk in chunks]


@router.delete("/{document_id}", response_model=DeletionRequestResult, status_code=status.HTTP_202_ACCEPTED)
async def delete_document(
    document_id: str,
    deleted_by: Optional[str] = Query(None),
    reason: Optional[str] = Query(None),
    engine: DeletionQueueEngine = Depends(get_deletion_engine),
):
    """Remove a document; its chunks are deleted in the background."""
    entry = await engine.delete_document(document_id, deleted_by=deleted_by, reason=reason)
    return deletion_result(entry)
