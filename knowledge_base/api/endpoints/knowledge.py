import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from knowledge_base.api.deps import (
    get_access_log,
    get_audit_log,
    get_deletion_engine,
    get_metadata_index,
    get_search_service,
)
from knowledge_base.api.endpoints.documents import deletion_result
from knowledge_base.core.constants import DEFAULT_ORGANIZATION_ID, HOT_CHUNKS_DEFAULT_LIMIT
from knowledge_base.schemas.knowledge import (
    AgentKnowledgeStats,
    DeletedFileRecord,
    DeletionProgress,
    DeletionRequestResult,
    HotChunk,
    OrganizationStats,
    SearchHit,
    SearchRequest,
)
from knowledge_base.services.knowledge.access_log import ChunkAccessLog
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.search import KnowledgeSearchService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.delete("/agents/{agent_id}", response_model=DeletionRequestResult, status_code=status.HTTP_202_ACCEPTED)
async def delete_agent_knowledge(
    agent_id: str,
    organization_id: str = Query(DEFAULT_ORGANIZATION_ID),
    remove_agent: bool = Query(False),
    deleted_by: Optional[str] = Query(None),
    engine: DeletionQueueEngine = Depends(get_deletion_engine),
):
    """Queue a wipe of the agent's whole namespace."""
    entry = await engine.delete_agent_namespace(
        agent_id, organization_id, remove_agent=remove_agent, deleted_by=deleted_by
    )
    return deletion_result(entry)


@router.get("/agents/{agent_id}/deletion-status", response_model=DeletionProgress)
async def get_deletion_status(
    agent_id: str,
    engine: DeletionQueueEngine = Depends(get_deletion_engine),
):
    return await engine.get_status(agent_id)


@router.post("/deletions/{queue_id}/cancel", response_model=DeletionRequestResult)
async def cancel_deletion(
    queue_id: str,
    engine: DeletionQueueEngine = Depends(get_deletion_engine),
):
    entry = await engine.cancel(queue_id)
    return deletion_result(entry)


@router.get("/agents/{agent_id}/stats", response_model=AgentKnowledgeStats)
async def get_agent_stats(
    agent_id: str,
    metadata_index: AgentKnowledgeMetadataIndex = Depends(get_metadata_index),
):
    return await metadata_index.get_stats(agent_id)


@router.get("/organizations/{organization_id}/stats", response_model=OrganizationStats)
async def get_organization_stats(
    organization_id: str,
    metadata_index: AgentKnowledgeMetadataIndex = Depends(get_metadata_index),
):
    return await metadata_index.get_organization_stats(organization_id)


@router.get("/agents/{agent_id}/hot-chunks", response_model=List[HotChunk])
async def get_hot_chunks(
    agent_id: str,
    limit: int = Query(HOT_CHUNKS_DEFAULT_LIMIT, ge=1, le=100),
    access_log: ChunkAccessLog = Depends(get_access_log),
):
    """Most retrieved chunks of the agent, for cache preloading."""
    return await access_log.get_hot_chunks(agent_id, limit=limit)


@router.post("/agents/{agent_id}/search", response_model=List[SearchHit])
async def search_agent_knowledge(
    agent_id: str,
    request: SearchRequest,
    search_service: KnowledgeSearchService = Depends(get_search_service),
):
    return await search_service.search(agent_id, request.query, limit=request.limit)


@router.post("/agents/{agent_id}/orphans/cleanup", response_model=DeletionRequestResult,
             status_code=status.HTTP_202_ACCEPTED)
async def cleanup_orphans(
    agent_id: str,
    organization_id: str = Query(DEFAULT_ORGANIZATION_ID),
    engine: DeletionQueueEngine = Depends(get_deletion_engine),
):
    """Queue removal of chunks whose document no longer exists."""
    entry = await engine.enqueue_orphan_cleanup(agent_id, organization_id)
    return deletion_result(entry)


@router.get("/agents/{agent_id}/deleted", response_model=List[DeletedFileRecord])
async def list_deleted_files(
    agent_id: str,
    audit_log: DeletedFileAuditLog = Depends(get_audit_log),
):
    return await audit_log.list_deleted(agent_id)
