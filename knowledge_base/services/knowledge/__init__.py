"""Stored knowledge: chunk/document stores, metadata rollups, deletion and search."""

from knowledge_base.services.knowledge.access_log import ChunkAccessLog
from knowledge_base.services.knowledge.audit import DeletedFileAuditLog
from knowledge_base.services.knowledge.deletion import DeletionQueueEngine
from knowledge_base.services.knowledge.metadata import AgentKnowledgeMetadataIndex
from knowledge_base.services.knowledge.search import KnowledgeSearchService
from knowledge_base.services.knowledge.store import ChunkStore, DocumentRegistry

__all__ = [
    "ChunkAccessLog",
    "ChunkStore",
    "DeletedFileAuditLog",
    "DeletionQueueEngine",
    "DocumentRegistry",
    "AgentKnowledgeMetadataIndex",
    "KnowledgeSearchService",
]
