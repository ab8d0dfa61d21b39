from knowledge_base.db.models.ingestion_session import IngestionSession, IngestionStage
from knowledge_base.db.models.document import Document, DocumentStatus
from knowledge_base.db.models.chunk import Chunk
from knowledge_base.db.models.agent_knowledge_metadata import AgentKnowledgeMetadata, KnowledgeStatus
from knowledge_base.db.models.deletion_queue import DeletionQueueEntry, DeletionType, DeletionStatus
from knowledge_base.db.models.deleted_file import DeletedFile
from knowledge_base.db.models.chunk_access_log import ChunkAccessLogEntry

# These imports are required to ensure all models are discovered by SQLAlchemy
__all__ = [
    "IngestionSession",
    "IngestionStage",
    "Document",
    "DocumentStatus",
    "Chunk",
    "AgentKnowledgeMetadata",
    "KnowledgeStatus",
    "DeletionQueueEntry",
    "DeletionType",
    "DeletionStatus",
    "DeletedFile",
    "ChunkAccessLogEntry",
]
