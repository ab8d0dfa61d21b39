# Import all models so that Base has them before running Alembic
from knowledge_base.db.base_class import Base  # noqa: F401

from knowledge_base.db.models.ingestion_session import IngestionSession  # noqa: F401
from knowledge_base.db.models.document import Document  # noqa: F401
from knowledge_base.db.models.chunk import Chunk  # noqa: F401
from knowledge_base.db.models.agent_knowledge_metadata import AgentKnowledgeMetadata  # noqa: F401
from knowledge_base.db.models.deletion_queue import DeletionQueueEntry  # noqa: F401
from knowledge_base.db.models.deleted_file import DeletedFile  # noqa: F401
from knowledge_base.db.models.chunk_access_log import ChunkAccessLogEntry  # noqa: F401
