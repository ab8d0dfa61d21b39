"""Error taxonomy shared by the knowledge base services.

Every error carries the HTTP status the API layer answers with, so
endpoints can let them propagate to the registered exception handler.
"""

from typing import List, Optional


class KnowledgeBaseError(Exception):
    """Base class for all knowledge base errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(KnowledgeBaseError):
    """Rejected before any state change (bad size, type, arguments)."""

    status_code = 400


class InvalidState(KnowledgeBaseError):
    """Operation is not valid for the current stage or status."""

    status_code = 409


class AgentDeleting(InvalidState):
    """The agent's namespace is being wiped; writes and searches are blocked."""


class ExpiredSession(KnowledgeBaseError):
    """The preview window elapsed; the session counts as cancelled."""

    status_code = 410


class ExternalDependencyError(KnowledgeBaseError):
    """Parser, chunker or vector store failed."""

    status_code = 502


class DeletionPartialFailure(KnowledgeBaseError):
    """Some vector-store deletes in a batch failed.

    The keys that failed are still present locally and stay eligible
    for the next batch.
    """

    status_code = 502

    def __init__(self, message: str, removed: int = 0, failed_keys: Optional[List[str]] = None):
        super().__init__(message)
        self.removed = removed
        self.failed_keys = failed_keys or []


class NotFound(KnowledgeBaseError):
    """Unknown session, document, agent or queue entry."""

    status_code = 404
