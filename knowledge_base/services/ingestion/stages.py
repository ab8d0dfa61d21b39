"""Stage machine of an ingestion session."""

from typing import Dict, FrozenSet

from knowledge_base.core.exceptions import InvalidState
from knowledge_base.db.models.ingestion_session import IngestionStage

TERMINAL_STAGES: FrozenSet[IngestionStage] = frozenset({
    IngestionStage.COMPLETED,
    IngestionStage.FAILED,
    IngestionStage.CANCELLED,
})

# Stages in which the session still carries its preview chunks
PREVIEW_STAGES: FrozenSet[IngestionStage] = frozenset({
    IngestionStage.PREVIEW_READY,
    IngestionStage.CONFIRMING,
})

TRANSITIONS: Dict[IngestionStage, FrozenSet[IngestionStage]] = {
    IngestionStage.UPLOADING: frozenset({IngestionStage.PARSING, IngestionStage.FAILED}),
    IngestionStage.PARSING: frozenset({IngestionStage.CHUNKING, IngestionStage.FAILED}),
    IngestionStage.CHUNKING: frozenset({
        IngestionStage.PREVIEW_READY,
        IngestionStage.PERSISTING,  # preview disabled
        IngestionStage.FAILED,
    }),
    IngestionStage.PREVIEW_READY: frozenset({
        IngestionStage.CONFIRMING,
        IngestionStage.CANCELLED,
        IngestionStage.FAILED,
    }),
    IngestionStage.CONFIRMING: frozenset({
        IngestionStage.PERSISTING,
        IngestionStage.CANCELLED,
        IngestionStage.FAILED,
    }),
    IngestionStage.PERSISTING: frozenset({IngestionStage.EMBEDDING, IngestionStage.FAILED}),
    IngestionStage.EMBEDDING: frozenset({IngestionStage.COMPLETED, IngestionStage.FAILED}),
    IngestionStage.COMPLETED: frozenset(),
    IngestionStage.FAILED: frozenset(),
    IngestionStage.CANCELLED: frozenset(),
}

# Advisory progress shown to polling callers
STAGE_PROGRESS: Dict[IngestionStage, int] = {
    IngestionStage.UPLOADING: 0,
    IngestionStage.PARSING: 10,
    IngestionStage.CHUNKING: 30,
    IngestionStage.PREVIEW_READY: 50,
    IngestionStage.CONFIRMING: 60,
    IngestionStage.PERSISTING: 70,
    IngestionStage.EMBEDDING: 85,
    IngestionStage.COMPLETED: 100,
}


def can_transition(current: IngestionStage, target: IngestionStage) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def validate_transition(current: IngestionStage, target: IngestionStage) -> None:
    """Raise ``InvalidState`` if ``current -> target`` is not allowed."""
    if not can_transition(current, target):
        raise InvalidState(f"Cannot move ingestion session from {current.value} to {target.value}")


def progress_for(stage: IngestionStage, current: int = 0) -> int:
    """Progress for entering ``stage``; failure and cancellation keep the last value."""
    return STAGE_PROGRESS.get(stage, current)
