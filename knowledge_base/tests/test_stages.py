import pytest

from knowledge_base.core.exceptions import InvalidState
from knowledge_base.db.models.ingestion_session import IngestionStage
from knowledge_base.services.ingestion.stages import (
    STAGE_PROGRESS,
    TERMINAL_STAGES,
    TRANSITIONS,
    can_transition,
    progress_for,
    validate_transition,
)


def test_every_stage_has_a_transition_entry():
    assert set(TRANSITIONS) == set(IngestionStage)


def test_terminal_stages_have_no_exits():
    for stage in TERMINAL_STAGES:
        assert TRANSITIONS[stage] == frozenset()


@pytest.mark.parametrize("stage", [
    IngestionStage.UPLOADING,
    IngestionStage.PARSING,
    IngestionStage.CHUNKING,
    IngestionStage.PREVIEW_READY,
    IngestionStage.CONFIRMING,
    IngestionStage.PERSISTING,
    IngestionStage.EMBEDDING,
])
def test_non_terminal_stages_can_fail(stage):
    assert can_transition(stage, IngestionStage.FAILED)


def test_only_preview_stages_can_be_cancelled():
    cancellable = {stage for stage in IngestionStage if can_transition(stage, IngestionStage.CANCELLED)}
    assert cancellable == {IngestionStage.PREVIEW_READY, IngestionStage.CONFIRMING}


def test_chunking_can_skip_the_preview_gate():
    assert can_transition(IngestionStage.CHUNKING, IngestionStage.PREVIEW_READY)
    assert can_transition(IngestionStage.CHUNKING, IngestionStage.PERSISTING)


def test_illegal_transition_raises_invalid_state():
    with pytest.raises(InvalidState):
        validate_transition(IngestionStage.UPLOADING, IngestionStage.COMPLETED)
    with pytest.raises(InvalidState):
        validate_transition(IngestionStage.COMPLETED, IngestionStage.FAILED)
    with pytest.raises(InvalidState):
        validate_transition(IngestionStage.PREVIEW_READY, IngestionStage.PERSISTING)


def test_progress_is_monotonic_along_the_happy_path():
    path = [
        IngestionStage.UPLOADING,
        IngestionStage.PARSING,
        IngestionStage.CHUNKING,
        IngestionStage.PREVIEW_READY,
        IngestionStage.CONFIRMING,
        IngestionStage.PERSISTING,
        IngestionStage.EMBEDDING,
        IngestionStage.COMPLETED,
    ]
    values = [STAGE_PROGRESS[stage] for stage in path]
    assert values == sorted(values)
    assert values[-1] == 100


def test_failure_keeps_last_progress():
    assert progress_for(IngestionStage.FAILED, 30) == 30
    assert progress_for(IngestionStage.CANCELLED, 50) == 50
