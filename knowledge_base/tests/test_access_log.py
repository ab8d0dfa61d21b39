import pytest

from knowledge_base.services.knowledge.access_log import ChunkAccessLog


@pytest.fixture
def access_log(db_session, clock):
    return ChunkAccessLog(db_session, clock)


@pytest.mark.asyncio
async def test_first_access_creates_entry(access_log):
    entry = await access_log.record_access("agent-1", "chunk-a", 0.8)

    assert entry.access_count == 1
    assert entry.avg_relevance_score == pytest.approx(0.8)
    assert entry.first_accessed_at == entry.last_accessed_at


@pytest.mark.asyncio
async def test_repeated_access_keeps_running_average(access_log, clock):
    await access_log.record_access("agent-1", "chunk-a", 0.9)
    clock.advance(minutes=5)
    await access_log.record_access("agent-1", "chunk-a", 0.6)
    entry = await access_log.record_access("agent-1", "chunk-a", 0.3)

    assert entry.access_count == 3
    assert entry.avg_relevance_score == pytest.approx(0.6)
    assert entry.last_accessed_at > entry.first_accessed_at


@pytest.mark.asyncio
async def test_entries_are_per_agent(access_log):
    await access_log.record_access("agent-1", "chunk-a", 0.5)
    await access_log.record_access("agent-2", "chunk-a", 0.5)

    assert (await access_log.get("agent-1", "chunk-a")).access_count == 1
    assert (await access_log.get("agent-2", "chunk-a")).access_count == 1


@pytest.mark.asyncio
async def test_hot_chunks_ordered_by_access_count(access_log, clock):
    for _ in range(3):
        await access_log.record_access("agent-1", "warm", 0.5)
    for _ in range(5):
        await access_log.record_access("agent-1", "hot", 0.5)
    await access_log.record_access("agent-1", "cold", 0.5)
    await access_log.record_access("agent-2", "elsewhere", 0.5)

    hot = await access_log.get_hot_chunks("agent-1", limit=2)

    assert [entry.chunk_key for entry in hot] == ["hot", "warm"]
