# tests/services/test_sql_job_store.py
"""
Tests for the SQLAlchemy job store and result cache tables

Runs against in-memory SQLite through aiosqlite.

Coverage:
- Insert / get round trip of queued and completed jobs
- Compare-and-set update
- Queue operations over SQL (ordering, claim, retention, counts)
- SQL result cache backend

Run with: pytest tests/services/test_sql_job_store.py -v
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from simpipe.database import init_db
from simpipe.errors import JobCancelledError
from simpipe.schemas.simulation import JobStatus
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_store import SqlJobStore
from simpipe.services.result_cache import ResultCache, SqlCacheBackend


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(bind=engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlJobStore(session_factory)


@pytest.fixture
def sql_queue(sql_store, clock):
    return JobQueue(sql_store, clock=clock)


async def enqueue(sql_queue, priority=10, organization_id="org-1"):
    return await sql_queue.enqueue(
        campaign_id="camp-123",
        organization_id=organization_id,
        requester_id="user-1",
        config={"campaign_id": "camp-123"},
        priority=priority,
        estimated_duration=60.0,
        subscription_tier="free",
    )


# ============================================================================
# TEST: Persistence
# ============================================================================

class TestRoundTrip:

    @pytest.mark.asyncio
    async def test_queued_job_round_trip(self, sql_queue, sql_store):
        job = await enqueue(sql_queue, priority=50)

        # Execute
        loaded = await sql_store.get(job.id)

        # Assert
        assert loaded == job
        assert loaded.queue_metadata.queued_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_completed_job_round_trip(self, sql_queue, sql_store, clock):
        job = await enqueue(sql_queue)
        await sql_queue.claim_next()
        clock.advance(seconds=30)
        await sql_queue.complete(job.id, {"forecast": {"trajectories": []}}, {"model_name": "trend-baseline"})

        loaded = await sql_store.get(job.id)

        assert loaded.status == JobStatus.COMPLETED
        assert loaded.queue_metadata is None
        assert loaded.results == {"forecast": {"trajectories": []}}
        assert loaded.model_metadata == {"model_name": "trend-baseline"}
        assert loaded.completed_at == clock()

    @pytest.mark.asyncio
    async def test_missing_job(self, sql_store):
        assert await sql_store.get("missing") is None
        assert await sql_store.delete("missing") is False


# ============================================================================
# TEST: Compare-And-Set
# ============================================================================

class TestCompareAndSet:

    @pytest.mark.asyncio
    async def test_update_with_stale_status_fails(self, sql_queue, sql_store):
        """A write expecting 'queued' loses once someone else started the job"""
        job = await enqueue(sql_queue)
        await sql_queue.claim_next()

        stale = job.with_state(job.state, job.updated_at)

        assert await sql_store.update(stale, expected_status=JobStatus.QUEUED) is False
        assert (await sql_store.get(job.id)).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_second_commit_loses(self, sql_queue, sql_store):
        """Only the first write out of processing wins"""
        await enqueue(sql_queue)
        claimed = await sql_queue.claim_next()

        completed = await sql_queue.complete(claimed.id, {"ok": True})

        assert completed.status == JobStatus.COMPLETED
        assert await sql_store.update(completed, expected_status=JobStatus.PROCESSING) is False

    @pytest.mark.asyncio
    async def test_cancel_blocks_late_commit(self, sql_queue):
        job = await enqueue(sql_queue)
        await sql_queue.claim_next()
        await sql_queue.cancel(job.id)

        with pytest.raises(JobCancelledError):
            await sql_queue.complete(job.id, {"late": True})


# ============================================================================
# TEST: Queue Over SQL
# ============================================================================

class TestSqlQueue:

    @pytest.mark.asyncio
    async def test_dequeue_order(self, sql_queue, clock):
        first = await enqueue(sql_queue, priority=5)
        clock.advance(seconds=1)
        second = await enqueue(sql_queue, priority=5)
        clock.advance(seconds=1)
        third = await enqueue(sql_queue, priority=3)
        clock.advance(seconds=1)
        top = await enqueue(sql_queue, priority=90)

        claimed = [await sql_queue.claim_next() for _ in range(4)]

        assert [j.id for j in claimed] == [top.id, first.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_retention_and_counts(self, sql_queue, sql_store, clock):
        old_queued = await enqueue(sql_queue)
        old_done = await enqueue(sql_queue)
        await sql_queue.start(old_done.id)
        await sql_queue.complete(old_done.id, {})

        clock.advance(days=31)
        await enqueue(sql_queue, organization_id="org-2")

        deleted = await sql_queue.sweep_retention(30)

        assert deleted == 1
        assert await sql_store.get(old_done.id) is None
        assert (await sql_store.get(old_queued.id)).status == JobStatus.QUEUED
        counts = await sql_queue.status_counts()
        assert counts["queued"] == 2
        assert counts["completed"] == 0
        assert (await sql_queue.organization_status("org-2"))["queued"] == 1

    @pytest.mark.asyncio
    async def test_statistics_window(self, sql_queue, clock):
        job = await enqueue(sql_queue)
        await sql_queue.start(job.id)
        clock.advance(seconds=120)
        await sql_queue.complete(job.id, {})

        stats = await sql_queue.statistics(24)

        assert stats["total_jobs"] == 1
        assert stats["success_rate"] == pytest.approx(100.0)
        assert stats["average_processing_seconds"] == pytest.approx(120.0)


# ============================================================================
# TEST: SQL Result Cache
# ============================================================================

class TestSqlCacheBackend:

    @pytest.mark.asyncio
    async def test_put_get_and_expire(self, session_factory, clock):
        cache = ResultCache(SqlCacheBackend(session_factory), default_ttl_seconds=60, clock=clock)

        await cache.put("sim_abc", {"score": 1}, campaign_id="camp-123")
        assert await cache.get("sim_abc") == {"score": 1}

        clock.advance(seconds=61)
        assert await cache.get("sim_abc") is None
        assert (await cache.statistics())["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_upsert_and_invalidate(self, session_factory, clock):
        cache = ResultCache(SqlCacheBackend(session_factory), clock=clock)

        await cache.put("sim_a", {"v": 1}, campaign_id="camp-1")
        await cache.put("sim_a", {"v": 2}, campaign_id="camp-1")
        await cache.put("sim_b", {"v": 3}, campaign_id="camp-2")

        assert await cache.get("sim_a") == {"v": 2}
        assert await cache.invalidate_campaign("camp-1") == 1
        assert await cache.get("sim_a") is None
        assert await cache.get("sim_b") == {"v": 3}

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, session_factory, clock):
        cache = ResultCache(SqlCacheBackend(session_factory), clock=clock)
        await cache.put("sim_short", {}, campaign_id="camp-1", ttl_seconds=10)
        await cache.put("sim_long", {}, campaign_id="camp-1", ttl_seconds=1000)

        clock.advance(seconds=11)

        assert await cache.cleanup_expired() == 1
        assert (await cache.statistics())["valid_entries"] == 1
