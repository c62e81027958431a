# tests/services/test_processor_worker.py
"""
Tests for SimulationProcessor and WorkerPool

Coverage:
- Happy path: results layout, confidence, cache reuse
- Model failures: unavailable, timeout, invalid output
- Retry with backoff, retry cap, non-retryable errors, rate limit hints
- Cancellation while processing
- Stuck-job sweep
- Background worker loop start/stop

Run with: pytest tests/services/test_processor_worker.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from simpipe.analysis.benchmark_scorer import create_benchmark_scorer
from simpipe.analysis.competitor_analyzer import create_competitor_analyzer
from simpipe.errors import ModelError, RateLimitError
from simpipe.schemas.simulation import JobStatus
from simpipe.services.forecasting import ForecastModel, ForecastOutput, TrendForecastModel
from simpipe.services.processor import SimulationProcessor
from simpipe.services.result_cache import InMemoryCacheBackend, ResultCache
from simpipe.services.scheduling import RetryPolicy
from simpipe.services.worker import WorkerPool


class ScriptedModel(ForecastModel):
    """Model double: delegates to the baseline unless told to fail, stall or misbehave."""

    name = "scripted"

    def __init__(self, clock, error=None, delay=0.0, output=None, on_predict=None):
        self.baseline = TrendForecastModel(clock=clock)
        self.error = error
        self.delay = delay
        self.output = output
        self.on_predict = on_predict
        self.calls = 0

    async def predict(self, dataset, request):
        self.calls += 1
        if self.on_predict:
            await self.on_predict()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.output is not None:
            return self.output
        return await self.baseline.predict(dataset, request)


@pytest.fixture
def build_workers(queue, dataset_provider, clock):
    """Factory for a processor + worker pool around the shared queue."""
    def _build(model=None, max_retries=3, model_timeout=5.0, cache=None):
        processor = SimulationProcessor(
            queue=queue,
            datasets=dataset_provider,
            model=model or TrendForecastModel(clock=clock),
            benchmark_scorer=create_benchmark_scorer(clock=clock),
            competitor_analyzer=create_competitor_analyzer(clock=clock),
            cache=cache,
            model_timeout_seconds=model_timeout,
            clock=clock,
        )
        return WorkerPool(
            queue=queue,
            processor=processor,
            retry_policy=RetryPolicy(max_retries=max_retries, random_fn=lambda: 0.0),
            worker_count=2,
            poll_interval=0.01,
            timeout_multiplier=3.0,
            clock=clock,
        )
    return _build


# ============================================================================
# TEST: Happy Path
# ============================================================================

class TestProcessing:

    @pytest.mark.asyncio
    async def test_job_completes_with_results(self, build_workers, enqueue_job, queue):
        workers = build_workers()
        job = await enqueue_job()

        # Execute
        processed = await workers.drain()

        # Assert
        assert processed == 1
        done = await queue.get(job.id)
        assert done.status == JobStatus.COMPLETED
        assert set(done.results) >= {
            "forecast", "benchmark_analysis", "competitive_analysis",
            "data_quality", "confidence", "model_metadata",
        }
        assert done.model_metadata["model_name"] == "trend-baseline"
        assert len(done.results["forecast"]["trajectories"]) == 31
        assert set(done.results["forecast"]["scenarios"]) == {"realistic", "optimistic"}

    @pytest.mark.asyncio
    async def test_overall_confidence_is_model_times_data_quality(self, build_workers, enqueue_job, queue):
        """28 history points give the baseline model 0.78 confidence"""
        workers = build_workers()
        job = await enqueue_job()

        await workers.drain()

        confidence = (await queue.get(job.id)).results["confidence"]
        assert confidence["model"] == pytest.approx(0.78)
        assert confidence["overall"] == pytest.approx(confidence["model"] * confidence["data_quality"], abs=1e-4)

    @pytest.mark.asyncio
    async def test_identical_request_served_from_cache(self, build_workers, enqueue_job, queue, clock):
        model = ScriptedModel(clock)
        cache = ResultCache(InMemoryCacheBackend(), clock=clock)
        workers = build_workers(model=model, cache=cache)
        first = await enqueue_job()
        second = await enqueue_job()

        await workers.drain()

        assert model.calls == 1
        assert cache.hits == 1
        first_done = await queue.get(first.id)
        second_done = await queue.get(second.id)
        assert second_done.status == JobStatus.COMPLETED
        assert second_done.results == first_done.results


# ============================================================================
# TEST: Model Failures
# ============================================================================

class TestModelFailures:

    @pytest.mark.asyncio
    async def test_timeout_becomes_model_error(self, build_workers, enqueue_job, queue, clock):
        workers = build_workers(model=ScriptedModel(clock, delay=1.0), model_timeout=0.01)
        await enqueue_job()
        job = await queue.claim_next()

        with pytest.raises(ModelError, match="timed out"):
            await workers.processor.process(job)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_model_error(self, build_workers, enqueue_job, queue, clock):
        workers = build_workers(model=ScriptedModel(clock, error=RuntimeError("segfault in model")))
        await enqueue_job()
        job = await queue.claim_next()

        with pytest.raises(ModelError, match="unavailable"):
            await workers.processor.process(job)

    @pytest.mark.asyncio
    async def test_invalid_output_rejected(self, build_workers, enqueue_job, queue, clock):
        model = ScriptedModel(clock, output=ForecastOutput(trajectories=[]))
        workers = build_workers(model=model)
        await enqueue_job()
        job = await queue.claim_next()

        with pytest.raises(ModelError, match="invalid output"):
            await workers.processor.process(job)


# ============================================================================
# TEST: Retry Policy
# ============================================================================

class TestRetries:

    @pytest.mark.asyncio
    async def test_transient_failure_requeued_with_backoff(self, build_workers, enqueue_job, queue, clock):
        """First failure waits base delay (5s) before it is eligible again"""
        workers = build_workers(model=ScriptedModel(clock, error=ConnectionError("connection reset")))
        job = await enqueue_job()

        # Execute
        await workers.run_once()

        # Assert
        retried = await queue.get(job.id)
        assert retried.status == JobStatus.QUEUED
        assert retried.queue_metadata.retry_count == 1
        assert retried.queue_metadata.retry_at == clock() + timedelta(seconds=5)
        assert await queue.claim_next() is None

        clock.advance(seconds=5)
        assert (await queue.claim_next()).id == job.id

    @pytest.mark.asyncio
    async def test_retry_cap_leaves_job_failed(self, build_workers, enqueue_job, queue, clock):
        model = ScriptedModel(clock, error=ConnectionError("connection reset"))
        workers = build_workers(model=model, max_retries=2)
        job = await enqueue_job()

        await workers.run_once()
        clock.advance(seconds=5)
        await workers.run_once()
        clock.advance(seconds=10)
        await workers.run_once()

        failed = await queue.get(job.id)
        assert model.calls == 3
        assert failed.status == JobStatus.FAILED
        assert failed.queue_metadata.retry_count == 2
        assert failed.queue_metadata.error.startswith("MODEL_ERROR")

    @pytest.mark.asyncio
    async def test_missing_campaign_fails_without_retry(self, build_workers, enqueue_job, queue):
        workers = build_workers()
        job = await enqueue_job(campaign_id="camp-missing")

        await workers.run_once()

        failed = await queue.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.queue_metadata.retry_count == 0
        assert failed.queue_metadata.error.startswith("CAMPAIGN_NOT_FOUND")

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_respected(self, build_workers, enqueue_job, queue, clock):
        model = ScriptedModel(clock, error=RateLimitError("slow down", service="model", retry_after=120))
        workers = build_workers(model=model)
        job = await enqueue_job()

        await workers.run_once()

        retried = await queue.get(job.id)
        assert retried.queue_metadata.retry_at == clock() + timedelta(seconds=120)


# ============================================================================
# TEST: Cancellation
# ============================================================================

class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_during_predict_discards_results(self, build_workers, enqueue_job, queue, clock):
        job = await enqueue_job()

        async def cancel_job():
            await queue.cancel(job.id)

        workers = build_workers(model=ScriptedModel(clock, on_predict=cancel_job))

        # Execute
        await workers.run_once()

        # Assert
        stored = await queue.get(job.id)
        assert stored.status == JobStatus.CANCELLED
        assert stored.results is None


# ============================================================================
# TEST: Stuck Jobs
# ============================================================================

class TestStuckSweep:

    @pytest.mark.asyncio
    async def test_stuck_job_requeued(self, build_workers, enqueue_job, queue, clock):
        """A 60s estimate with a 3x multiplier times out after 180s"""
        workers = build_workers()
        job = await enqueue_job(estimated_duration=60.0)
        await queue.claim_next()

        clock.advance(seconds=180)
        assert await workers.sweep_stuck_jobs() == 0

        clock.advance(seconds=1)
        assert await workers.sweep_stuck_jobs() == 1

        swept = await queue.get(job.id)
        assert swept.status == JobStatus.QUEUED
        assert swept.queue_metadata.retry_count == 1


# ============================================================================
# TEST: Worker Loop
# ============================================================================

class TestWorkerLoop:

    @pytest.mark.asyncio
    async def test_start_processes_and_stop_drains(self, build_workers, enqueue_job, queue):
        workers = build_workers()
        job = await enqueue_job()

        await workers.start()
        assert workers.running is True
        for _ in range(200):
            if (await queue.get(job.id)).status == JobStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await workers.stop()

        assert workers.running is False
        assert (await queue.get(job.id)).status == JobStatus.COMPLETED
