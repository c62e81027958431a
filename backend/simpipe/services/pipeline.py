# backend/simpipe/services/pipeline.py
"""Wiring for the simulation pipeline: one place that builds every component."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from simpipe.analysis.benchmark_scorer import BenchmarkScorer, create_benchmark_scorer
from simpipe.analysis.competitor_analyzer import CompetitorAnalyzer, create_competitor_analyzer
from simpipe.analysis.reference_data import get_scoring_tables
from simpipe.clock import Clock, utcnow
from simpipe.services.dataset_provider import DatasetProvider, HttpDatasetProvider, InMemoryDatasetProvider
from simpipe.services.forecasting import ForecastModel, TrendForecastModel
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_store import InMemoryJobStore, JobStore, SqlJobStore
from simpipe.services.processor import SimulationProcessor
from simpipe.services.result_cache import ResultCache, create_cache_backend
from simpipe.services.scheduling import RetryPolicy
from simpipe.services.simulation_service import SimulationPipelineService
from simpipe.services.worker import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    store: JobStore
    queue: JobQueue
    cache: ResultCache
    datasets: DatasetProvider
    benchmark_scorer: BenchmarkScorer
    competitor_analyzer: CompetitorAnalyzer
    processor: SimulationProcessor
    workers: WorkerPool
    service: SimulationPipelineService

    def purge_reference_caches(self) -> int:
        """Drop expired benchmark and competitor entries. Returns the count."""
        return self.benchmark_scorer.cache.purge_expired() + self.competitor_analyzer.cache.purge_expired()

    async def close(self):
        await self.workers.stop()
        await self.cache.close()


def create_pipeline(
    settings,
    session_factory: Optional[async_sessionmaker] = None,
    datasets: Optional[DatasetProvider] = None,
    model: Optional[ForecastModel] = None,
    in_memory: bool = False,
    clock: Clock = utcnow
) -> Pipeline:
    """
    Build the pipeline from settings.

    Args:
        settings: Application settings
        session_factory: Async session factory for the SQL store and cache
        datasets: Dataset provider; defaults to the HTTP dataset service
        model: Forecasting model; defaults to the trend baseline
        in_memory: Keep jobs and cached results in process memory
    """
    if in_memory:
        store = InMemoryJobStore()
        cache_kind = "memory"
    else:
        if session_factory is None:
            from simpipe.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        store = SqlJobStore(session_factory)
        cache_kind = settings.CACHE_BACKEND

    cache = ResultCache(
        create_cache_backend(cache_kind, session_factory=session_factory, redis_url=settings.REDIS_URL, clock=clock),
        default_ttl_seconds=settings.RESULT_CACHE_TTL_SECONDS,
        clock=clock,
    )

    if datasets is None:
        if settings.DATASET_SERVICE_URL:
            datasets = HttpDatasetProvider(settings.DATASET_SERVICE_URL, timeout=settings.DATASET_SERVICE_TIMEOUT_SECONDS)
        else:
            logger.warning("DATASET_SERVICE_URL not set, using an empty in-memory dataset provider")
            datasets = InMemoryDatasetProvider()

    tables = get_scoring_tables(settings.SCORING_TABLES_PATH)
    benchmark_scorer = create_benchmark_scorer(tables, settings.BENCHMARK_CACHE_TTL_SECONDS, clock)
    competitor_analyzer = create_competitor_analyzer(tables, settings.COMPETITOR_CACHE_TTL_SECONDS, clock)

    queue = JobQueue(store, clock=clock)
    retry_policy = RetryPolicy.from_settings(settings)
    processor = SimulationProcessor(
        queue=queue,
        datasets=datasets,
        model=model or TrendForecastModel(clock=clock),
        benchmark_scorer=benchmark_scorer,
        competitor_analyzer=competitor_analyzer,
        cache=cache,
        model_timeout_seconds=settings.MODEL_TIMEOUT_SECONDS,
        clock=clock,
    )
    workers = WorkerPool(
        queue=queue,
        processor=processor,
        retry_policy=retry_policy,
        worker_count=settings.WORKER_COUNT,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        timeout_multiplier=settings.JOB_TIMEOUT_MULTIPLIER,
        clock=clock,
    )
    service = SimulationPipelineService(queue, retry_policy=retry_policy, cache=cache, clock=clock)

    return Pipeline(
        store=store,
        queue=queue,
        cache=cache,
        datasets=datasets,
        benchmark_scorer=benchmark_scorer,
        competitor_analyzer=competitor_analyzer,
        processor=processor,
        workers=workers,
        service=service,
    )
