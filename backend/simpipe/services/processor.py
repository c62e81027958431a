# backend/simpipe/services/processor.py
"""
Per-job simulation pipeline.

    cache lookup -> fetch datasets -> data quality gate -> analyzers
      -> forecasting model -> output validation -> cache store -> commit

Analyzers are synchronous and run in worker threads. The job's status is
re-checked before the commit; a job cancelled mid-flight raises
JobCancelledError and its results are discarded.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional, Tuple

from simpipe.analysis.benchmark_scorer import BenchmarkScorer
from simpipe.analysis.competitor_analyzer import CompetitorAnalyzer
from simpipe.analysis.datasets import EnrichedDataset, MarketDataset
from simpipe.analysis.validation import (
    DataQualityValidator,
    ModelOutputValidator,
    raise_if_invalid,
)
from simpipe.clock import Clock, utcnow
from simpipe.errors import JobCancelledError, ModelError, SimulationError
from simpipe.schemas.simulation import JobStatus, SimulationRequest
from simpipe.services.dataset_provider import DatasetProvider
from simpipe.services.forecasting import ForecastModel
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_states import SimulationJob
from simpipe.services.result_cache import ResultCache, fingerprint

logger = logging.getLogger(__name__)


def request_fingerprint(campaign_id: str, request: SimulationRequest) -> str:
    """
    Cache key for a request: campaign, timeframe and metric types only.

    Industry, region and scenario types are not part of the key, so two
    requests for the same campaign and window that differ only in those
    share a cached result. Invalidate the campaign's cache entries when
    those inputs change.
    """
    timeframe = request.timeframe.model_dump(mode="json") if request.timeframe else None
    return fingerprint(campaign_id, timeframe, request.metric_types)


class SimulationProcessor:
    """Runs one claimed job to completion or raises."""

    def __init__(
        self,
        queue: JobQueue,
        datasets: DatasetProvider,
        model: ForecastModel,
        benchmark_scorer: BenchmarkScorer,
        competitor_analyzer: CompetitorAnalyzer,
        cache: Optional[ResultCache] = None,
        quality_validator: Optional[DataQualityValidator] = None,
        output_validator: Optional[ModelOutputValidator] = None,
        model_timeout_seconds: float = 120.0,
        clock: Clock = utcnow
    ):
        self.queue = queue
        self.datasets = datasets
        self.model = model
        self.benchmark_scorer = benchmark_scorer
        self.competitor_analyzer = competitor_analyzer
        self.cache = cache
        self.quality_validator = quality_validator or DataQualityValidator(clock=clock)
        self.output_validator = output_validator or ModelOutputValidator()
        self.model_timeout_seconds = model_timeout_seconds
        self.clock = clock

    async def process(self, job: SimulationJob) -> SimulationJob:
        """
        Process a job that is already in `processing`.

        Returns:
            The completed job

        Raises:
            JobCancelledError: If the job was cancelled before the commit
            SimulationError: Any pipeline failure, for the worker to classify
        """
        request = SimulationRequest.model_validate(job.config)
        await self.ensure_active(job.id)

        key = request_fingerprint(job.campaign_id, request)
        cached = await self.cache.get(key) if self.cache else None
        if cached is not None:
            logger.info(f"Serving simulation {job.id} from cache")
            results, model_metadata = cached, cached.get("model_metadata")
        else:
            results, model_metadata = await self.run_pipeline(job, request)
            if self.cache:
                await self.cache.put(key, results, campaign_id=job.campaign_id)

        await self.ensure_active(job.id)
        return await self.queue.complete(job.id, results, model_metadata)

    async def ensure_active(self, job_id: str):
        job = await self.queue.get(job_id)
        if job.status == JobStatus.CANCELLED:
            logger.info(f"Simulation {job_id} was cancelled, discarding work")
            raise JobCancelledError(job_id)

    async def run_pipeline(self, job: SimulationJob, request: SimulationRequest) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        campaign_dataset = await self.datasets.get_campaign_dataset(job.campaign_id)
        market = await self.datasets.get_market_dataset(request.industry, request.region)
        enriched = EnrichedDataset(campaign_dataset=campaign_dataset, market_dataset=market)

        quality = self.quality_validator.validate_dataset(enriched)
        raise_if_invalid(quality, "Data quality validation")
        if quality.warnings:
            logger.warning(f"Simulation {job.id}: {len(quality.warnings)} data quality warnings")

        await self.ensure_active(job.id)

        benchmark = await asyncio.to_thread(
            self.benchmark_scorer.analyze_benchmarks,
            campaign_dataset, request.industry, request.region
        )
        competitive = await asyncio.to_thread(
            self.competitor_analyzer.analyze_competitors,
            campaign_dataset, market or MarketDataset(), request.industry, request.region
        )

        await self.ensure_active(job.id)
        forecast = await self.predict(enriched, request)

        model_metadata = forecast["model_metadata"]
        model_confidence = float(model_metadata.get("confidence_score", 0.0))
        data_quality = quality.quality.overall

        results = {
            "forecast": {
                "trajectories": forecast["trajectories"],
                "scenarios": forecast["scenarios"],
                "confidence_intervals": forecast["confidence_intervals"],
            },
            "benchmark_analysis": benchmark.to_dict(),
            "competitive_analysis": competitive.to_dict(),
            "data_quality": {
                "score": quality.quality.to_dict(),
                "warnings": [asdict(w) for w in quality.warnings],
            },
            "confidence": {
                "model": round(model_confidence, 4),
                "data_quality": round(data_quality, 4),
                "overall": round(model_confidence * data_quality, 4),
            },
            "model_metadata": model_metadata,
            "generated_at": self.clock().isoformat(),
        }
        return results, model_metadata

    async def predict(self, dataset: EnrichedDataset, request: SimulationRequest) -> Dict[str, Any]:
        """Call the model under a timeout and validate what it returns."""
        model_name = getattr(self.model, "name", type(self.model).__name__)
        try:
            forecast = await asyncio.wait_for(
                self.model.predict(dataset, request),
                timeout=self.model_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ModelError(
                f"Model {model_name} timed out after {self.model_timeout_seconds}s",
                model_name=model_name,
                timeout_seconds=self.model_timeout_seconds
            ) from e
        except SimulationError:
            raise
        except Exception as e:
            raise ModelError(f"Model {model_name} unavailable: {e}", model_name=model_name) from e

        output = forecast.to_dict()
        validation = self.output_validator.validate_prediction_output(output)
        if not validation.valid:
            messages = ", ".join(f"{e.field}: {e.message}" for e in validation.errors)
            raise ModelError(f"Model {model_name} returned invalid output: {messages}", model_name=model_name)
        return output
