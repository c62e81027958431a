# backend/simpipe/services/simulation_service.py
"""
Collaborator-facing facade: submit, poll, cancel, retry, fetch results and
inspect the queue. Request validation happens here, before anything is
queued; an invalid request never becomes a job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from simpipe.analysis.validation import (
    SimulationRequestValidator,
    ValidationResult,
    raise_if_invalid,
)
from simpipe.clock import Clock, utcnow
from simpipe.errors import InvalidTransitionError, QueueLimitExceededError, RetryLimitExceededError
from simpipe.schemas.simulation import JobStatus, SimulationRequest
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_states import SimulationJob
from simpipe.services.result_cache import ResultCache
from simpipe.services.scheduling import RetryPolicy, estimate_processing_duration, get_tier_policy

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    job: SimulationJob
    validation: ValidationResult


class SimulationPipelineService:

    def __init__(
        self,
        queue: JobQueue,
        retry_policy: Optional[RetryPolicy] = None,
        validator: Optional[SimulationRequestValidator] = None,
        cache: Optional[ResultCache] = None,
        clock: Clock = utcnow
    ):
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy()
        self.validator = validator or SimulationRequestValidator(clock=clock)
        self.cache = cache
        self.clock = clock

    async def submit(
        self,
        request: SimulationRequest,
        organization_id: str,
        requester_id: str,
        subscription_tier: str = "free"
    ) -> Submission:
        """
        Validate and enqueue a simulation request.

        Raises:
            SimulationValidationError: If the request has blocking errors
            QueueLimitExceededError: If the organization's tier queue is full
            ValueError: If the subscription tier is unknown
        """
        validation = self.validator.validate(request)
        raise_if_invalid(validation, "Simulation request validation")

        policy = get_tier_policy(subscription_tier)
        queued = await self.queue.count_queued_for_organization(organization_id)
        if queued >= policy.max_queued_jobs:
            raise QueueLimitExceededError(policy.tier, policy.max_queued_jobs)

        job = await self.queue.enqueue(
            campaign_id=request.campaign_id,
            organization_id=organization_id,
            requester_id=requester_id,
            config=request.model_dump(mode="json"),
            priority=policy.priority,
            estimated_duration=estimate_processing_duration(request),
            subscription_tier=policy.tier,
        )
        return Submission(job=job, validation=validation)

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        """Status snapshot for polling, with whether a retry may be offered."""
        snapshot = await self.queue.get_status(job_id)
        metadata = snapshot["queue_metadata"]
        snapshot["retry_allowed"] = (
            snapshot["status"] == JobStatus.FAILED.value
            and self.retry_policy.retry_allowed(metadata["retry_count"])
        )
        return snapshot

    async def cancel(self, job_id: str) -> SimulationJob:
        return await self.queue.cancel(job_id)

    async def retry(
        self,
        job_id: str,
        retry_count: Optional[int] = None,
        retry_at: Optional[datetime] = None
    ) -> SimulationJob:
        """
        Manually requeue a failed job.

        The retry count defaults to the current count plus one and may not
        exceed the configured maximum.
        """
        job = await self.queue.get(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidTransitionError("retry", job.status.value, job_id)

        count = retry_count if retry_count is not None else job.queue_metadata.retry_count + 1
        if count > self.retry_policy.max_retries:
            raise RetryLimitExceededError(job_id, self.retry_policy.max_retries)
        return await self.queue.retry(job_id, count, retry_at)

    async def get_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        return await self.queue.get_result(job_id)

    async def get_job(self, job_id: str) -> SimulationJob:
        return await self.queue.get(job_id)

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    async def status_counts(self) -> Dict[str, int]:
        return await self.queue.status_counts()

    async def organization_status(self, organization_id: str) -> Dict[str, Any]:
        return await self.queue.organization_status(organization_id)

    async def queue_statistics(self, window_hours: float = 24) -> Dict[str, Any]:
        return await self.queue.statistics(window_hours)

    async def jobs_by_status(self, status: JobStatus, limit: int = 50) -> List[SimulationJob]:
        return await self.queue.jobs_by_status(status, limit)

    async def invalidate_campaign_cache(self, campaign_id: str) -> int:
        if self.cache is None:
            return 0
        return await self.cache.invalidate_campaign(campaign_id)
