# backend/simpipe/services/job_queue.py
"""
Priority job queue over the durable job store.

Ordering contract: priority descending, then queued_at ascending (FIFO
within a priority band). Jobs waiting on a retry delay (`retry_at` in the
future) are not eligible until it passes. No fairness across priorities.

Every write that depends on the current status goes through the store's
compare-and-set, so two workers racing for the same job cannot both win,
and a late result for a cancelled job is rejected.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from simpipe.clock import Clock, ensure_utc, utcnow
from simpipe.errors import InvalidTransitionError, JobCancelledError, JobNotFoundError
from simpipe.schemas.simulation import JobStatus
from simpipe.services import job_states
from simpipe.services.job_states import SimulationJob, TERMINAL_STATUSES
from simpipe.services.job_store import JobStore

logger = logging.getLogger(__name__)

# Flat per-job estimate used for organization wait times
DEFAULT_WAIT_PER_JOB_SECONDS = 60.0
DEFAULT_STATISTICS_WINDOW_HOURS = 24
DEFAULT_JOBS_BY_STATUS_LIMIT = 50


def dequeue_key(job: SimulationJob):
    metadata = job.queue_metadata
    return (-metadata.priority, metadata.queued_at)


class JobQueue:
    """
    Job lifecycle operations: enqueue, claim, complete, fail, retry, cancel,
    retention and introspection.
    """

    def __init__(self, store: JobStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def enqueue(
        self,
        campaign_id: str,
        organization_id: str,
        requester_id: str,
        config: Dict[str, Any],
        priority: int,
        estimated_duration: float,
        subscription_tier: str,
        job_id: Optional[str] = None
    ) -> SimulationJob:
        now = self.clock()
        job = SimulationJob(
            id=job_id or str(uuid.uuid4()),
            campaign_id=campaign_id,
            organization_id=organization_id,
            requester_id=requester_id,
            config=config,
            state=job_states.enqueue(priority, estimated_duration, subscription_tier, now),
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(job)
        logger.info(
            f"Enqueued simulation {job.id} (campaign={campaign_id}, "
            f"priority={priority}, tier={subscription_tier})"
        )
        return job

    async def get(self, job_id: str) -> SimulationJob:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def next_jobs(self, limit: Optional[int] = None) -> List[SimulationJob]:
        """Eligible queued jobs in dequeue order."""
        now = self.clock()
        queued = await self.store.list_jobs(status=JobStatus.QUEUED)
        eligible = [
            job for job in queued
            if job.queue_metadata.retry_at is None or job.queue_metadata.retry_at <= now
        ]
        eligible.sort(key=dequeue_key)
        return eligible[:limit] if limit is not None else eligible

    async def claim_next(self) -> Optional[SimulationJob]:
        """
        Atomically move the best eligible job from queued to processing.

        Returns None when nothing is eligible. Losing a race on one candidate
        moves on to the next.
        """
        for candidate in await self.next_jobs():
            now = self.clock()
            claimed = candidate.with_state(job_states.start(candidate.state, now), now)
            if await self.store.update(claimed, expected_status=JobStatus.QUEUED):
                logger.info(f"Claimed simulation {claimed.id} (priority={claimed.queue_metadata.priority})")
                return claimed
            logger.debug(f"Lost claim race for simulation {candidate.id}")
        return None

    async def start(self, job_id: str) -> SimulationJob:
        """Start a specific queued job."""
        return await self._transition(
            job_id, "start", JobStatus.QUEUED,
            lambda job, now: job_states.start(job.state, now)
        )

    async def complete(
        self,
        job_id: str,
        results: Dict[str, Any],
        model_metadata: Optional[Dict[str, Any]] = None
    ) -> SimulationJob:
        """
        Commit results for a processing job.

        Raises JobCancelledError if the job was cancelled while the results
        were being computed; those results are discarded.
        """
        job = await self._transition(
            job_id, "complete", JobStatus.PROCESSING,
            lambda job, now: job_states.complete(job.state, results, now, model_metadata)
        )
        logger.info(f"Completed simulation {job_id}")
        return job

    async def fail(self, job_id: str, error: str) -> SimulationJob:
        job = await self._transition(
            job_id, "fail", JobStatus.PROCESSING,
            lambda job, now: job_states.fail(job.state, error, now)
        )
        logger.error(f"Simulation {job_id} failed: {error}")
        return job

    async def retry(self, job_id: str, retry_count: int, retry_at: Optional[datetime] = None) -> SimulationJob:
        """Requeue a failed job. The caller chooses the count and due time."""
        retry_at = ensure_utc(retry_at) if retry_at is not None else None
        job = await self._transition(
            job_id, "retry", JobStatus.FAILED,
            lambda job, now: job_states.retry(job.state, retry_count, retry_at or now)
        )
        logger.info(f"Requeued simulation {job_id} (retry #{retry_count}, due {job.queue_metadata.retry_at})")
        return job

    async def cancel(self, job_id: str) -> SimulationJob:
        """
        Cancel a queued or processing job.

        A worker may claim the job between the read and the write; the
        compare-and-set then fails and the cancel is retried against the
        new status until it lands or the job reaches a terminal status.
        """
        while True:
            job = await self.get(job_id)
            if job.status not in (JobStatus.QUEUED, JobStatus.PROCESSING):
                raise InvalidTransitionError("cancel", job.status.value, job_id)

            now = self.clock()
            cancelled = job.with_state(job_states.cancel(job.state), now)
            if await self.store.update(cancelled, expected_status=job.status):
                logger.info(f"Cancelled simulation {job_id}")
                return cancelled
            logger.debug(f"Simulation {job_id} changed status during cancel, retrying")

    async def _transition(self, job_id: str, action: str, expected: JobStatus, build) -> SimulationJob:
        job = await self.get(job_id)
        if job.status != expected:
            self._reject(job, action)

        now = self.clock()
        try:
            updated = job.with_state(build(job, now), now)
        except InvalidTransitionError:
            self._reject(job, action)

        if not await self.store.update(updated, expected_status=expected):
            # Status changed underneath us
            self._reject(await self.get(job_id), action)
        return updated

    @staticmethod
    def _reject(job: SimulationJob, action: str):
        if job.status == JobStatus.CANCELLED and action in ("complete", "fail"):
            raise JobCancelledError(job.id)
        raise InvalidTransitionError(action, job.status.value, job.id)

    # ========================================================================
    # POLLING
    # ========================================================================

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        """Status and queue metadata snapshot with a progress estimate."""
        job = await self.get(job_id)
        snapshot = job.to_dict()
        snapshot.pop("results")
        snapshot.pop("model_metadata")
        snapshot["progress"] = job_states.estimate_progress(job.state, self.clock())
        return snapshot

    async def get_result(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Results of a completed job, None otherwise."""
        job = await self.get(job_id)
        return job.results

    async def find_stuck(self, timeout_multiplier: float) -> List[SimulationJob]:
        """Processing jobs running longer than `timeout_multiplier` times their estimate."""
        now = self.clock()
        stuck = []
        for job in await self.store.list_jobs(status=JobStatus.PROCESSING):
            metadata = job.queue_metadata
            if metadata.started_at is None:
                continue
            limit = timedelta(seconds=metadata.estimated_duration * timeout_multiplier)
            if now - metadata.started_at > limit:
                stuck.append(job)
        return stuck

    # ========================================================================
    # RETENTION
    # ========================================================================

    async def sweep_retention(self, retention_days: int) -> int:
        """Delete terminal jobs created more than `retention_days` ago."""
        cutoff = self.clock() - timedelta(days=retention_days)
        deleted = await self.store.delete_where(TERMINAL_STATUSES, created_before=cutoff)
        logger.info(f"Retention sweep removed {deleted} jobs created before {cutoff.isoformat()}")
        return deleted

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    async def status_counts(self) -> Dict[str, int]:
        return await self.store.count_by_status()

    async def organization_status(self, organization_id: str) -> Dict[str, Any]:
        counts = await self.store.count_by_status(organization_id=organization_id)
        queued = counts[JobStatus.QUEUED.value]
        processing = counts[JobStatus.PROCESSING.value]
        return {
            "organization_id": organization_id,
            "queued": queued,
            "processing": processing,
            "total_active": queued + processing,
            "estimated_wait_seconds": queued * DEFAULT_WAIT_PER_JOB_SECONDS,
        }

    async def count_queued_for_organization(self, organization_id: str) -> int:
        counts = await self.store.count_by_status(organization_id=organization_id)
        return counts[JobStatus.QUEUED.value]

    async def statistics(self, window_hours: float = DEFAULT_STATISTICS_WINDOW_HOURS) -> Dict[str, Any]:
        """
        Aggregate statistics over jobs created in the trailing window.

        Average processing time is created_at -> completed_at over completed
        jobs. Success rate is completed / total as a percentage.
        """
        since = self.clock() - timedelta(hours=window_hours)
        jobs = await self.store.list_jobs(created_after=since)

        counts = {status.value: 0 for status in JobStatus}
        durations = []
        for job in jobs:
            counts[job.status.value] += 1
            if job.status == JobStatus.COMPLETED and job.completed_at:
                durations.append((job.completed_at - job.created_at).total_seconds())

        total = len(jobs)
        return {
            "window_hours": window_hours,
            "total_jobs": total,
            "completed": counts[JobStatus.COMPLETED.value],
            "failed": counts[JobStatus.FAILED.value],
            "cancelled": counts[JobStatus.CANCELLED.value],
            "queued": counts[JobStatus.QUEUED.value],
            "processing": counts[JobStatus.PROCESSING.value],
            "average_processing_seconds": sum(durations) / len(durations) if durations else 0.0,
            "success_rate": (counts[JobStatus.COMPLETED.value] / total * 100) if total else 0.0,
        }

    async def jobs_by_status(
        self,
        status: JobStatus,
        limit: int = DEFAULT_JOBS_BY_STATUS_LIMIT
    ) -> List[SimulationJob]:
        """Newest jobs in `status`."""
        return await self.store.list_jobs(status=status, limit=limit)
