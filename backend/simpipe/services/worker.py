# backend/simpipe/services/worker.py
"""
Worker pool and scheduler driver.

N asyncio workers poll the queue. The only coordination between them is
the queue's atomic claim. The driver owns retry policy: a failed job is
moved to `failed` with its error, then requeued with exponential backoff
while the error is retryable and the retry cap is not reached.
"""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from simpipe.clock import Clock, utcnow
from simpipe.errors import (
    InvalidTransitionError,
    JobCancelledError,
    ProcessingTimeoutError,
    RateLimitError,
    describe_error,
    error_severity,
)
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_states import SimulationJob
from simpipe.services.processor import SimulationProcessor
from simpipe.services.scheduling import RetryPolicy

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs claimed jobs through the processor and applies the retry policy."""

    def __init__(
        self,
        queue: JobQueue,
        processor: SimulationProcessor,
        retry_policy: Optional[RetryPolicy] = None,
        worker_count: int = 5,
        poll_interval: float = 2.0,
        timeout_multiplier: float = 3.0,
        clock: Clock = utcnow
    ):
        self.queue = queue
        self.processor = processor
        self.retry_policy = retry_policy or RetryPolicy()
        self.worker_count = worker_count
        self.poll_interval = poll_interval
        self.timeout_multiplier = timeout_multiplier
        self.clock = clock
        self._tasks: List[asyncio.Task] = []
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self):
        if self.running:
            logger.info("Worker pool already running")
            return
        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"simulation-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Started {self.worker_count} simulation workers")

    async def stop(self):
        """Stop polling and wait for in-flight jobs to finish."""
        if not self._tasks:
            return
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Simulation workers stopped")

    async def _worker_loop(self, worker_id: int):
        logger.debug(f"Worker {worker_id} polling")
        while not self._stopping.is_set():
            try:
                job = await self.run_once()
            except Exception as e:
                logger.exception(f"Worker {worker_id} error: {e}")
                job = None

            if job is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run_once(self) -> Optional[SimulationJob]:
        """Claim and run one job. Returns the claimed job, or None if idle."""
        job = await self.queue.claim_next()
        if job is None:
            return None
        await self.execute(job)
        return job

    async def drain(self, max_jobs: Optional[int] = None) -> int:
        """Run eligible jobs until the queue has none left. Returns the count."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if await self.run_once() is None:
                break
            processed += 1
        return processed

    async def execute(self, job: SimulationJob) -> SimulationJob:
        """Process a claimed job; every outcome leaves a terminal or retry state."""
        started = self.clock()
        try:
            completed = await self.processor.process(job)
        except JobCancelledError:
            logger.info(f"Simulation {job.id} cancelled during processing")
            return await self.queue.get(job.id)
        except Exception as exc:
            return await self.handle_failure(job, exc)

        elapsed = (self.clock() - started).total_seconds()
        logger.info(f"Simulation {job.id} completed in {elapsed:.1f}s")
        return completed

    async def handle_failure(self, job: SimulationJob, exc: BaseException) -> SimulationJob:
        """
        Record the failure, then requeue with backoff if the policy allows.

        A job that is no longer processing (cancelled, or already failed by
        the stuck sweep) is left as it is.
        """
        error = describe_error(exc)
        logger.log(
            logging.WARNING if error_severity(exc) == "low" else logging.ERROR,
            f"Simulation {job.id} failed: {error}"
        )

        try:
            failed = await self.queue.fail(job.id, error)
        except JobCancelledError:
            return await self.queue.get(job.id)
        except InvalidTransitionError as e:
            logger.warning(f"Not recording failure for simulation {job.id}: {e}")
            return await self.queue.get(job.id)

        retry_count = failed.queue_metadata.retry_count
        if not self.retry_policy.should_retry(exc, retry_count):
            logger.error(f"Simulation {job.id} failed permanently after {retry_count} retries")
            return failed

        delay = self.retry_policy.next_delay(retry_count)
        if isinstance(exc, RateLimitError) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        retry_at = self.clock() + timedelta(seconds=delay)
        return await self.queue.retry(job.id, retry_count + 1, retry_at)

    async def sweep_stuck_jobs(self) -> int:
        """Fail jobs processing longer than their timeout. Returns the count."""
        swept = 0
        for job in await self.queue.find_stuck(self.timeout_multiplier):
            timeout = job.queue_metadata.estimated_duration * self.timeout_multiplier
            exc = ProcessingTimeoutError(
                f"Simulation exceeded {timeout:.0f}s processing timeout",
                timeout_seconds=timeout
            )
            await self.handle_failure(job, exc)
            swept += 1
        if swept:
            logger.warning(f"Stuck-job sweep failed {swept} simulations")
        return swept
