# backend/simpipe/services/scheduling.py
"""
Scheduling policy owned by the driver, not the job record:
tier priorities and queue limits, duration estimates, retry backoff.
"""

import math
import random
from dataclasses import dataclass
from typing import Callable, Dict

from simpipe.errors import is_retryable
from simpipe.schemas.simulation import SimulationRequest


# ============================================================================
# SUBSCRIPTION TIERS
# ============================================================================

@dataclass(frozen=True)
class TierPolicy:
    tier: str
    priority: int
    max_concurrent_jobs: int  # informational, not enforced by the queue
    max_queued_jobs: int


TIER_POLICIES: Dict[str, TierPolicy] = {
    "free": TierPolicy(tier="free", priority=10, max_concurrent_jobs=1, max_queued_jobs=3),
    "pro": TierPolicy(tier="pro", priority=50, max_concurrent_jobs=3, max_queued_jobs=10),
    "enterprise": TierPolicy(tier="enterprise", priority=90, max_concurrent_jobs=10, max_queued_jobs=50),
}


def get_tier_policy(tier: str) -> TierPolicy:
    """
    Get the scheduling policy for a subscription tier.

    Raises:
        ValueError: If the tier is unknown
    """
    policy = TIER_POLICIES.get(str(tier).lower())
    if policy is None:
        available = ", ".join(TIER_POLICIES.keys())
        raise ValueError(f"Unknown subscription tier '{tier}'. Available: {available}")
    return policy


# ============================================================================
# DURATION ESTIMATE
# ============================================================================

BASE_DURATION_SECONDS = 30.0
PER_SCENARIO_SECONDS = 10.0
PER_DATA_SOURCE_SECONDS = 15.0
PER_DAY_SECONDS = 1.0
MAX_TIMEFRAME_SECONDS = 60.0
PER_METRIC_SECONDS = 2.0


def estimate_processing_duration(request: SimulationRequest) -> float:
    """Rough processing time in seconds, from request complexity."""
    duration = BASE_DURATION_SECONDS
    duration += len(request.scenarios) * PER_SCENARIO_SECONDS
    duration += len(request.external_data_sources) * PER_DATA_SOURCE_SECONDS

    timeframe = request.timeframe
    if timeframe and timeframe.start_date and timeframe.end_date:
        days = math.ceil((timeframe.end_date - timeframe.start_date).total_seconds() / 86400)
        duration += min(max(days, 0) * PER_DAY_SECONDS, MAX_TIMEFRAME_SECONDS)

    duration += len(request.metrics or []) * PER_METRIC_SECONDS
    return duration


# ============================================================================
# RETRY BACKOFF
# ============================================================================

class RetryPolicy:
    """
    Exponential backoff with jitter for failed jobs.

    delay(n) = min(base * 2^n + uniform(0, jitter), max_delay), where n is
    the number of retries already made.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 5.0,
        max_delay: float = 300.0,
        jitter: float = 1.0,
        random_fn: Callable[[], float] = random.random
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._random = random_fn

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )

    def retry_allowed(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def should_retry(self, error: BaseException, retry_count: int) -> bool:
        return self.retry_allowed(retry_count) and is_retryable(error)

    def next_delay(self, retry_count: int) -> float:
        delay = self.base_delay * (2 ** retry_count) + self._random() * self.jitter
        return min(delay, self.max_delay)
