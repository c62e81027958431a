# backend/simpipe/services/job_states.py
"""
Simulation job state machine.

    queued -> processing -> completed | failed | cancelled
    failed -> queued            (retry, the only back-edge)
    queued -> cancelled

Each state is its own frozen dataclass. Queue metadata lives only on
Queued, Processing and Failed, so a completed or cancelled job cannot carry
it. Transition functions are pure: they take a state and return a new one,
or raise InvalidTransitionError.

Backoff is not modelled here. Retry takes the new retry count and due time
from the caller.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Union

from simpipe.clock import parse_datetime
from simpipe.errors import InvalidTransitionError
from simpipe.schemas.simulation import JobStatus

ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)
METADATA_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.FAILED)

# Progress never reports completion before the terminal transition
MAX_IN_FLIGHT_PROGRESS = 0.95


@dataclass(frozen=True)
class QueueMetadata:
    priority: int
    estimated_duration: float  # seconds
    subscription_tier: str
    queued_at: datetime
    retry_count: int = 0
    started_at: Optional[datetime] = None
    retry_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "estimated_duration": self.estimated_duration,
            "subscription_tier": self.subscription_tier,
            "queued_at": self.queued_at.isoformat(),
            "retry_count": self.retry_count,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "retry_at": self.retry_at.isoformat() if self.retry_at else None,
            "error": self.error,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueMetadata":
        def optional(key):
            return parse_datetime(data[key]) if data.get(key) else None

        return cls(
            priority=int(data["priority"]),
            estimated_duration=float(data["estimated_duration"]),
            subscription_tier=data["subscription_tier"],
            queued_at=parse_datetime(data["queued_at"]),
            retry_count=int(data.get("retry_count", 0)),
            started_at=optional("started_at"),
            retry_at=optional("retry_at"),
            error=data.get("error"),
            failed_at=optional("failed_at"),
        )


@dataclass(frozen=True)
class Queued:
    metadata: QueueMetadata
    status: ClassVar[JobStatus] = JobStatus.QUEUED


@dataclass(frozen=True)
class Processing:
    metadata: QueueMetadata
    status: ClassVar[JobStatus] = JobStatus.PROCESSING


@dataclass(frozen=True)
class Failed:
    metadata: QueueMetadata
    status: ClassVar[JobStatus] = JobStatus.FAILED


@dataclass(frozen=True)
class Completed:
    results: Dict[str, Any]
    completed_at: datetime
    model_metadata: Optional[Dict[str, Any]] = None
    status: ClassVar[JobStatus] = JobStatus.COMPLETED


@dataclass(frozen=True)
class Cancelled:
    status: ClassVar[JobStatus] = JobStatus.CANCELLED


JobState = Union[Queued, Processing, Failed, Completed, Cancelled]


def queue_metadata_of(state: JobState) -> Optional[QueueMetadata]:
    return getattr(state, "metadata", None)


# ============================================================================
# TRANSITIONS
# ============================================================================

def enqueue(priority: int, estimated_duration: float, subscription_tier: str, now: datetime) -> Queued:
    return Queued(QueueMetadata(
        priority=priority,
        estimated_duration=estimated_duration,
        subscription_tier=subscription_tier,
        queued_at=now,
        retry_count=0,
    ))


def start(state: JobState, now: datetime) -> Processing:
    if not isinstance(state, Queued):
        raise InvalidTransitionError("start", state.status.value)
    return Processing(replace(state.metadata, started_at=now))


def complete(
    state: JobState,
    results: Dict[str, Any],
    now: datetime,
    model_metadata: Optional[Dict[str, Any]] = None
) -> Completed:
    if not isinstance(state, Processing):
        raise InvalidTransitionError("complete", state.status.value)
    return Completed(results=results, completed_at=now, model_metadata=model_metadata)


def fail(state: JobState, error: str, now: datetime) -> Failed:
    """Record a failure. The retry count is left unchanged."""
    if not isinstance(state, Processing):
        raise InvalidTransitionError("fail", state.status.value)
    return Failed(replace(state.metadata, error=error, failed_at=now))


def retry(state: JobState, retry_count: int, retry_at: datetime) -> Queued:
    """Requeue a failed job with a caller-chosen retry count and due time."""
    if not isinstance(state, Failed):
        raise InvalidTransitionError("retry", state.status.value)
    if retry_count < state.metadata.retry_count:
        raise InvalidTransitionError(
            f"lower retry count to {retry_count} on", state.status.value
        )
    return Queued(replace(
        state.metadata,
        retry_count=retry_count,
        retry_at=retry_at,
        error=None,
        failed_at=None,
    ))


def cancel(state: JobState) -> Cancelled:
    if not isinstance(state, (Queued, Processing)):
        raise InvalidTransitionError("cancel", state.status.value)
    return Cancelled()


def estimate_progress(state: JobState, now: datetime) -> float:
    """
    Progress percentage for polling UIs.

    0 while queued or failed, elapsed/estimated (capped at 95) while
    processing, 100 only once completed.
    """
    if isinstance(state, Completed):
        return 100.0
    if not isinstance(state, Processing):
        return 0.0
    metadata = state.metadata
    if metadata.started_at is None or metadata.estimated_duration <= 0:
        return 0.0
    elapsed = max(0.0, (now - metadata.started_at).total_seconds())
    return min(elapsed / metadata.estimated_duration, MAX_IN_FLIGHT_PROGRESS) * 100


# ============================================================================
# JOB
# ============================================================================

@dataclass
class SimulationJob:
    """A simulation request and its current state."""
    id: str
    campaign_id: str
    organization_id: str
    requester_id: str
    config: Dict[str, Any]
    state: JobState
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @property
    def queue_metadata(self) -> Optional[QueueMetadata]:
        return queue_metadata_of(self.state)

    @property
    def results(self) -> Optional[Dict[str, Any]]:
        return self.state.results if isinstance(self.state, Completed) else None

    @property
    def model_metadata(self) -> Optional[Dict[str, Any]]:
        return self.state.model_metadata if isinstance(self.state, Completed) else None

    def with_state(self, state: JobState, now: datetime) -> "SimulationJob":
        completed_at = state.completed_at if isinstance(state, Completed) else self.completed_at
        return replace(self, state=state, updated_at=now, completed_at=completed_at)

    def to_dict(self) -> Dict[str, Any]:
        metadata = self.queue_metadata
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "organization_id": self.organization_id,
            "requester_id": self.requester_id,
            "config": self.config,
            "status": self.status.value,
            "queue_metadata": metadata.to_dict() if metadata else None,
            "results": self.results,
            "model_metadata": self.model_metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def build_state(
    status: str,
    queue_metadata: Optional[Dict[str, Any]],
    results: Optional[Dict[str, Any]] = None,
    model_metadata: Optional[Dict[str, Any]] = None,
    completed_at: Optional[datetime] = None
) -> JobState:
    """Rebuild the state variant from persisted columns."""
    status = JobStatus(status)
    if status in METADATA_STATUSES:
        if queue_metadata is None:
            raise ValueError(f"Job in status '{status.value}' has no queue metadata")
        metadata = QueueMetadata.from_dict(queue_metadata)
        return {JobStatus.QUEUED: Queued, JobStatus.PROCESSING: Processing, JobStatus.FAILED: Failed}[status](metadata)
    if status == JobStatus.COMPLETED:
        if completed_at is None:
            raise ValueError("Completed job has no completion timestamp")
        return Completed(results=results or {}, completed_at=completed_at, model_metadata=model_metadata)
    return Cancelled()
