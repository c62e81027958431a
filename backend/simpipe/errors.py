# backend/simpipe/errors.py
"""
Error taxonomy for the simulation pipeline.

- SimulationValidationError: request or dataset failed required-field/range
  checks. Raised synchronously at submission and never queued.
- TransientJobError: network/storage trouble during processing. Retryable.
- ModelError: the forecasting model is unavailable, timed out, or returned
  unusable output. Retryable up to the configured cap.
- JobCancelledError: cooperative exit after an explicit cancel. Not a failure.

Non-blocking dataset issues are reported as DataQualityWarning records
(see simpipe.analysis.validation), not raised.
"""

import asyncio
import re
from typing import Any, Dict, Optional


class SimulationError(Exception):
    """Base class for every error the pipeline raises on purpose."""

    code = "SIMULATION_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


# ============================================================================
# VALIDATION
# ============================================================================

class SimulationValidationError(SimulationError):
    """Request or dataset rejected by the validation layer."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, validation=None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context=context)
        self.validation = validation


class CampaignNotFoundError(SimulationError):
    code = "CAMPAIGN_NOT_FOUND"


# ============================================================================
# PROCESSING
# ============================================================================

class TransientJobError(SimulationError):
    """Network or storage failure while processing. Safe to retry."""

    code = "TRANSIENT_ERROR"
    retryable = True


class RateLimitError(TransientJobError):
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, service: str = "unknown", retry_after: Optional[float] = None):
        super().__init__(message, context={"service": service, "retry_after": retry_after})
        self.retry_after = retry_after


class ProcessingTimeoutError(TransientJobError):
    code = "PROCESSING_TIMEOUT"

    def __init__(self, message: str, timeout_seconds: float):
        super().__init__(message, context={"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class ModelError(SimulationError):
    """Forecasting model unavailable, timed out, or returned invalid output."""

    code = "MODEL_ERROR"
    retryable = True

    def __init__(self, message: str, model_name: Optional[str] = None, **context):
        super().__init__(message, context={"model_name": model_name, **context})
        self.model_name = model_name


class JobCancelledError(SimulationError):
    """Raised inside a worker when the job it holds was cancelled."""

    code = "JOB_CANCELLED"

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} was cancelled", context={"job_id": job_id})
        self.job_id = job_id


# ============================================================================
# QUEUE
# ============================================================================

class JobNotFoundError(SimulationError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__(f"Simulation job {job_id} not found", context={"job_id": job_id})
        self.job_id = job_id


class InvalidTransitionError(SimulationError):
    """A state-machine transition was requested from a state that forbids it."""

    code = "INVALID_TRANSITION"

    def __init__(self, action: str, status: str, job_id: Optional[str] = None):
        target = f"job {job_id}" if job_id else "job"
        super().__init__(
            f"Cannot {action} {target} in status '{status}'",
            context={"action": action, "status": status, "job_id": job_id}
        )
        self.action = action
        self.status = status
        self.job_id = job_id


class QueueLimitExceededError(SimulationError):
    code = "QUEUE_LIMIT_EXCEEDED"

    def __init__(self, tier: str, limit: int):
        super().__init__(
            f"Queue limit reached for {tier} tier ({limit} queued simulations)",
            context={"tier": tier, "limit": limit}
        )


class RetryLimitExceededError(SimulationError):
    code = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, job_id: str, max_retries: int):
        super().__init__(
            f"Job {job_id} has reached the maximum of {max_retries} retries",
            context={"job_id": job_id, "max_retries": max_retries}
        )


# ============================================================================
# CLASSIFICATION
# ============================================================================

RETRYABLE_MESSAGE_PATTERNS = [
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"connection", re.IGNORECASE),
    re.compile(r"\b50[0234]\b"),
]


def is_retryable(error: BaseException) -> bool:
    """Decide whether a failed job may go back to the queue."""
    if isinstance(error, SimulationError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return True
    message = str(error)
    return any(pattern.search(message) for pattern in RETRYABLE_MESSAGE_PATTERNS)


def error_severity(error: BaseException) -> str:
    if isinstance(error, RateLimitError):
        return "low"
    if isinstance(error, (SimulationValidationError, ProcessingTimeoutError, CampaignNotFoundError)):
        return "medium"
    return "high"


def describe_error(error: BaseException) -> str:
    """Human-readable error string stored on a failed job."""
    code = getattr(error, "code", None) or type(error).__name__
    message = str(error) or type(error).__name__
    return f"{code}: {message}"
