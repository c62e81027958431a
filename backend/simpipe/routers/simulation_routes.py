# backend/simpipe/routers/simulation_routes.py
"""
Simulation job routes.

Caller identity comes from the X-Organization-Id / X-User-Id headers set by
the authenticating gateway in front of this service.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from simpipe.errors import (
    InvalidTransitionError,
    JobNotFoundError,
    QueueLimitExceededError,
    RetryLimitExceededError,
    SimulationError,
    SimulationValidationError,
)
from simpipe.schemas.simulation import (
    JobResultResponse,
    JobStatus,
    JobStatusResponse,
    JobSummary,
    OrganizationQueueStatus,
    QueueStatistics,
    RetryRequest,
    SimulationRequest,
    SubmitSimulationResponse,
    SubscriptionTier,
    ValidationIssueResponse,
    ValidationSummary,
)
from simpipe.services.simulation_service import SimulationPipelineService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/simulations", tags=["Simulations"])


def get_service(request: Request) -> SimulationPipelineService:
    """Dependency to get the pipeline service."""
    return request.app.state.pipeline.service


def http_error(exc: Exception) -> HTTPException:
    """Map pipeline errors to HTTP responses."""
    if isinstance(exc, SimulationValidationError):
        detail = {"message": exc.message, "code": exc.code}
        if exc.validation is not None:
            detail["validation"] = exc.validation.to_dict()
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(exc, JobNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, (InvalidTransitionError, RetryLimitExceededError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, QueueLimitExceededError):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.message)
    if isinstance(exc, SimulationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _validation_summary(validation) -> ValidationSummary:
    return ValidationSummary(
        valid=validation.valid,
        score=validation.score,
        errors=[ValidationIssueResponse(field=e.field, message=e.message, code=e.code) for e in validation.errors],
        warnings=[
            ValidationIssueResponse(field=w.field, message=w.message, suggestion=w.suggestion)
            for w in validation.warnings
        ],
    )


# ============================================
# QUEUE INTROSPECTION
# ============================================

@router.get("/queue/counts")
async def get_status_counts(service: SimulationPipelineService = Depends(get_service)):
    """Number of jobs in each status."""
    return await service.status_counts()


@router.get("/queue/organization", response_model=OrganizationQueueStatus)
async def get_organization_queue(
    organization_id: str = Header(..., alias="X-Organization-Id"),
    service: SimulationPipelineService = Depends(get_service)
):
    """Queue depth and estimated wait for the caller's organization."""
    return await service.organization_status(organization_id)


@router.get("/queue/statistics", response_model=QueueStatistics)
async def get_queue_statistics(
    window_hours: float = Query(24, gt=0, le=24 * 90),
    service: SimulationPipelineService = Depends(get_service)
):
    """Success rate and average processing time over a trailing window."""
    return await service.queue_statistics(window_hours)


@router.get("/queue/jobs", response_model=List[JobSummary])
async def list_jobs_by_status(
    job_status: JobStatus = Query(..., alias="status"),
    limit: int = Query(50, ge=1, le=500),
    service: SimulationPipelineService = Depends(get_service)
):
    """Newest jobs in a status."""
    jobs = await service.jobs_by_status(job_status, limit)
    return [
        JobSummary(
            id=job.id,
            campaign_id=job.campaign_id,
            organization_id=job.organization_id,
            status=job.status,
            created_at=job.created_at,
            updated_at=job.updated_at,
            error=job.queue_metadata.error if job.queue_metadata else None,
        )
        for job in jobs
    ]


@router.delete("/cache/{campaign_id}")
async def invalidate_campaign_cache(
    campaign_id: str,
    service: SimulationPipelineService = Depends(get_service)
):
    """Drop cached results for a campaign after its data changed."""
    removed = await service.invalidate_campaign_cache(campaign_id)
    return {"campaign_id": campaign_id, "removed": removed}


# ============================================
# JOB LIFECYCLE
# ============================================

@router.post("", response_model=SubmitSimulationResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_simulation(
    request: SimulationRequest,
    organization_id: str = Header(..., alias="X-Organization-Id"),
    user_id: str = Header(..., alias="X-User-Id"),
    tier: SubscriptionTier = Header(SubscriptionTier.FREE, alias="X-Subscription-Tier"),
    service: SimulationPipelineService = Depends(get_service)
):
    """Validate a simulation request and queue it for processing."""
    try:
        submission = await service.submit(request, organization_id, user_id, tier.value)
    except (SimulationError, ValueError) as e:
        raise http_error(e)

    metadata = submission.job.queue_metadata
    return SubmitSimulationResponse(
        job_id=submission.job.id,
        status=submission.job.status,
        priority=metadata.priority,
        estimated_duration=metadata.estimated_duration,
        validation=_validation_summary(submission.validation),
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(job_id: str, service: SimulationPipelineService = Depends(get_service)):
    """Status, queue metadata and progress estimate for polling."""
    try:
        return await service.get_status(job_id)
    except SimulationError as e:
        raise http_error(e)


@router.get("/{job_id}/result", response_model=JobResultResponse)
async def get_job_result(job_id: str, service: SimulationPipelineService = Depends(get_service)):
    """Results of a completed job; `results` is null until then."""
    try:
        job = await service.get_job(job_id)
    except SimulationError as e:
        raise http_error(e)

    return JobResultResponse(
        job_id=job.id,
        status=job.status,
        results=job.results,
        model_metadata=job.model_metadata,
        completed_at=job.completed_at,
    )


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(job_id: str, service: SimulationPipelineService = Depends(get_service)):
    """Cancel a queued or processing job."""
    try:
        await service.cancel(job_id)
        return await service.get_status(job_id)
    except SimulationError as e:
        raise http_error(e)


@router.post("/{job_id}/retry", response_model=JobStatusResponse)
async def retry_job(
    job_id: str,
    body: Optional[RetryRequest] = None,
    service: SimulationPipelineService = Depends(get_service)
):
    """Requeue a failed job."""
    body = body or RetryRequest()
    try:
        await service.retry(job_id, body.retry_count, body.retry_at)
        return await service.get_status(job_id)
    except SimulationError as e:
        raise http_error(e)
