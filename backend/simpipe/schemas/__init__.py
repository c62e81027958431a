"""Pydantic schemas for request/response validation."""

from .simulation import (
    JobStatus,
    SubscriptionTier,
    Timeframe,
    SimulationMetric,
    ScenarioConfig,
    ExternalDataSource,
    SimulationRequest,
    ValidationIssueResponse,
    ValidationSummary,
    QueueMetadataResponse,
    SubmitSimulationResponse,
    JobStatusResponse,
    JobResultResponse,
    RetryRequest,
    OrganizationQueueStatus,
    QueueStatistics,
    JobSummary,
)

__all__ = [
    "JobStatus",
    "SubscriptionTier",
    "Timeframe",
    "SimulationMetric",
    "ScenarioConfig",
    "ExternalDataSource",
    "SimulationRequest",
    "ValidationIssueResponse",
    "ValidationSummary",
    "QueueMetadataResponse",
    "SubmitSimulationResponse",
    "JobStatusResponse",
    "JobResultResponse",
    "RetryRequest",
    "OrganizationQueueStatus",
    "QueueStatistics",
    "JobSummary",
]
