"""Pydantic schemas for simulation requests and queue responses."""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum

from simpipe.clock import ensure_utc


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Request Schemas
#
# Fields the validation layer checks are deliberately loose here (optional,
# plain strings) so a malformed request reaches the validator and comes back
# with coded errors instead of a generic parse failure.

class Timeframe(BaseModel):
    """Forecast window."""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    granularity: str = Field(default="daily", pattern="^(daily|weekly)$")

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v) if v is not None else v


class SimulationMetric(BaseModel):
    """Metric to forecast and its weight in the overall score."""
    type: str
    weight: float = 1.0
    benchmark_source: Optional[str] = Field(default=None, description="industry | historical | competitor")


class ScenarioConfig(BaseModel):
    """Scenario to project (optimistic, realistic, pessimistic, custom)."""
    type: str
    percentile: Optional[float] = None
    adjustments: List[Dict[str, Any]] = Field(default_factory=list)


class ExternalDataSource(BaseModel):
    """Enabled market-data source (semrush, google_trends, ...)."""
    source: str
    enabled: bool = True


class SimulationRequest(BaseModel):
    """Request to forecast a campaign's performance."""
    campaign_id: Optional[str] = None
    timeframe: Optional[Timeframe] = None
    metrics: Optional[List[SimulationMetric]] = None
    scenarios: List[ScenarioConfig] = Field(default_factory=list)
    external_data_sources: List[ExternalDataSource] = Field(default_factory=list)
    industry: str = Field(default="default", description="Industry used for benchmark lookup")
    region: str = "global"

    @property
    def enabled_sources(self) -> List[str]:
        return [s.source for s in self.external_data_sources if s.enabled]

    @property
    def metric_types(self) -> List[str]:
        return [m.type for m in self.metrics or []]


# Response Schemas

class ValidationIssueResponse(BaseModel):
    field: str
    message: str
    code: Optional[str] = None
    suggestion: Optional[str] = None


class ValidationSummary(BaseModel):
    valid: bool
    score: float
    errors: List[ValidationIssueResponse] = Field(default_factory=list)
    warnings: List[ValidationIssueResponse] = Field(default_factory=list)


class QueueMetadataResponse(BaseModel):
    priority: int
    estimated_duration: float = Field(..., description="Estimated processing time in seconds")
    subscription_tier: str
    queued_at: datetime
    retry_count: int
    started_at: Optional[datetime] = None
    retry_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubmitSimulationResponse(BaseModel):
    job_id: str
    status: JobStatus
    priority: int
    estimated_duration: float
    validation: ValidationSummary


class JobStatusResponse(BaseModel):
    """Polling snapshot of a job."""
    id: str
    campaign_id: str
    organization_id: str
    status: JobStatus
    queue_metadata: Optional[QueueMetadataResponse] = None
    progress: float = Field(..., ge=0, le=100)
    retry_allowed: bool = False
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class JobResultResponse(BaseModel):
    job_id: str
    status: JobStatus
    results: Optional[Dict[str, Any]] = None
    model_metadata: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None


class RetryRequest(BaseModel):
    """Explicit retry. Defaults to previous retry count + 1, due immediately."""
    retry_count: Optional[int] = Field(default=None, ge=1)
    retry_at: Optional[datetime] = None

    @field_validator('retry_at')
    @classmethod
    def normalize_timezone(cls, v):
        return ensure_utc(v) if v is not None else v


class OrganizationQueueStatus(BaseModel):
    organization_id: str
    queued: int
    processing: int
    total_active: int
    estimated_wait_seconds: float


class QueueStatistics(BaseModel):
    window_hours: float
    total_jobs: int
    completed: int
    failed: int
    cancelled: int
    queued: int
    processing: int
    average_processing_seconds: float
    success_rate: float


class JobSummary(BaseModel):
    id: str
    campaign_id: str
    organization_id: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    error: Optional[str] = None
