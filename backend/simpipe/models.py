# backend/simpipe/models.py
"""
SQLAlchemy ORM models for the simulation job store and the result cache.

Job state is persisted as a `status` column plus a nullable `queue_metadata`
JSON document. The check constraint mirrors the rule that queue metadata
exists only for queued, processing and failed jobs.
"""

from sqlalchemy import (
    Column, String, Integer, JSON, Index, TIMESTAMP, CheckConstraint
)
from simpipe.database import Base


# ============================================================================
# SIMULATION JOBS
# ============================================================================

class SimulationJobRecord(Base):
    """One simulation request moving through the queue."""
    __tablename__ = "simulation_jobs"

    id = Column(String(36), primary_key=True)
    campaign_id = Column(String(255), nullable=False)
    organization_id = Column(String(255), nullable=False)
    requester_id = Column(String(255), nullable=False)

    # Request configuration (timeframe, metrics, scenarios, data sources)
    config = Column(JSON, nullable=False, default=dict)

    status = Column(String(20), nullable=False)
    queue_metadata = Column(JSON(none_as_null=True), nullable=True)

    # Populated on completion
    results = Column(JSON(none_as_null=True), nullable=True)
    model_metadata = Column(JSON(none_as_null=True), nullable=True)

    # Denormalized from queue_metadata for ordering queries
    priority = Column(Integer, nullable=True)
    queued_at = Column(TIMESTAMP(timezone=True), nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_simulation_jobs_status", "status"),
        Index("idx_simulation_jobs_org", "organization_id", "status"),
        Index("idx_simulation_jobs_created", "created_at"),
        Index("idx_simulation_jobs_dequeue", "status", "priority", "queued_at"),
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')",
            name="chk_simulation_job_status"
        ),
        CheckConstraint(
            "(status IN ('queued', 'processing', 'failed')) = (queue_metadata IS NOT NULL)",
            name="chk_simulation_job_queue_metadata"
        ),
    )

    def __repr__(self):
        return f"<SimulationJobRecord(id={self.id}, status='{self.status}')>"


# ============================================================================
# RESULT CACHE
# ============================================================================

class SimulationCacheEntry(Base):
    """Memoized simulation output keyed by request fingerprint."""
    __tablename__ = "simulation_cache"

    cache_key = Column(String(80), primary_key=True)
    campaign_id = Column(String(255), nullable=False)
    results = Column(JSON, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_simulation_cache_campaign", "campaign_id"),
        Index("idx_simulation_cache_expires", "expires_at"),
    )

    def __repr__(self):
        return f"<SimulationCacheEntry(key={self.cache_key}, campaign={self.campaign_id})>"
