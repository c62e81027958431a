# backend/simpipe/services/job_store.py
"""
Durable job store.

The queue only needs insert / get / patch / delete / query-by-status-or-org.
`update(job, expected_status=...)` is a compare-and-set on the status column:
it succeeds only if the stored job is still in `expected_status`. That is
the single coordination point that keeps a job from being claimed by two
workers, and keeps a cancelled job from being overwritten by a late result.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select, update, delete, and_, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from simpipe.clock import ensure_utc
from simpipe.models import SimulationJobRecord
from simpipe.schemas.simulation import JobStatus
from simpipe.services.job_states import SimulationJob, build_state

logger = logging.getLogger(__name__)

StatusFilter = Union[JobStatus, Iterable[JobStatus], None]


def _status_values(status: StatusFilter) -> Optional[List[str]]:
    if status is None:
        return None
    if isinstance(status, JobStatus):
        return [status.value]
    return [JobStatus(s).value for s in status]


class JobStore(ABC):
    """Persistence collaborator for simulation jobs."""

    @abstractmethod
    async def insert(self, job: SimulationJob) -> None:
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Optional[SimulationJob]:
        pass

    @abstractmethod
    async def update(self, job: SimulationJob, expected_status: Optional[JobStatus] = None) -> bool:
        """Write `job`. With `expected_status`, only if the stored status still matches."""
        pass

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        pass

    @abstractmethod
    async def list_jobs(
        self,
        status: StatusFilter = None,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[SimulationJob]:
        """Jobs matching the filters, newest first."""
        pass

    @abstractmethod
    async def delete_where(self, status: StatusFilter, created_before: datetime) -> int:
        """Bulk delete jobs in `status` created before the cutoff."""
        pass

    @abstractmethod
    async def count_by_status(
        self,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Job counts keyed by status value; every status is present."""
        pass


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryJobStore(JobStore):
    """Single-process store. Returns copies so callers cannot alias stored jobs."""

    def __init__(self):
        self._jobs: Dict[str, SimulationJob] = {}
        self._lock = asyncio.Lock()

    async def insert(self, job: SimulationJob) -> None:
        async with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = copy.deepcopy(job)

    async def get(self, job_id: str) -> Optional[SimulationJob]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def update(self, job: SimulationJob, expected_status: Optional[JobStatus] = None) -> bool:
        async with self._lock:
            current = self._jobs.get(job.id)
            if current is None:
                return False
            if expected_status is not None and current.status != expected_status:
                return False
            self._jobs[job.id] = copy.deepcopy(job)
            return True

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def list_jobs(
        self,
        status: StatusFilter = None,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[SimulationJob]:
        statuses = _status_values(status)
        jobs = [
            job for job in self._jobs.values()
            if (statuses is None or job.status.value in statuses)
            and (organization_id is None or job.organization_id == organization_id)
            and (created_after is None or job.created_at >= created_after)
        ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        if limit is not None:
            jobs = jobs[:limit]
        return [copy.deepcopy(j) for j in jobs]

    async def delete_where(self, status: StatusFilter, created_before: datetime) -> int:
        statuses = _status_values(status)
        async with self._lock:
            doomed = [
                job_id for job_id, job in self._jobs.items()
                if job.status.value in statuses and job.created_at < created_before
            ]
            for job_id in doomed:
                del self._jobs[job_id]
        return len(doomed)

    async def count_by_status(
        self,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None
    ) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            if organization_id is not None and job.organization_id != organization_id:
                continue
            if created_after is not None and job.created_at < created_after:
                continue
            counts[job.status.value] += 1
        return counts

    def __len__(self) -> int:
        return len(self._jobs)


# ============================================================================
# SQL STORE
# ============================================================================

class SqlJobStore(JobStore):
    """SQLAlchemy-backed store (PostgreSQL in production, SQLite for local runs)."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_values(job: SimulationJob) -> dict:
        metadata = job.queue_metadata
        return {
            "campaign_id": job.campaign_id,
            "organization_id": job.organization_id,
            "requester_id": job.requester_id,
            "config": job.config,
            "status": job.status.value,
            "queue_metadata": metadata.to_dict() if metadata else None,
            "results": job.results,
            "model_metadata": job.model_metadata,
            "priority": metadata.priority if metadata else None,
            "queued_at": metadata.queued_at if metadata else None,
            "created_at": job.created_at,
            "updated_at": job.updated_at,
            "completed_at": job.completed_at,
        }

    @staticmethod
    def _to_job(record: SimulationJobRecord) -> SimulationJob:
        completed_at = ensure_utc(record.completed_at) if record.completed_at else None
        return SimulationJob(
            id=record.id,
            campaign_id=record.campaign_id,
            organization_id=record.organization_id,
            requester_id=record.requester_id,
            config=record.config or {},
            state=build_state(
                record.status,
                record.queue_metadata,
                results=record.results,
                model_metadata=record.model_metadata,
                completed_at=completed_at,
            ),
            created_at=ensure_utc(record.created_at),
            updated_at=ensure_utc(record.updated_at),
            completed_at=completed_at,
        )

    async def insert(self, job: SimulationJob) -> None:
        async with self.session_factory() as session:
            session.add(SimulationJobRecord(id=job.id, **self._to_values(job)))
            await session.commit()

    async def get(self, job_id: str) -> Optional[SimulationJob]:
        async with self.session_factory() as session:
            record = await session.get(SimulationJobRecord, job_id)
            return self._to_job(record) if record else None

    async def update(self, job: SimulationJob, expected_status: Optional[JobStatus] = None) -> bool:
        conditions = [SimulationJobRecord.id == job.id]
        if expected_status is not None:
            conditions.append(SimulationJobRecord.status == expected_status.value)

        async with self.session_factory() as session:
            result = await session.execute(
                update(SimulationJobRecord)
                .where(and_(*conditions))
                .values(**self._to_values(job))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def delete(self, job_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SimulationJobRecord).where(SimulationJobRecord.id == job_id)
            )
            await session.commit()
            return result.rowcount == 1

    async def list_jobs(
        self,
        status: StatusFilter = None,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[SimulationJob]:
        stmt = select(SimulationJobRecord)
        statuses = _status_values(status)
        if statuses is not None:
            stmt = stmt.where(SimulationJobRecord.status.in_(statuses))
        if organization_id is not None:
            stmt = stmt.where(SimulationJobRecord.organization_id == organization_id)
        if created_after is not None:
            stmt = stmt.where(SimulationJobRecord.created_at >= created_after)
        stmt = stmt.order_by(SimulationJobRecord.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [self._to_job(record) for record in result.scalars().all()]

    async def delete_where(self, status: StatusFilter, created_before: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SimulationJobRecord).where(and_(
                    SimulationJobRecord.status.in_(_status_values(status)),
                    SimulationJobRecord.created_at < created_before,
                ))
            )
            await session.commit()
            return result.rowcount or 0

    async def count_by_status(
        self,
        organization_id: Optional[str] = None,
        created_after: Optional[datetime] = None
    ) -> Dict[str, int]:
        stmt = select(SimulationJobRecord.status, func.count(SimulationJobRecord.id))
        if organization_id is not None:
            stmt = stmt.where(SimulationJobRecord.organization_id == organization_id)
        if created_after is not None:
            stmt = stmt.where(SimulationJobRecord.created_at >= created_after)
        stmt = stmt.group_by(SimulationJobRecord.status)

        counts = {status.value: 0 for status in JobStatus}
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            for status, count in result.all():
                counts[status] = count
        return counts
