# tests/conftest.py
"""
Shared fixtures: a frozen clock, sample campaign/market datasets, request
factories and in-memory queue/pipeline wiring.
"""

import pytest
from datetime import datetime, timedelta, timezone

from simpipe.analysis.datasets import (
    BudgetAllocation,
    CampaignDataset,
    CampaignRecord,
    ChannelConfig,
    CompetitorObservation,
    MarketDataset,
    PerformanceObservation,
)
from simpipe.config import settings
from simpipe.schemas.simulation import SimulationRequest
from simpipe.services.dataset_provider import InMemoryDatasetProvider
from simpipe.services.job_queue import JobQueue
from simpipe.services.job_store import InMemoryJobStore
from simpipe.services.pipeline import create_pipeline

NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)

CAMPAIGN_ID = "camp-123"
ORG_ID = "org-1"
USER_ID = "user-1"


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================================================
# CLOCK & REQUESTS
# ============================================================================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def make_request(clock):
    """Factory for a valid 30-day simulation request starting tomorrow."""
    def _make(**overrides) -> SimulationRequest:
        start = clock() + timedelta(days=1)
        data = {
            "campaign_id": CAMPAIGN_ID,
            "timeframe": {
                "start_date": start.isoformat(),
                "end_date": (start + timedelta(days=30)).isoformat(),
                "granularity": "daily",
            },
            "metrics": [
                {"type": "ctr", "weight": 0.6},
                {"type": "engagement", "weight": 0.4},
            ],
            "scenarios": [{"type": "realistic"}, {"type": "optimistic"}],
            "external_data_sources": [{"source": "semrush", "enabled": True}],
            "industry": "technology",
            "region": "global",
        }
        data.update(overrides)
        return SimulationRequest.model_validate(data)
    return _make


# ============================================================================
# DATASETS
# ============================================================================

@pytest.fixture
def sample_campaign_dataset(clock):
    """Two-channel campaign with two weeks of daily ctr/engagement history."""
    now = clock()
    campaign = CampaignRecord(
        id=CAMPAIGN_ID,
        name="Spring Launch",
        budget=10000.0,
        start_date=now - timedelta(days=30),
        end_date=now + timedelta(days=30),
        channels=[
            ChannelConfig(type="google", budget=6000.0),
            ChannelConfig(type="facebook", budget=4000.0),
        ],
    )
    history = []
    for day in range(14, 0, -1):
        date = now - timedelta(days=day)
        history.append(PerformanceObservation(date=date, metric="ctr", value=2.1, channel="google"))
        history.append(PerformanceObservation(date=date, metric="engagement", value=0.3, channel="google"))

    return CampaignDataset(
        campaign=campaign,
        historical_performance=history,
        budget_allocation=BudgetAllocation(total=10000.0, allocated={"google": 6000.0, "facebook": 4000.0}),
        audience_insights={"segments": 3},
    )


@pytest.fixture
def sample_market_dataset(clock):
    """Two competitors with recent activity."""
    now = clock()
    activity = []
    for day in (2, 5, 9):
        activity.append(CompetitorObservation(
            competitor="Acme Corp", metric="activity", value=120.0,
            date=now - timedelta(days=day), source="google"
        ))
        activity.append(CompetitorObservation(
            competitor="Globex", metric="activity", value=60.0,
            date=now - timedelta(days=day), source="facebook"
        ))
    return MarketDataset(competitor_activity=activity)


@pytest.fixture
def dataset_provider(sample_campaign_dataset, sample_market_dataset):
    provider = InMemoryDatasetProvider()
    provider.add_campaign(sample_campaign_dataset)
    provider.add_market(sample_market_dataset, industry="technology")
    return provider


# ============================================================================
# QUEUE & PIPELINE
# ============================================================================

@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def queue(store, clock):
    return JobQueue(store, clock=clock)


@pytest.fixture
def enqueue_job(queue, make_request):
    """Factory that puts a job straight on the queue, bypassing validation."""
    async def _enqueue(
        priority=10,
        organization_id=ORG_ID,
        campaign_id=CAMPAIGN_ID,
        estimated_duration=60.0,
        tier="free"
    ):
        request = make_request(campaign_id=campaign_id)
        return await queue.enqueue(
            campaign_id=campaign_id,
            organization_id=organization_id,
            requester_id=USER_ID,
            config=request.model_dump(mode="json"),
            priority=priority,
            estimated_duration=estimated_duration,
            subscription_tier=tier,
        )
    return _enqueue


@pytest.fixture
def pipeline(dataset_provider, clock):
    """Fully wired in-memory pipeline on the frozen clock."""
    return create_pipeline(settings, datasets=dataset_provider, in_memory=True, clock=clock)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
    config.addinivalue_line("markers", "slow: slow running tests")
