# tests/services/test_dataset_provider.py
"""
Tests for dataset providers

The HTTP provider runs against httpx.MockTransport, so no network is used.

Run with: pytest tests/services/test_dataset_provider.py -v
"""

import httpx
import pytest

from simpipe.errors import CampaignNotFoundError, RateLimitError, TransientJobError
from simpipe.services.dataset_provider import HttpDatasetProvider, InMemoryDatasetProvider

CAMPAIGN_PAYLOAD = {
    "campaign": {
        "id": "camp-9",
        "name": "Autumn Push",
        "budget": 5000,
        "start_date": "2025-05-01T00:00:00Z",
        "channels": [{"type": "google", "budget": 5000}],
    },
    "historical_performance": [
        {"date": "2025-05-20T00:00:00Z", "metric": "ctr", "value": 1.8, "channel": "google"},
    ],
    "budget_allocation": {"total": 5000, "allocated": {"google": 5000}},
}

MARKET_PAYLOAD = {
    "competitor_activity": [
        {"competitor": "Initech", "value": 40, "date": "2025-05-28T00:00:00Z", "source": "google"},
    ],
}


def provider_for(handler) -> HttpDatasetProvider:
    return HttpDatasetProvider(
        "https://datasets.internal/api/",
        headers={"Authorization": "Bearer test"},
        transport=httpx.MockTransport(handler),
    )


# ============================================================================
# TEST: HTTP Provider
# ============================================================================

class TestHttpDatasetProvider:

    @pytest.mark.asyncio
    async def test_campaign_dataset_parsed(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=CAMPAIGN_PAYLOAD)

        # Execute
        dataset = await provider_for(handler).get_campaign_dataset("camp-9")

        # Assert
        assert seen["url"] == "https://datasets.internal/api/campaigns/camp-9/dataset"
        assert seen["auth"] == "Bearer test"
        assert dataset.campaign.name == "Autumn Push"
        assert dataset.campaign.channel_types == ["google"]
        assert dataset.historical_performance[0].value == pytest.approx(1.8)
        assert dataset.total_budget == 5000

    @pytest.mark.asyncio
    async def test_market_query_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=MARKET_PAYLOAD)

        market = await provider_for(handler).get_market_dataset("retail", "emea")

        assert seen["params"] == {"industry": "retail", "region": "emea"}
        assert market.competitor_activity[0].competitor == "Initech"
        assert market.competitor_activity[0].metric == "activity"

    @pytest.mark.asyncio
    async def test_missing_campaign(self):
        provider = provider_for(lambda request: httpx.Response(404))

        with pytest.raises(CampaignNotFoundError):
            await provider.get_campaign_dataset("camp-404")

    @pytest.mark.asyncio
    async def test_missing_market_is_none(self):
        provider = provider_for(lambda request: httpx.Response(404))

        assert await provider.get_market_dataset("retail") is None

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        provider = provider_for(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))

        with pytest.raises(RateLimitError) as exc_info:
            await provider.get_campaign_dataset("camp-9")

        assert exc_info.value.retry_after == 30.0

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        provider = provider_for(lambda request: httpx.Response(503))

        with pytest.raises(TransientJobError) as exc_info:
            await provider.get_campaign_dataset("camp-9")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientJobError, match="unreachable"):
            await provider_for(handler).get_campaign_dataset("camp-9")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(TransientJobError, match="timed out"):
            await provider_for(handler).get_campaign_dataset("camp-9")


# ============================================================================
# TEST: In-Memory Provider
# ============================================================================

class TestInMemoryDatasetProvider:

    @pytest.mark.asyncio
    async def test_returns_copies(self, dataset_provider):
        first = await dataset_provider.get_campaign_dataset("camp-123")
        first.historical_performance.clear()

        second = await dataset_provider.get_campaign_dataset("camp-123")

        assert len(second.historical_performance) == 28

    @pytest.mark.asyncio
    async def test_region_falls_back_to_global(self, dataset_provider):
        market = await dataset_provider.get_market_dataset("technology", "apac")

        assert market is not None
        assert await dataset_provider.get_market_dataset("healthcare") is None

    @pytest.mark.asyncio
    async def test_unknown_campaign(self):
        with pytest.raises(CampaignNotFoundError):
            await InMemoryDatasetProvider().get_campaign_dataset("missing")
