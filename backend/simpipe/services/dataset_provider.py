# backend/simpipe/services/dataset_provider.py
"""
Read-only access to campaign and market datasets.

Campaign records and market snapshots are owned by other services. The
pipeline only reads them and never mutates what it receives.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from simpipe.analysis.datasets import CampaignDataset, MarketDataset
from simpipe.errors import CampaignNotFoundError, RateLimitError, TransientJobError

logger = logging.getLogger(__name__)


class DatasetProvider(ABC):
    """Source of campaign datasets and market snapshots."""

    @abstractmethod
    async def get_campaign_dataset(self, campaign_id: str) -> CampaignDataset:
        """
        Raises:
            CampaignNotFoundError: If the campaign does not exist
            TransientJobError: If the source is temporarily unavailable
        """
        pass

    @abstractmethod
    async def get_market_dataset(self, industry: str, region: str = "global") -> Optional[MarketDataset]:
        pass


class InMemoryDatasetProvider(DatasetProvider):
    """Datasets registered up front. Returns copies."""

    def __init__(self):
        self.campaigns: Dict[str, CampaignDataset] = {}
        self.markets: Dict[tuple, MarketDataset] = {}

    def add_campaign(self, dataset: CampaignDataset):
        self.campaigns[dataset.campaign.id] = dataset

    def add_market(self, dataset: MarketDataset, industry: str, region: str = "global"):
        self.markets[(industry, region)] = dataset

    async def get_campaign_dataset(self, campaign_id: str) -> CampaignDataset:
        dataset = self.campaigns.get(campaign_id)
        if dataset is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found", context={"campaign_id": campaign_id})
        return copy.deepcopy(dataset)

    async def get_market_dataset(self, industry: str, region: str = "global") -> Optional[MarketDataset]:
        dataset = self.markets.get((industry, region)) or self.markets.get((industry, "global"))
        return copy.deepcopy(dataset) if dataset else None


class HttpDatasetProvider(DatasetProvider):
    """
    Dataset service client.

    Endpoints:
        GET {base_url}/campaigns/{campaign_id}/dataset
        GET {base_url}/market?industry=...&region=...
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}
        self.transport = transport

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self.headers, transport=self.transport) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransientJobError(f"Dataset service timed out: {url}") from e
        except httpx.HTTPError as e:
            raise TransientJobError(f"Dataset service unreachable: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Dataset service rate limit exceeded",
                service="dataset",
                retry_after=float(retry_after) if retry_after else None
            )
        if response.status_code >= 500:
            raise TransientJobError(f"Dataset service error {response.status_code}")
        return response

    async def get_campaign_dataset(self, campaign_id: str) -> CampaignDataset:
        response = await self._get(f"campaigns/{campaign_id}/dataset")
        if response.status_code == 404:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found", context={"campaign_id": campaign_id})
        response.raise_for_status()
        return CampaignDataset.from_dict(response.json())

    async def get_market_dataset(self, industry: str, region: str = "global") -> Optional[MarketDataset]:
        response = await self._get("market", params={"industry": industry, "region": region})
        if response.status_code == 404:
            logger.warning(f"No market data for industry={industry}, region={region}")
            return None
        response.raise_for_status()
        return MarketDataset.from_dict(response.json())
