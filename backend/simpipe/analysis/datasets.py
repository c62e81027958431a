# backend/simpipe/analysis/datasets.py
"""
Read-only inputs to the analyzers.

CampaignDataset is the campaign record plus its realized performance history.
MarketDataset is a point-in-time snapshot of competitor activity, industry
benchmark tables and trend data. Neither is mutated by the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from simpipe.clock import parse_datetime


def _optional_datetime(value) -> Optional[datetime]:
    return parse_datetime(value) if value else None


@dataclass
class ChannelConfig:
    type: str
    enabled: bool = True
    budget: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelConfig":
        return cls(
            type=data["type"],
            enabled=data.get("enabled", True),
            budget=float(data.get("budget") or 0.0),
        )


@dataclass
class CampaignRecord:
    id: str
    name: str
    budget: float
    currency: str = "USD"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: str = "general"
    channels: List[ChannelConfig] = field(default_factory=list)
    audiences: List[Dict[str, Any]] = field(default_factory=list)
    kpis: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def channel_types(self) -> List[str]:
        return [c.type for c in self.channels if c.enabled]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignRecord":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            budget=float(data.get("budget") or 0.0),
            currency=data.get("currency", "USD"),
            start_date=_optional_datetime(data.get("start_date")),
            end_date=_optional_datetime(data.get("end_date")),
            category=data.get("category", "general"),
            channels=[ChannelConfig.from_dict(c) for c in data.get("channels", [])],
            audiences=list(data.get("audiences", [])),
            kpis=list(data.get("kpis", [])),
        )


@dataclass
class PerformanceObservation:
    """One historical metric reading."""
    date: datetime
    metric: str
    value: float
    channel: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceObservation":
        return cls(
            date=parse_datetime(data["date"]),
            metric=data["metric"],
            value=float(data["value"]),
            channel=data.get("channel"),
        )


@dataclass
class BudgetAllocation:
    total: float
    allocated: Dict[str, float] = field(default_factory=dict)
    spent: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BudgetAllocation":
        return cls(
            total=float(data.get("total") or 0.0),
            allocated={k: float(v) for k, v in data.get("allocated", {}).items()},
            spent={k: float(v) for k, v in data.get("spent", {}).items()},
        )


@dataclass
class CampaignDataset:
    campaign: CampaignRecord
    historical_performance: List[PerformanceObservation] = field(default_factory=list)
    budget_allocation: Optional[BudgetAllocation] = None
    audience_insights: Optional[Dict[str, Any]] = None

    @property
    def total_budget(self) -> float:
        if self.budget_allocation is not None:
            return self.budget_allocation.total
        return self.campaign.budget

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CampaignDataset":
        allocation = data.get("budget_allocation")
        return cls(
            campaign=CampaignRecord.from_dict(data["campaign"]),
            historical_performance=[
                PerformanceObservation.from_dict(p) for p in data.get("historical_performance", [])
            ],
            budget_allocation=BudgetAllocation.from_dict(allocation) if allocation else None,
            audience_insights=data.get("audience_insights"),
        )


@dataclass
class CompetitorObservation:
    """One observed unit of competitor activity."""
    competitor: str
    metric: str
    value: float
    date: datetime
    source: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompetitorObservation":
        return cls(
            competitor=data["competitor"],
            metric=data.get("metric", "activity"),
            value=float(data["value"]),
            date=parse_datetime(data["date"]),
            source=data.get("source", "custom"),
        )


@dataclass
class MarketDataset:
    competitor_activity: List[CompetitorObservation] = field(default_factory=list)
    industry_benchmarks: List[Dict[str, Any]] = field(default_factory=list)
    seasonal_trends: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketDataset":
        return cls(
            competitor_activity=[
                CompetitorObservation.from_dict(o) for o in data.get("competitor_activity", [])
            ],
            industry_benchmarks=list(data.get("industry_benchmarks", [])),
            seasonal_trends=list(data.get("seasonal_trends", [])),
        )


@dataclass
class EnrichedDataset:
    """Campaign data joined with market data, as fed to the model."""
    campaign_dataset: CampaignDataset
    market_dataset: Optional[MarketDataset] = None

    @property
    def campaign(self) -> CampaignRecord:
        return self.campaign_dataset.campaign

    @property
    def historical_performance(self) -> List[PerformanceObservation]:
        return self.campaign_dataset.historical_performance


def average_metrics(observations: List[PerformanceObservation]) -> Dict[str, float]:
    """Arithmetic mean per metric across all channels and dates."""
    sums: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for obs in observations:
        sums[obs.metric] = sums.get(obs.metric, 0.0) + obs.value
        counts[obs.metric] = counts.get(obs.metric, 0) + 1
    return {metric: sums[metric] / counts[metric] for metric in sums}
