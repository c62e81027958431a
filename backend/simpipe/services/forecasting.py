# backend/simpipe/services/forecasting.py
"""
Forecasting model boundary.

The model is pluggable and external to the pipeline; its accuracy is not
the pipeline's concern. `TrendForecastModel` is the built-in baseline: it
projects the historical mean forward and scales it per scenario.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from simpipe.analysis.datasets import EnrichedDataset, average_metrics
from simpipe.clock import Clock, utcnow
from simpipe.schemas.simulation import SimulationRequest

logger = logging.getLogger(__name__)


@dataclass
class ForecastOutput:
    trajectories: List[Dict[str, Any]]
    scenarios: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    confidence_intervals: List[Dict[str, Any]] = field(default_factory=list)
    model_metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trajectories": self.trajectories,
            "scenarios": self.scenarios,
            "confidence_intervals": self.confidence_intervals,
            "model_metadata": self.model_metadata,
        }


class ForecastModel(ABC):
    """Produces performance trajectories for an enriched dataset."""

    name = "forecast"
    version = "0"

    @abstractmethod
    async def predict(self, dataset: EnrichedDataset, request: SimulationRequest) -> ForecastOutput:
        pass


# ============================================================================
# BASELINE MODEL
# ============================================================================

SCENARIO_MULTIPLIERS = {
    "optimistic": 1.15,
    "realistic": 1.0,
    "pessimistic": 0.85,
}

DEFAULT_METRIC_BASELINES = {
    "ctr": 1.5,
    "cpc": 2.0,
    "cpm": 10.0,
    "engagement": 2.5,
    "impressions": 1000.0,
    "reach": 800.0,
    "conversions": 10.0,
}

DEFAULT_HORIZON_DAYS = 30


def scenario_multiplier(scenario_type: str, percentile: Optional[float] = None) -> float:
    """Custom scenarios scale linearly around the median percentile."""
    if scenario_type == "custom":
        return 1 + ((percentile if percentile is not None else 50) - 50) / 200
    return SCENARIO_MULTIPLIERS.get(scenario_type, 1.0)


class TrendForecastModel(ForecastModel):
    """Flat projection of historical means, with confidence from history depth."""

    name = "trend-baseline"
    version = "1.0"

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    async def predict(self, dataset: EnrichedDataset, request: SimulationRequest) -> ForecastOutput:
        metric_types = request.metric_types or list(DEFAULT_METRIC_BASELINES.keys())
        history = average_metrics(dataset.historical_performance)
        baseline = {
            metric: history.get(metric, DEFAULT_METRIC_BASELINES.get(metric, 0.0))
            for metric in metric_types
        }

        data_points = len(dataset.historical_performance)
        confidence = min(0.95, 0.5 + data_points / 100)
        dates = self._forecast_dates(request)

        trajectories = self._project(dates, baseline, 1.0, confidence)
        scenarios = {}
        for scenario in request.scenarios or []:
            multiplier = scenario_multiplier(scenario.type, scenario.percentile)
            scenarios[scenario.type] = self._project(dates, baseline, multiplier, confidence)

        spread = 1 - confidence
        intervals = [
            {
                "metric": metric,
                "lower": value * (1 - spread),
                "upper": value * (1 + spread),
                "confidence_level": confidence,
            }
            for metric, value in baseline.items()
        ]

        logger.debug(f"Projected {len(dates)} points for campaign {dataset.campaign.id}")
        return ForecastOutput(
            trajectories=trajectories,
            scenarios=scenarios,
            confidence_intervals=intervals,
            model_metadata={
                "model_name": self.name,
                "version": self.version,
                "confidence_score": confidence,
                "training_data_points": data_points,
                "generated_at": self.clock().isoformat(),
            },
        )

    def _forecast_dates(self, request: SimulationRequest) -> List[datetime]:
        timeframe = request.timeframe
        start = timeframe.start_date if timeframe and timeframe.start_date else self.clock()
        end = timeframe.end_date if timeframe and timeframe.end_date else start + timedelta(days=DEFAULT_HORIZON_DAYS)
        step = timedelta(days=7 if timeframe and timeframe.granularity == "weekly" else 1)

        dates = []
        current = start
        while current <= end:
            dates.append(current)
            current += step
        return dates or [start]

    @staticmethod
    def _project(dates, baseline: Dict[str, float], multiplier: float, confidence: float) -> List[Dict[str, Any]]:
        return [
            {
                "date": date.isoformat(),
                "metrics": {metric: round(value * multiplier, 4) for metric, value in baseline.items()},
                "confidence": confidence,
            }
            for date in dates
        ]
