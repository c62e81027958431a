# backend/simpipe/analysis/reference_data.py
"""
Heuristic scoring tables (industry multipliers, channel base rates, impact
coefficients) loaded from JSON so they can be recalibrated without a deploy.
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TABLES_PATH = Path(__file__).resolve().parent.parent / "data" / "scoring_tables.json"

REQUIRED_SECTIONS = [
    "benchmark_sample_size",
    "industry_multipliers",
    "channel_bases",
    "percentile_spreads",
    "fixed_distributions",
    "industry_budgets",
    "competitor_metric_baselines",
    "activity_impact_coefficients",
    "advantage_types",
    "ad_channels",
]


@dataclass(frozen=True)
class ScoringTables:
    benchmark_sample_size: int
    industry_multipliers: Dict[str, Dict[str, float]]
    channel_bases: Dict[str, Dict[str, float]]
    percentile_spreads: Dict[str, Dict[str, Any]]
    fixed_distributions: Dict[str, Dict[str, float]]
    industry_budgets: Dict[str, float]
    competitor_metric_baselines: Dict[str, float]
    activity_impact_coefficients: Dict[str, float]
    advantage_types: Dict[str, str]
    ad_channels: List[str]

    def industry_multiplier(self, industry: str) -> Dict[str, float]:
        return self.industry_multipliers.get(industry) or self.industry_multipliers["default"]

    def channel_base(self, channel: str) -> Dict[str, float]:
        return self.channel_bases.get(channel) or self.channel_bases["default"]

    def industry_budget(self, industry: str) -> float:
        return self.industry_budgets.get(industry) or self.industry_budgets["default"]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringTables":
        missing = [section for section in REQUIRED_SECTIONS if section not in data]
        if missing:
            raise ValueError(f"Scoring tables missing sections: {', '.join(missing)}")
        for table in ("industry_multipliers", "channel_bases", "industry_budgets"):
            if "default" not in data[table]:
                raise ValueError(f"Scoring table '{table}' needs a 'default' entry")
        return cls(**{section: data[section] for section in REQUIRED_SECTIONS})


def load_scoring_tables(path: Optional[str] = None) -> ScoringTables:
    """Load tables from `path`, or the bundled defaults."""
    source = Path(path) if path else DEFAULT_TABLES_PATH
    with open(source, encoding="utf-8") as f:
        data = json.load(f)
    logger.info(f"Loaded scoring tables from {source}")
    return ScoringTables.from_dict(data)


@lru_cache(maxsize=None)
def get_scoring_tables(path: Optional[str] = None) -> ScoringTables:
    return load_scoring_tables(path)
