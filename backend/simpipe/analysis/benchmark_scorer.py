# backend/simpipe/analysis/benchmark_scorer.py
"""
Benchmark scorer - compares a campaign's realized metrics with industry
reference distributions.

Each (industry, category, channel, region) has a three-point distribution
(25th/50th/75th percentile) per metric. Distributions for the campaign's
enabled channels are combined with a sample-size weighted average, and the
campaign's mean value per metric is placed on that distribution by piecewise
linear interpolation.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from simpipe.analysis.datasets import CampaignDataset, average_metrics
from simpipe.analysis.reference_data import ScoringTables, get_scoring_tables
from simpipe.analysis.validation import VALID_METRIC_TYPES
from simpipe.clock import Clock, utcnow
from simpipe.serialization import to_jsonable
from simpipe.services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

BENCHMARK_CACHE_TTL_SECONDS = 24 * 60 * 60
FRESHNESS_HORIZON_DAYS = 30
MIN_RELIABLE_SAMPLE_SIZE = 100

IMPACT_ORDER = {"high": 3, "medium": 2, "low": 1}

# (threshold, grade) pairs checked top-down
GRADE_SCALE = [
    (95, "A+"),
    (90, "A"),
    (85, "B+"),
    (80, "B"),
    (75, "C+"),
    (70, "C"),
    (60, "D"),
]

IMPROVEMENT_ACTIONS = {
    "ctr": "Optimize ad creative, improve targeting precision, and test different call-to-action phrases",
    "cpc": "Refine audience targeting, improve quality score, and optimize bidding strategy",
    "cpm": "Improve audience relevance, optimize creative performance, and adjust bidding approach",
    "engagement": "Create more compelling content, improve posting timing, and enhance community interaction",
    "impressions": "Increase budget allocation, expand targeting, and improve ad relevance scores",
    "reach": "Broaden audience targeting, increase frequency caps, and optimize campaign scheduling",
    "conversions": "Optimize landing pages, improve conversion funnel, and enhance call-to-action effectiveness",
}


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass
class BenchmarkDistribution:
    metric: str
    p25: float
    p50: float
    p75: float
    sample_size: int
    industry: str = "default"


@dataclass
class IndustryBenchmarkData:
    industry: str
    category: str
    channel: str
    region: str
    benchmarks: Dict[str, BenchmarkDistribution]
    sample_size: int
    last_updated: datetime


@dataclass
class BenchmarkComparison:
    metric: str
    campaign_value: float
    benchmark_value: float
    percentile: int
    deviation: float
    deviation_percentage: float
    performance: str  # above | at | below
    significance: str  # excellent | good | average | poor | critical


@dataclass
class BenchmarkInsight:
    type: str  # strength | weakness | opportunity | threat
    metric: str
    description: str
    impact: str
    confidence: float


@dataclass
class BenchmarkRecommendation:
    id: str
    priority: int
    metric: str
    current_value: float
    target_value: float
    improvement: int
    action: str
    rationale: str
    effort: str
    timeline: str


@dataclass
class BenchmarkAnalysis:
    overall: Dict[str, object]
    comparisons: List[BenchmarkComparison] = field(default_factory=list)
    insights: List[BenchmarkInsight] = field(default_factory=list)
    recommendations: List[BenchmarkRecommendation] = field(default_factory=list)
    data_quality: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return to_jsonable(self)


# ============================================================================
# PURE SCORING FUNCTIONS
# ============================================================================

def interpolate_percentile(value: float, p25: float, p50: float, p75: float) -> float:
    """
    Place `value` on a three-point distribution.

    Piecewise linear between the reference points; above p75 the curve
    reaches 100 at 1.5 x p75 and stays there.
    """
    if value <= p25:
        return 25 * (value / p25) if p25 > 0 else 0.0
    if value <= p50:
        return 25 + 25 * (value - p25) / (p50 - p25)
    if value <= p75:
        return 50 + 25 * (value - p50) / (p75 - p50)
    if p75 <= 0:
        return 100.0
    return 75 + 25 * min(1.0, (value - p75) / (0.5 * p75))


def significance_tier(percentile: float) -> str:
    if percentile >= 90:
        return "excellent"
    if percentile >= 75:
        return "good"
    if percentile >= 50:
        return "average"
    if percentile >= 25:
        return "poor"
    return "critical"


def letter_grade(score: float) -> str:
    for threshold, grade in GRADE_SCALE:
        if score >= threshold:
            return grade
    return "F"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compare_to_benchmark(metric: str, value: float, benchmark: BenchmarkDistribution) -> BenchmarkComparison:
    benchmark_value = benchmark.p50
    deviation = value - benchmark_value
    deviation_percentage = deviation / benchmark_value * 100 if benchmark_value else 0.0
    percentile = interpolate_percentile(value, benchmark.p25, benchmark.p50, benchmark.p75)

    if abs(deviation_percentage) < 5:
        performance = "at"
    elif deviation_percentage > 0:
        performance = "above"
    else:
        performance = "below"

    return BenchmarkComparison(
        metric=metric,
        campaign_value=value,
        benchmark_value=benchmark_value,
        percentile=round_half_up(percentile),
        deviation=deviation,
        deviation_percentage=round(deviation_percentage, 2),
        performance=performance,
        significance=significance_tier(percentile),
    )


# ============================================================================
# SCORER
# ============================================================================

ReferenceSource = Callable[[str, str, str, str], IndustryBenchmarkData]


class BenchmarkScorer:
    """
    Scores campaign performance against industry benchmarks.

    Reference distributions come from `reference_source` (defaults to the
    scoring tables) and are cached per (industry, category, channel, region)
    in an injected TTLCache.
    """

    def __init__(
        self,
        tables: Optional[ScoringTables] = None,
        cache: Optional[TTLCache] = None,
        reference_source: Optional[ReferenceSource] = None,
        clock: Clock = utcnow
    ):
        self.tables = tables or get_scoring_tables()
        self.clock = clock
        self.cache = cache or TTLCache(BENCHMARK_CACHE_TTL_SECONDS, clock=clock, name="benchmarks")
        self.reference_source = reference_source or self.build_reference_benchmarks

    def analyze_benchmarks(
        self,
        dataset: CampaignDataset,
        industry: str,
        region: str = "global"
    ) -> BenchmarkAnalysis:
        """
        Compare the campaign with its industry and channel benchmarks.

        Args:
            dataset: Campaign record plus historical performance
            industry: Industry key for the benchmark lookup
            region: Region key for the benchmark lookup

        Returns:
            BenchmarkAnalysis. With no usable history the analysis is empty
            with score 0 and grade F.
        """
        benchmarks = self._benchmarks_for_campaign(dataset, industry, region)
        current = {
            metric: value
            for metric, value in average_metrics(dataset.historical_performance).items()
            if metric in VALID_METRIC_TYPES
        }

        aggregated = self.aggregate_benchmarks(benchmarks)
        comparisons = [
            compare_to_benchmark(metric, current[metric], aggregated[metric])
            for metric in VALID_METRIC_TYPES
            if metric in aggregated and current.get(metric, 0) > 0
        ]

        insights = self._generate_insights(comparisons)
        recommendations = self._generate_recommendations(comparisons)
        overall = self._overall_score(comparisons)

        logger.debug(
            f"Benchmark analysis for campaign {dataset.campaign.id}: "
            f"{len(comparisons)} comparisons, grade {overall['grade']}"
        )

        return BenchmarkAnalysis(
            overall=overall,
            comparisons=comparisons,
            insights=insights,
            recommendations=recommendations,
            data_quality=self._assess_data_quality(benchmarks, current),
        )

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def _benchmarks_for_campaign(self, dataset: CampaignDataset, industry: str, region: str) -> List[IndustryBenchmarkData]:
        category = dataset.campaign.category
        benchmarks = []
        for channel in dataset.campaign.channel_types:
            key = f"{industry}-{category}-{channel}-{region}"
            benchmarks.append(self.cache.get_or_load(
                key, lambda: self.reference_source(industry, category, channel, region)
            ))
        return benchmarks

    def build_reference_benchmarks(self, industry: str, category: str, channel: str, region: str) -> IndustryBenchmarkData:
        """Derive distributions from the scoring tables."""
        multiplier = self.tables.industry_multiplier(industry)
        base = self.tables.channel_base(channel)
        sample_size = self.tables.benchmark_sample_size

        distributions = {}
        for metric, spread in self.tables.percentile_spreads.items():
            median = base[metric] * (multiplier.get(metric, 1.0) if spread.get("industry_scaled") else 1.0)
            distributions[metric] = BenchmarkDistribution(
                metric=metric,
                p25=median * spread["p25"],
                p50=median,
                p75=median * spread["p75"],
                sample_size=sample_size,
                industry=industry,
            )
        for metric, points in self.tables.fixed_distributions.items():
            distributions[metric] = BenchmarkDistribution(
                metric=metric,
                p25=points["p25"],
                p50=points["p50"],
                p75=points["p75"],
                sample_size=sample_size,
                industry=industry,
            )

        return IndustryBenchmarkData(
            industry=industry,
            category=category,
            channel=channel,
            region=region,
            benchmarks=distributions,
            sample_size=sample_size,
            last_updated=self.clock(),
        )

    @staticmethod
    def aggregate_benchmarks(benchmarks: List[IndustryBenchmarkData]) -> Dict[str, BenchmarkDistribution]:
        """Sample-size weighted average of per-channel distributions."""
        aggregated = {}
        for metric in VALID_METRIC_TYPES:
            relevant = [b.benchmarks[metric] for b in benchmarks if metric in b.benchmarks]
            if not relevant:
                continue
            total = sum(d.sample_size for d in relevant)
            if total <= 0:
                continue
            aggregated[metric] = BenchmarkDistribution(
                metric=metric,
                p25=sum(d.p25 * d.sample_size for d in relevant) / total,
                p50=sum(d.p50 * d.sample_size for d in relevant) / total,
                p75=sum(d.p75 * d.sample_size for d in relevant) / total,
                sample_size=total,
                industry=relevant[0].industry,
            )
        return aggregated

    # ------------------------------------------------------------------
    # Insights and recommendations
    # ------------------------------------------------------------------

    def _generate_insights(self, comparisons: List[BenchmarkComparison]) -> List[BenchmarkInsight]:
        insights = [i for i in (self._insight_for(c) for c in comparisons) if i is not None]
        insights.extend(self._overall_insights(comparisons))
        return sorted(insights, key=lambda i: IMPACT_ORDER[i.impact], reverse=True)

    @staticmethod
    def _insight_for(comparison: BenchmarkComparison) -> Optional[BenchmarkInsight]:
        metric = comparison.metric
        label = metric.upper()
        deviation = abs(comparison.deviation_percentage)

        if comparison.significance == "excellent":
            return BenchmarkInsight(
                type="strength",
                metric=metric,
                description=(
                    f"Your {label} performance is excellent, ranking in the {comparison.percentile}th "
                    f"percentile ({deviation}% above industry average)."
                ),
                impact="high",
                confidence=0.9,
            )

        if comparison.significance in ("critical", "poor"):
            return BenchmarkInsight(
                type="weakness",
                metric=metric,
                description=(
                    f"Your {label} performance is {comparison.significance}, ranking in the "
                    f"{comparison.percentile}th percentile ({deviation}% below industry average)."
                ),
                impact="high" if comparison.significance == "critical" else "medium",
                confidence=0.85,
            )

        if comparison.significance == "good" and comparison.deviation_percentage > 10:
            return BenchmarkInsight(
                type="opportunity",
                metric=metric,
                description=(
                    f"Your {label} performance is good but has potential for further "
                    f"optimization to reach excellent levels."
                ),
                impact="medium",
                confidence=0.7,
            )

        return None

    @staticmethod
    def _overall_insights(comparisons: List[BenchmarkComparison]) -> List[BenchmarkInsight]:
        if not comparisons:
            return []

        insights = []
        excellent = [c for c in comparisons if c.significance == "excellent"]
        critical = [c for c in comparisons if c.significance == "critical"]
        average_percentile = sum(c.percentile for c in comparisons) / len(comparisons)

        # Aggregate insights carry ctr as the representative metric
        if len(excellent) >= 2:
            insights.append(BenchmarkInsight(
                type="strength",
                metric="ctr",
                description=(
                    f"Strong overall performance with {len(excellent)} metrics performing "
                    f"excellently above industry standards."
                ),
                impact="high",
                confidence=0.9,
            ))

        if len(critical) >= 2:
            names = ", ".join(c.metric for c in critical)
            insights.append(BenchmarkInsight(
                type="threat",
                metric="ctr",
                description=(
                    f"Multiple critical performance areas identified. "
                    f"Immediate optimization required for {names}."
                ),
                impact="high",
                confidence=0.95,
            ))

        if average_percentile < 40:
            insights.append(BenchmarkInsight(
                type="opportunity",
                metric="ctr",
                description=(
                    "Overall performance below industry average. Significant opportunity "
                    "for improvement across multiple metrics."
                ),
                impact="high",
                confidence=0.8,
            ))

        return insights

    @staticmethod
    def _generate_recommendations(comparisons: List[BenchmarkComparison]) -> List[BenchmarkRecommendation]:
        recommendations = []

        underperforming = [c for c in comparisons if c.significance in ("critical", "poor")]
        for index, comparison in enumerate(underperforming):
            target = comparison.benchmark_value * 1.1
            deviation = abs(comparison.deviation_percentage)
            recommendations.append(BenchmarkRecommendation(
                id=f"benchmark-rec-{index}",
                priority=90 if comparison.significance == "critical" else 70,
                metric=comparison.metric,
                current_value=comparison.campaign_value,
                target_value=target,
                improvement=round_half_up((target - comparison.campaign_value) / comparison.campaign_value * 100),
                action=IMPROVEMENT_ACTIONS.get(
                    comparison.metric, "Optimize campaign performance through targeted improvements"
                ),
                rationale=(
                    f"Current {comparison.metric} is {deviation}% below industry benchmark. Reaching "
                    f"benchmark levels could significantly improve campaign ROI."
                ),
                effort="high" if deviation > 50 else "medium",
                timeline="4-6 weeks" if deviation > 50 else "2-3 weeks",
            ))

        improvable = [c for c in comparisons if c.significance == "good" and c.deviation_percentage < 20]
        for index, comparison in enumerate(improvable):
            target = comparison.benchmark_value * 1.25
            recommendations.append(BenchmarkRecommendation(
                id=f"benchmark-opt-{index + 100}",
                priority=50,
                metric=comparison.metric,
                current_value=comparison.campaign_value,
                target_value=target,
                improvement=round_half_up((target - comparison.campaign_value) / comparison.campaign_value * 100),
                action=f"Fine-tune {comparison.metric} optimization to reach excellent performance levels",
                rationale=(
                    "Good performance with opportunity to reach top-tier industry levels "
                    "through incremental improvements."
                ),
                effort="low",
                timeline="1-2 weeks",
            ))

        return sorted(recommendations, key=lambda r: r.priority, reverse=True)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @staticmethod
    def _overall_score(comparisons: List[BenchmarkComparison]) -> Dict[str, object]:
        if not comparisons:
            return {
                "score": 0,
                "grade": "F",
                "summary": "Insufficient data for benchmark analysis",
            }

        average = sum(c.percentile for c in comparisons) / len(comparisons)
        excellent = sum(1 for c in comparisons if c.significance == "excellent")
        critical = sum(1 for c in comparisons if c.significance == "critical")

        if excellent >= len(comparisons) * 0.7:
            summary = "Excellent performance across most metrics, significantly outperforming industry standards."
        elif critical >= len(comparisons) * 0.5:
            summary = "Multiple areas require immediate attention to meet industry standards."
        elif average >= 75:
            summary = "Good overall performance with opportunities for optimization."
        else:
            summary = "Performance below industry average across multiple metrics."

        return {
            "score": round_half_up(average),
            "grade": letter_grade(average),
            "summary": summary,
        }

    def _assess_data_quality(self, benchmarks: List[IndustryBenchmarkData], current: Dict[str, float]) -> Dict[str, float]:
        covered = sum(
            1 for metric in VALID_METRIC_TYPES
            if current.get(metric, 0) > 0 and any(metric in b.benchmarks for b in benchmarks)
        )
        coverage = covered / len(VALID_METRIC_TYPES)

        if benchmarks:
            now = self.clock()
            average_age_days = sum(
                (now - b.last_updated).total_seconds() for b in benchmarks
            ) / len(benchmarks) / 86400
            freshness = max(0.0, 1 - average_age_days / FRESHNESS_HORIZON_DAYS)
            average_sample = sum(b.sample_size for b in benchmarks) / len(benchmarks)
            reliability = min(1.0, average_sample / MIN_RELIABLE_SAMPLE_SIZE)
        else:
            freshness = 0.0
            reliability = 0.0

        return {
            "coverage": round(coverage, 2),
            "freshness": round(freshness, 2),
            "reliability": round(reliability, 2),
        }


def create_benchmark_scorer(
    tables: Optional[ScoringTables] = None,
    ttl_seconds: float = BENCHMARK_CACHE_TTL_SECONDS,
    clock: Clock = utcnow
) -> BenchmarkScorer:
    return BenchmarkScorer(
        tables=tables,
        cache=TTLCache(ttl_seconds, clock=clock, name="benchmarks"),
        clock=clock,
    )
