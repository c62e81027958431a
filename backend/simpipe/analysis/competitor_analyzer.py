# backend/simpipe/analysis/competitor_analyzer.py
"""
Competitive positioning analyzer.

Market shares are estimates: a competitor's share is its share of the total
observed competitor activity volume, and the analyzed campaign is assigned
min(remaining share, 5%). That placeholder flows into rank, positioning
grade and HHI, so treat those as rough indicators.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from simpipe.analysis.datasets import (
    CampaignDataset,
    CompetitorObservation,
    MarketDataset,
    average_metrics,
)
from simpipe.analysis.reference_data import ScoringTables, get_scoring_tables
from simpipe.analysis.validation import VALID_METRIC_TYPES
from simpipe.clock import Clock, utcnow
from simpipe.serialization import to_jsonable
from simpipe.services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

COMPETITOR_CACHE_TTL_SECONDS = 12 * 60 * 60
SUBJECT_SHARE_CAP = 5.0
SUBJECT_LABEL = "Your Campaign"
RECENT_WINDOW = timedelta(days=30)
TREND_WINDOW = timedelta(days=60)
TIMELINESS_HORIZON_DAYS = 30
DATA_SOURCE_ACCURACY = 0.75
SEVERE = ("high", "critical")


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass
class CompetitorProfile:
    id: str
    name: str
    domain: str
    industry: str
    market_share: float
    estimated_budget: float
    channels: List[str]
    strengths: List[str]
    weaknesses: List[str]
    last_updated: datetime


@dataclass
class CompetitiveAdvantage:
    type: str  # cost | quality | reach | engagement
    metric: str
    advantage: int  # percent over competitor average
    confidence: float
    description: str


@dataclass
class CompetitiveThreat:
    competitor: str
    type: str
    severity: str
    probability: float
    impact: float
    window_start: datetime
    window_end: datetime
    description: str
    mitigation: List[str]


@dataclass
class CompetitiveOpportunity:
    type: str
    description: str
    potential: int
    effort: str
    timeline: str
    requirements: List[str]


@dataclass
class CompetitivePositioning:
    rank: int
    total_competitors: int
    market_share: float
    competitive_advantages: List[CompetitiveAdvantage]
    threats: List[CompetitiveThreat]
    opportunities: List[CompetitiveOpportunity]
    positioning_score: float
    positioning_grade: str  # Leader | Challenger | Follower | Niche


@dataclass
class MarketShareAnalysis:
    current_share: float
    projected_share: float
    share_change: float
    share_rank: int
    top_competitors: List[Dict[str, object]]
    market_concentration: float  # HHI
    competitive_intensity: str  # low | medium | high | extreme


@dataclass
class CompetitorActivityImpact:
    competitor: str
    activity: str
    impact_on_metrics: Dict[str, float]
    window_start: datetime
    window_end: datetime
    confidence: float
    description: str


@dataclass
class CompetitiveRecommendation:
    id: str
    type: str  # defensive | offensive | positioning
    priority: int
    title: str
    description: str
    expected_impact: float
    effort: str
    timeline: str
    metrics: List[str]
    actions: List[str]


@dataclass
class CompetitiveAnalysis:
    positioning: CompetitivePositioning
    market_share: MarketShareAnalysis
    competitor_profiles: List[CompetitorProfile] = field(default_factory=list)
    activity_impacts: List[CompetitorActivityImpact] = field(default_factory=list)
    recommendations: List[CompetitiveRecommendation] = field(default_factory=list)
    data_quality: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return to_jsonable(self)


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def positioning_score(rank: int, total: int, share: float, advantage_count: int, severe_threat_count: int) -> float:
    rank_score = 40 * (total - rank) / total if total else 0.0
    share_score = min(2 * share, 30)
    advantage_score = min(5 * advantage_count, 20)
    threat_penalty = 5 * severe_threat_count
    return max(0.0, min(100.0, rank_score + share_score + advantage_score - threat_penalty))


def positioning_grade(rank: int, share: float) -> str:
    if rank == 1 and share > 25:
        return "Leader"
    if rank <= 3 and share > 10:
        return "Challenger"
    if share > 5:
        return "Follower"
    return "Niche"


def herfindahl_index(shares: List[float]) -> float:
    return sum(share ** 2 for share in shares)


def competitive_intensity(hhi: float) -> str:
    # Concentrated markets see less head-to-head competition
    if hhi > 2500:
        return "low"
    if hhi > 1500:
        return "medium"
    if hhi > 1000:
        return "high"
    return "extreme"


def _slug(name: str, separator: str) -> str:
    return re.sub(r"\s+", separator, name.lower())


# ============================================================================
# ANALYZER
# ============================================================================

class CompetitorAnalyzer:
    """Market positioning insights from competitor activity observations."""

    def __init__(
        self,
        tables: Optional[ScoringTables] = None,
        cache: Optional[TTLCache] = None,
        clock: Clock = utcnow
    ):
        self.tables = tables or get_scoring_tables()
        self.clock = clock
        self.cache = cache or TTLCache(COMPETITOR_CACHE_TTL_SECONDS, clock=clock, name="competitors")

    def analyze_competitors(
        self,
        dataset: CampaignDataset,
        market: MarketDataset,
        industry: str,
        region: str = "global"
    ) -> CompetitiveAnalysis:
        """
        Analyze the competitive landscape around a campaign.

        Steps:
        1. Build (or reuse cached) competitor profiles
        2. Position the campaign: rank, advantages, threats, opportunities
        3. Estimate market share, concentration and trends
        4. Estimate per-competitor activity impact on campaign metrics
        5. Derive recommendations

        Args:
            dataset: Campaign record plus historical performance
            market: Competitor activity snapshot
            industry: Industry key (drives budget estimates)
            region: Region key (part of the profile cache key)
        """
        profiles = self._competitor_profiles(market, industry, region)
        positioning = self._positioning(dataset, profiles, market)
        market_share = self._market_share(dataset, profiles, market)
        impacts = self._activity_impacts(market)
        recommendations = self._recommendations(positioning, market_share)

        logger.debug(
            f"Competitive analysis for campaign {dataset.campaign.id}: "
            f"{len(profiles)} competitors, rank {positioning.rank}, {positioning.positioning_grade}"
        )

        return CompetitiveAnalysis(
            positioning=positioning,
            market_share=market_share,
            competitor_profiles=profiles,
            activity_impacts=impacts,
            recommendations=recommendations,
            data_quality=self._data_quality(profiles, market),
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def _competitor_profiles(self, market: MarketDataset, industry: str, region: str) -> List[CompetitorProfile]:
        names = list(dict.fromkeys(o.competitor for o in market.competitor_activity))
        profiles = []
        for name in names:
            key = f"{name}-{industry}-{region}"
            profiles.append(self.cache.get_or_load(
                key, lambda: self.build_profile(name, industry, market)
            ))
        return sorted(profiles, key=lambda p: p.market_share, reverse=True)

    def build_profile(self, name: str, industry: str, market: MarketDataset) -> CompetitorProfile:
        observations = [o for o in market.competitor_activity if o.competitor == name]
        total_activity = sum(o.value for o in market.competitor_activity)
        competitor_activity = sum(o.value for o in observations)
        market_share = competitor_activity / total_activity * 100 if total_activity > 0 else 0.0

        estimated_budget = self.tables.industry_budget(industry) * (market_share / 10)

        channels = list(dict.fromkeys(
            o.source for o in observations
            if o.source in self.tables.ad_channels and o.value > 0
        ))
        strengths, weaknesses = self._strengths_and_weaknesses(observations, market_share)

        return CompetitorProfile(
            id=f"competitor-{_slug(name, '-')}",
            name=name,
            domain=f"{_slug(name, '')}.com",
            industry=industry,
            market_share=market_share,
            estimated_budget=estimated_budget,
            channels=channels,
            strengths=strengths,
            weaknesses=weaknesses,
            last_updated=self.clock(),
        )

    def _strengths_and_weaknesses(self, observations: List[CompetitorObservation], market_share: float):
        strengths: List[str] = []
        weaknesses: List[str] = []

        if market_share > 20:
            strengths.extend(["Strong market presence", "High brand recognition"])
        elif market_share < 5:
            weaknesses.extend(["Limited market presence", "Low brand awareness"])

        unique_sources = len({o.source for o in observations})
        if unique_sources >= 4:
            strengths.append("Multi-channel presence")
        elif unique_sources <= 2:
            weaknesses.append("Limited channel diversity")

        now = self.clock()
        recent = [o for o in observations if now - o.date < RECENT_WINDOW]
        if len(recent) >= len(observations) * 0.7:
            strengths.append("Consistent campaign activity")
        else:
            weaknesses.append("Inconsistent campaign activity")

        if not strengths:
            strengths.append("Established market player")
        if not weaknesses:
            weaknesses.append("Potential optimization opportunities")

        return strengths, weaknesses

    # ------------------------------------------------------------------
    # Positioning
    # ------------------------------------------------------------------

    @staticmethod
    def subject_share(profiles: List[CompetitorProfile]) -> float:
        remaining = max(0.0, 100 - sum(p.market_share for p in profiles))
        return min(remaining, SUBJECT_SHARE_CAP)

    def _positioning(self, dataset: CampaignDataset, profiles: List[CompetitorProfile], market: MarketDataset) -> CompetitivePositioning:
        share = self.subject_share(profiles)
        all_shares = sorted([p.market_share for p in profiles] + [share], reverse=True)
        rank = all_shares.index(share) + 1
        total = len(profiles) + 1

        advantages = self._advantages(dataset, market)
        threats = self._threats(dataset, profiles)
        opportunities = self._opportunities(dataset, profiles)
        severe = sum(1 for t in threats if t.severity in SEVERE)

        return CompetitivePositioning(
            rank=rank,
            total_competitors=total,
            market_share=share,
            competitive_advantages=advantages,
            threats=threats,
            opportunities=opportunities,
            positioning_score=positioning_score(rank, total, share, len(advantages), severe),
            positioning_grade=positioning_grade(rank, share),
        )

    def competitor_averages(self, market: MarketDataset) -> Dict[str, float]:
        """Baseline metric levels scaled by average observed activity."""
        activity = market.competitor_activity
        average_activity = sum(o.value for o in activity) / max(1, len(activity))
        scale = min(average_activity / 100, 2)
        return {metric: base * scale for metric, base in self.tables.competitor_metric_baselines.items()}

    def _advantages(self, dataset: CampaignDataset, market: MarketDataset) -> List[CompetitiveAdvantage]:
        campaign_metrics = average_metrics(dataset.historical_performance)
        averages = self.competitor_averages(market)

        advantages = []
        for metric in VALID_METRIC_TYPES:
            value = campaign_metrics.get(metric, 0.0)
            competitor_avg = averages.get(metric)
            if competitor_avg and value > competitor_avg * 1.1:
                advantage = (value - competitor_avg) / competitor_avg * 100
                advantages.append(CompetitiveAdvantage(
                    type=self.tables.advantage_types.get(metric, "quality"),
                    metric=metric,
                    advantage=round(advantage),
                    confidence=0.8,
                    description=f"{advantage:.1f}% better {metric} performance than competitor average",
                ))
        return sorted(advantages, key=lambda a: a.advantage, reverse=True)

    def _threats(self, dataset: CampaignDataset, profiles: List[CompetitorProfile]) -> List[CompetitiveThreat]:
        now = self.clock()
        campaign_channels = dataset.campaign.channel_types
        threats = []

        for competitor in profiles:
            if competitor.estimated_budget > dataset.total_budget * 2:
                threats.append(CompetitiveThreat(
                    competitor=competitor.name,
                    type="budget_increase",
                    severity="high",
                    probability=0.7,
                    impact=0.8,
                    window_start=now,
                    window_end=now + timedelta(days=90),
                    description=(
                        f"{competitor.name} has significantly higher budget allocation, potentially "
                        f"limiting your reach and increasing costs"
                    ),
                    mitigation=[
                        "Focus on high-performing audience segments",
                        "Optimize creative performance to improve quality scores",
                        "Consider alternative channels with less competition",
                    ],
                ))

            overlap = [c for c in campaign_channels if c in competitor.channels]
            if len(overlap) >= 2:
                threats.append(CompetitiveThreat(
                    competitor=competitor.name,
                    type="audience_overlap",
                    severity="medium",
                    probability=0.8,
                    impact=0.6,
                    window_start=now,
                    window_end=now + timedelta(days=60),
                    description=(
                        f"Significant channel overlap with {competitor.name} may increase "
                        f"competition for audience attention"
                    ),
                    mitigation=[
                        "Differentiate creative messaging",
                        "Target complementary audience segments",
                        "Optimize bidding strategies",
                    ],
                ))

        return sorted(threats, key=lambda t: t.probability * t.impact, reverse=True)

    def _opportunities(self, dataset: CampaignDataset, profiles: List[CompetitorProfile]) -> List[CompetitiveOpportunity]:
        opportunities = []

        competitor_channels = {c for p in profiles[:3] for c in p.channels}
        campaign_channels = set(dataset.campaign.channel_types)
        for channel in self.tables.ad_channels:
            if channel in competitor_channels or channel in campaign_channels:
                continue
            opportunities.append(CompetitiveOpportunity(
                type="channel_opportunity",
                description=f"{channel} appears underutilized by competitors, presenting expansion opportunity",
                potential=75,
                effort="medium",
                timeline="4-6 weeks",
                requirements=[
                    f"Set up {channel} advertising account",
                    "Develop channel-specific creative assets",
                    "Allocate budget for testing",
                ],
            ))

        for competitor in profiles:
            if any("channel diversity" in w for w in competitor.weaknesses):
                opportunities.append(CompetitiveOpportunity(
                    type="competitor_weakness",
                    description=(
                        f"{competitor.name} has limited channel presence - opportunity to capture "
                        f"their audience across multiple channels"
                    ),
                    potential=60,
                    effort="low",
                    timeline="2-3 weeks",
                    requirements=[
                        "Expand to channels where competitor is absent",
                        "Target similar audience segments",
                    ],
                ))

        return sorted(opportunities, key=lambda o: o.potential, reverse=True)

    # ------------------------------------------------------------------
    # Market share
    # ------------------------------------------------------------------

    def _market_share(self, dataset: CampaignDataset, profiles: List[CompetitorProfile], market: MarketDataset) -> MarketShareAnalysis:
        current = self.subject_share(profiles)

        own_budget = dataset.total_budget
        total_budget = sum(p.estimated_budget for p in profiles) + own_budget
        budget_share = own_budget / total_budget if total_budget > 0 else 0.0
        projected = min(current * 1.2, budget_share * 100 * 1.5)

        shares = [(p.name, p.market_share) for p in profiles] + [(SUBJECT_LABEL, current)]
        ordered = sorted(shares, key=lambda s: s[1], reverse=True)
        share_rank = [name for name, _ in ordered].index(SUBJECT_LABEL) + 1

        top = [
            {"name": p.name, "share": p.market_share, "trend": self._share_trend(p.name, market)}
            for p in profiles[:5]
        ]
        hhi = herfindahl_index([share for _, share in shares])

        return MarketShareAnalysis(
            current_share=current,
            projected_share=projected,
            share_change=projected - current,
            share_rank=share_rank,
            top_competitors=top,
            market_concentration=hhi,
            competitive_intensity=competitive_intensity(hhi),
        )

    def _share_trend(self, name: str, market: MarketDataset) -> str:
        now = self.clock()
        mine = [o for o in market.competitor_activity if o.competitor == name]
        recent = [o for o in mine if now - o.date < RECENT_WINDOW]
        older = [o for o in mine if RECENT_WINDOW <= now - o.date < TREND_WINDOW]

        if not recent and not older:
            return "stable"

        recent_avg = sum(o.value for o in recent) / max(1, len(recent))
        older_avg = sum(o.value for o in older) / max(1, len(older))
        if recent_avg > older_avg * 1.1:
            return "growing"
        if recent_avg < older_avg * 0.9:
            return "declining"
        return "stable"

    # ------------------------------------------------------------------
    # Activity impact
    # ------------------------------------------------------------------

    def _activity_impacts(self, market: MarketDataset) -> List[CompetitorActivityImpact]:
        grouped: Dict[str, List[CompetitorObservation]] = {}
        for observation in market.competitor_activity:
            grouped.setdefault(observation.competitor, []).append(observation)

        impacts = []
        for competitor, observations in grouped.items():
            impact = self.activity_impact(competitor, observations)
            if impact is not None:
                impacts.append(impact)
        return sorted(impacts, key=lambda i: i.confidence, reverse=True)

    def activity_impact(self, competitor: str, observations: List[CompetitorObservation]) -> Optional[CompetitorActivityImpact]:
        """Linear heuristic: more activity, larger (capped) pressure on each metric."""
        if not observations:
            return None
        total = sum(o.value for o in observations)
        if total == 0:
            return None

        multiplier = min(total / 1000, 0.3)
        metrics = {
            metric: coefficient * multiplier
            for metric, coefficient in self.tables.activity_impact_coefficients.items()
        }
        sources = {o.source for o in observations}
        average = total / len(observations)

        return CompetitorActivityImpact(
            competitor=competitor,
            activity=f"{len(observations)} activities across {len(sources)} channels (avg intensity: {average:.1f})",
            impact_on_metrics=metrics,
            window_start=min(o.date for o in observations),
            window_end=max(o.date for o in observations),
            confidence=min(0.9, len(observations) / 10),
            description=(
                f"Increased competitive activity may impact campaign performance by {multiplier * 100:.1f}%"
            ),
        )

    # ------------------------------------------------------------------
    # Recommendations and data quality
    # ------------------------------------------------------------------

    @staticmethod
    def _recommendations(positioning: CompetitivePositioning, market_share: MarketShareAnalysis) -> List[CompetitiveRecommendation]:
        recommendations = []

        for index, threat in enumerate(positioning.threats):
            if threat.severity not in SEVERE:
                continue
            recommendations.append(CompetitiveRecommendation(
                id=f"defensive-{index}",
                type="defensive",
                priority=90 if threat.severity == "critical" else 75,
                title=f"Defend Against {threat.competitor}",
                description=threat.description,
                expected_impact=threat.impact * 100,
                effort="medium",
                timeline="2-4 weeks",
                metrics=["ctr", "cpc", "reach"],
                actions=list(threat.mitigation),
            ))

        for index, opportunity in enumerate(positioning.opportunities):
            if opportunity.potential <= 60:
                continue
            recommendations.append(CompetitiveRecommendation(
                id=f"offensive-{index}",
                type="offensive",
                priority=opportunity.potential,
                title=f"Exploit {opportunity.type.replace('_', ' ', 1)} Opportunity",
                description=opportunity.description,
                expected_impact=opportunity.potential,
                effort=opportunity.effort,
                timeline=opportunity.timeline,
                metrics=["reach", "impressions", "conversions"],
                actions=list(opportunity.requirements),
            ))

        if positioning.positioning_grade in ("Follower", "Niche"):
            recommendations.append(CompetitiveRecommendation(
                id="positioning-improvement",
                type="positioning",
                priority=80,
                title="Improve Market Position",
                description=(
                    f"Current {positioning.positioning_grade} position presents opportunity for advancement"
                ),
                expected_impact=70,
                effort="high",
                timeline="8-12 weeks",
                metrics=["reach", "engagement", "conversions"],
                actions=[
                    "Increase budget allocation to high-performing channels",
                    "Expand audience targeting",
                    "Improve creative differentiation",
                    "Focus on competitor weaknesses",
                ],
            ))

        if market_share.share_change < 0:
            recommendations.append(CompetitiveRecommendation(
                id="market-share-defense",
                type="defensive",
                priority=85,
                title="Defend Market Share",
                description="Projected market share decline requires immediate action",
                expected_impact=abs(market_share.share_change) * 100,
                effort="high",
                timeline="4-6 weeks",
                metrics=["impressions", "reach", "conversions"],
                actions=[
                    "Increase competitive bidding",
                    "Expand to underutilized channels",
                    "Improve audience targeting precision",
                    "Enhance creative performance",
                ],
            ))

        return sorted(recommendations, key=lambda r: r.priority, reverse=True)

    def _data_quality(self, profiles: List[CompetitorProfile], market: MarketDataset) -> Dict[str, float]:
        complete = sum(1 for p in profiles if p.channels and p.strengths and p.estimated_budget > 0)
        coverage = complete / len(profiles) if profiles else 0.0

        now = self.clock()
        activity = market.competitor_activity
        average_age_days = sum(
            (now - o.date).total_seconds() for o in activity
        ) / max(1, len(activity)) / 86400
        timeliness = max(0.0, 1 - average_age_days / TIMELINESS_HORIZON_DAYS)

        return {
            "coverage": round(coverage, 2),
            "accuracy": DATA_SOURCE_ACCURACY,
            "timeliness": round(timeliness, 2),
        }


def create_competitor_analyzer(
    tables: Optional[ScoringTables] = None,
    ttl_seconds: float = COMPETITOR_CACHE_TTL_SECONDS,
    clock: Clock = utcnow
) -> CompetitorAnalyzer:
    return CompetitorAnalyzer(
        tables=tables,
        cache=TTLCache(ttl_seconds, clock=clock, name="competitors"),
        clock=clock,
    )
