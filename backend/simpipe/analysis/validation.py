# backend/simpipe/analysis/validation.py
"""
Validation layer.

Three validators, all pure functions over their input:

1. SimulationRequestValidator - gate at submission time. Any error rejects
   the request before it is queued.
2. DataQualityValidator - run over the enriched dataset right before
   modelling. Scores completeness, accuracy, freshness and consistency.
   Only structural problems with the campaign record are errors; everything
   else is a DataQualityWarning that discounts result confidence.
3. ModelOutputValidator - sanity checks on what the forecasting model returned.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional

from simpipe.analysis.datasets import EnrichedDataset, MarketDataset, PerformanceObservation
from simpipe.clock import Clock, utcnow
from simpipe.errors import SimulationValidationError
from simpipe.schemas.simulation import SimulationRequest, Timeframe

VALID_METRIC_TYPES = ["ctr", "impressions", "engagement", "reach", "conversions", "cpc", "cpm"]
VALID_SCENARIO_TYPES = ["optimistic", "realistic", "pessimistic", "custom"]


@dataclass
class ValidationIssue:
    """Blocking problem."""
    field: str
    message: str
    code: str
    severity: str = "error"


@dataclass
class ValidationWarning:
    """Non-blocking problem with a suggested fix."""
    field: str
    message: str
    suggestion: str = ""


@dataclass
class DataQualityWarning(ValidationWarning):
    """Dataset issue that lowers confidence but never fails a job."""


@dataclass
class DataQualityScore:
    completeness: float
    accuracy: float
    freshness: float
    consistency: float

    @property
    def overall(self) -> float:
        return (self.completeness + self.accuracy + self.freshness + self.consistency) / 4

    def to_dict(self) -> Dict[str, float]:
        return {
            "completeness": round(self.completeness, 4),
            "accuracy": round(self.accuracy, 4),
            "freshness": round(self.freshness, 4),
            "consistency": round(self.consistency, 4),
            "overall": round(self.overall, 4),
        }


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    score: float = 1.0
    quality: Optional[DataQualityScore] = None

    @property
    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "valid": self.valid,
            "score": round(self.score, 4),
            "errors": [asdict(e) for e in self.errors],
            "warnings": [asdict(w) for w in self.warnings],
        }
        if self.quality is not None:
            data["quality"] = self.quality.to_dict()
        return data


def calculate_validation_score(error_count: int, warning_count: int) -> float:
    return max(0.0, 1 - 0.3 * error_count - 0.1 * warning_count)


# ============================================================================
# SIMULATION REQUEST VALIDATION
# ============================================================================

class SimulationRequestValidator:
    """Validates a simulation request before it is queued."""

    REQUIRED_FIELDS = ["campaign_id", "timeframe", "metrics"]

    MAX_TIMEFRAME_DAYS = 90
    MIN_TIMEFRAME_DAYS = 5
    MAX_METRICS = 10
    WEIGHT_TOLERANCE = 0.01

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def validate(self, request: SimulationRequest) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        for field_name in self.REQUIRED_FIELDS:
            value = getattr(request, field_name)
            if value is None or value == "":
                errors.append(ValidationIssue(
                    field=field_name,
                    message=f"{field_name} is required",
                    code="REQUIRED_FIELD_MISSING",
                ))

        if request.timeframe is not None:
            self._validate_timeframe(request.timeframe, errors, warnings)

        if request.metrics is not None:
            self._validate_metrics(request.metrics, errors, warnings)

        if request.scenarios:
            self._validate_scenarios(request.scenarios, errors)

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            score=calculate_validation_score(len(errors), len(warnings)),
        )

    def validate_field(self, field_name: str, value: Any) -> Optional[ValidationIssue]:
        """Check the shape of a single top-level field."""
        if field_name == "campaign_id":
            if not value or not isinstance(value, str):
                return ValidationIssue("campaign_id", "Campaign ID must be a valid string", "INVALID_CAMPAIGN_ID")
        elif field_name == "timeframe":
            if not isinstance(value, (Timeframe, dict)):
                return ValidationIssue(
                    "timeframe",
                    "Timeframe must be an object with start_date and end_date",
                    "INVALID_TIMEFRAME_OBJECT",
                )
        elif field_name == "metrics":
            if not isinstance(value, list):
                return ValidationIssue("metrics", "Metrics must be a list", "INVALID_METRICS_TYPE")
        return None

    def get_required_fields(self) -> List[str]:
        return list(self.REQUIRED_FIELDS)

    def _validate_timeframe(self, timeframe: Timeframe, errors, warnings):
        if timeframe.start_date is None or timeframe.end_date is None:
            errors.append(ValidationIssue(
                field="timeframe",
                message="Start date and end date are required",
                code="INVALID_TIMEFRAME",
            ))
            return

        start, end = timeframe.start_date, timeframe.end_date
        diff_days = math.ceil((end - start).total_seconds() / 86400)

        if start >= end:
            errors.append(ValidationIssue(
                field="timeframe",
                message="End date must be after start date",
                code="INVALID_DATE_RANGE",
            ))

        if diff_days < self.MIN_TIMEFRAME_DAYS:
            errors.append(ValidationIssue(
                field="timeframe",
                message=f"Timeframe must be at least {self.MIN_TIMEFRAME_DAYS} days",
                code="TIMEFRAME_TOO_SHORT",
            ))

        if diff_days > self.MAX_TIMEFRAME_DAYS:
            warnings.append(ValidationWarning(
                field="timeframe",
                message=f"Timeframe longer than {self.MAX_TIMEFRAME_DAYS} days may reduce accuracy",
                suggestion="Consider shorter timeframes for better predictions",
            ))

        if start < self.clock():
            warnings.append(ValidationWarning(
                field="timeframe",
                message="Start date is in the past",
                suggestion="Use current or future dates for predictions",
            ))

    def _validate_metrics(self, metrics, errors, warnings):
        if len(metrics) == 0:
            errors.append(ValidationIssue(
                field="metrics",
                message="At least one metric is required",
                code="NO_METRICS",
            ))
            return

        if len(metrics) > self.MAX_METRICS:
            warnings.append(ValidationWarning(
                field="metrics",
                message=f"More than {self.MAX_METRICS} metrics may impact performance",
                suggestion="Consider focusing on key metrics",
            ))

        total_weight = sum(m.weight for m in metrics)
        if abs(total_weight - 1.0) > self.WEIGHT_TOLERANCE:
            warnings.append(ValidationWarning(
                field="metrics",
                message="Metric weights should sum to 1.0",
                suggestion="Adjust weights to total 100%",
            ))

        for index, metric in enumerate(metrics):
            if metric.type not in VALID_METRIC_TYPES:
                errors.append(ValidationIssue(
                    field=f"metrics[{index}].type",
                    message=f"Invalid metric type: {metric.type}",
                    code="INVALID_METRIC_TYPE",
                ))
            if metric.weight < 0 or metric.weight > 1:
                errors.append(ValidationIssue(
                    field=f"metrics[{index}].weight",
                    message="Metric weight must be between 0 and 1",
                    code="INVALID_WEIGHT",
                ))

    def _validate_scenarios(self, scenarios, errors):
        for index, scenario in enumerate(scenarios):
            if scenario.type not in VALID_SCENARIO_TYPES:
                errors.append(ValidationIssue(
                    field=f"scenarios[{index}].type",
                    message=f"Invalid scenario type: {scenario.type}",
                    code="INVALID_SCENARIO_TYPE",
                ))
            if scenario.percentile is not None and not 0 <= scenario.percentile <= 100:
                errors.append(ValidationIssue(
                    field=f"scenarios[{index}].percentile",
                    message="Percentile must be between 0 and 100",
                    code="INVALID_PERCENTILE",
                ))


# ============================================================================
# DATA QUALITY VALIDATION
# ============================================================================

class DataQualityValidator:
    """Scores the enriched dataset and flags structural problems."""

    CAMPAIGN_REQUIRED_FIELDS = ["id", "name", "budget", "start_date", "end_date"]
    MIN_HISTORY_POINTS = 7
    MAX_GAP_DAYS = 7
    UNREALISTIC_BUDGET = 10_000_000

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def validate_dataset(self, dataset: EnrichedDataset) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        self._validate_campaign(dataset, errors, warnings)
        self._validate_performance(dataset.historical_performance, warnings)
        if dataset.market_dataset is not None:
            self._validate_market(dataset.market_dataset, warnings)

        quality = self.assess(dataset)
        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            score=quality.overall,
            quality=quality,
        )

    def assess(self, dataset: EnrichedDataset) -> DataQualityScore:
        return DataQualityScore(
            completeness=self._completeness(dataset),
            accuracy=self._accuracy(dataset),
            freshness=self._freshness(dataset.historical_performance),
            consistency=self._consistency(dataset),
        )

    def _validate_campaign(self, dataset: EnrichedDataset, errors, warnings):
        campaign = dataset.campaign
        for field_name in self.CAMPAIGN_REQUIRED_FIELDS:
            if not getattr(campaign, field_name, None):
                errors.append(ValidationIssue(
                    field=f"campaign.{field_name}",
                    message=f"Campaign {field_name} is required",
                    code="MISSING_CAMPAIGN_FIELD",
                ))

        if campaign.budget and campaign.budget <= 0:
            errors.append(ValidationIssue(
                field="campaign.budget",
                message="Campaign budget must be positive",
                code="INVALID_BUDGET",
            ))

        if not campaign.channels:
            warnings.append(DataQualityWarning(
                field="campaign.channels",
                message="No channels configured",
                suggestion="Add at least one channel for better predictions",
            ))

    def _validate_performance(self, performance: List[PerformanceObservation], warnings):
        if not performance:
            warnings.append(DataQualityWarning(
                field="historical_performance",
                message="No historical performance data available",
                suggestion="Historical data improves prediction accuracy",
            ))
            return

        if len(performance) < self.MIN_HISTORY_POINTS:
            warnings.append(DataQualityWarning(
                field="historical_performance",
                message=f"Limited historical data (less than {self.MIN_HISTORY_POINTS} data points)",
                suggestion="More historical data improves accuracy",
            ))

        dates = sorted(p.date for p in performance)
        for previous, current in zip(dates, dates[1:]):
            if (current - previous).total_seconds() / 86400 > self.MAX_GAP_DAYS:
                warnings.append(DataQualityWarning(
                    field="historical_performance",
                    message="Gaps detected in historical data",
                    suggestion="Fill data gaps for better trend analysis",
                ))
                break

    def _validate_market(self, market: MarketDataset, warnings):
        if not market.industry_benchmarks:
            warnings.append(DataQualityWarning(
                field="market_data.industry_benchmarks",
                message="No industry benchmarks available",
                suggestion="Benchmarks help contextualize predictions",
            ))
        if not market.competitor_activity:
            warnings.append(DataQualityWarning(
                field="market_data.competitor_activity",
                message="No competitor data available",
                suggestion="Competitor insights improve risk detection",
            ))

    def _completeness(self, dataset: EnrichedDataset) -> float:
        campaign = dataset.campaign
        present = [
            bool(campaign.id),
            bool(campaign.name),
            campaign.budget is not None,
            bool(dataset.historical_performance),
            dataset.campaign_dataset.audience_insights is not None,
        ]
        return sum(present) / len(present)

    def _accuracy(self, dataset: EnrichedDataset) -> float:
        score = 1.0
        if any(p.value < 0 for p in dataset.historical_performance):
            score -= 0.2
        if dataset.campaign.budget and dataset.campaign.budget > self.UNREALISTIC_BUDGET:
            score -= 0.1
        return max(0.0, score)

    def _freshness(self, performance: List[PerformanceObservation]) -> float:
        if not performance:
            return 0.5  # neutral when there is nothing to date

        latest = max(p.date for p in performance)
        days_since = (self.clock() - latest).total_seconds() / 86400

        if days_since <= 1:
            return 1.0
        if days_since <= 7:
            return 0.9
        if days_since <= 30:
            return 0.7
        if days_since <= 90:
            return 0.5
        return 0.3

    def _consistency(self, dataset: EnrichedDataset) -> float:
        score = 1.0
        allocation = dataset.campaign_dataset.budget_allocation
        budget = dataset.campaign.budget or 0.0
        if allocation is not None:
            total_allocated = sum(allocation.allocated.values())
            if abs(total_allocated - budget) > budget * 0.1:
                score -= 0.2
        return max(0.0, score)


# ============================================================================
# MODEL OUTPUT VALIDATION
# ============================================================================

class ModelOutputValidator:
    """Checks forecasting-model output before it is committed."""

    LOW_POINT_CONFIDENCE = 0.5
    LOW_MODEL_CONFIDENCE = 0.7

    def validate_prediction_output(self, output: Mapping[str, Any]) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        trajectories = output.get("trajectories") or []
        if not trajectories:
            errors.append(ValidationIssue(
                field="trajectories",
                message="Prediction output must contain trajectories",
                code="MISSING_TRAJECTORIES",
            ))
        for index, point in enumerate(trajectories):
            self._validate_point(index, point, errors, warnings)

        for index, interval in enumerate(output.get("confidence_intervals") or []):
            if interval.get("lower", 0) > interval.get("upper", 0):
                errors.append(ValidationIssue(
                    field=f"confidence_intervals[{index}]",
                    message="Lower bound must be less than upper bound",
                    code="INVALID_INTERVAL",
                ))
            level = interval.get("confidence_level", 0)
            if level < 0 or level > 1:
                errors.append(ValidationIssue(
                    field=f"confidence_intervals[{index}].confidence_level",
                    message="Confidence level must be between 0 and 1",
                    code="INVALID_CONFIDENCE_LEVEL",
                ))

        metadata = output.get("model_metadata")
        if metadata:
            self._validate_metadata(metadata, errors, warnings)

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            score=self._output_score(metadata, errors, warnings),
        )

    def _validate_point(self, index: int, point: Mapping[str, Any], errors, warnings):
        if not point.get("date"):
            errors.append(ValidationIssue(
                field=f"trajectories[{index}].date",
                message="Trajectory point must have a date",
                code="MISSING_DATE",
            ))
        if not point.get("metrics"):
            errors.append(ValidationIssue(
                field=f"trajectories[{index}].metrics",
                message="Trajectory point must have metrics",
                code="MISSING_METRICS",
            ))
        confidence = point.get("confidence", 0)
        if confidence < 0 or confidence > 1:
            errors.append(ValidationIssue(
                field=f"trajectories[{index}].confidence",
                message="Confidence must be between 0 and 1",
                code="INVALID_CONFIDENCE",
            ))
        if confidence < self.LOW_POINT_CONFIDENCE:
            warnings.append(ValidationWarning(
                field=f"trajectories[{index}].confidence",
                message="Low confidence prediction",
                suggestion="Consider gathering more data",
            ))

    def _validate_metadata(self, metadata: Mapping[str, Any], errors, warnings):
        if not metadata.get("model_name"):
            errors.append(ValidationIssue(
                field="model_metadata.model_name",
                message="Model name is required",
                code="MISSING_MODEL_NAME",
            ))
        confidence = metadata.get("confidence_score", 0)
        if confidence < 0 or confidence > 1:
            errors.append(ValidationIssue(
                field="model_metadata.confidence_score",
                message="Confidence score must be between 0 and 1",
                code="INVALID_CONFIDENCE_SCORE",
            ))
        if confidence < self.LOW_MODEL_CONFIDENCE:
            warnings.append(ValidationWarning(
                field="model_metadata.confidence_score",
                message="Low model confidence",
                suggestion="Consider using additional data sources",
            ))

    @staticmethod
    def _output_score(metadata, errors, warnings) -> float:
        score = 1.0 - 0.3 * len(errors) - 0.1 * len(warnings)
        if metadata and metadata.get("confidence_score"):
            score += (metadata["confidence_score"] - 0.5) * 0.2
        return max(0.0, min(1.0, score))


# ============================================================================
# MODULE-LEVEL HELPERS
# ============================================================================

simulation_request_validator = SimulationRequestValidator()
data_quality_validator = DataQualityValidator()
model_output_validator = ModelOutputValidator()


def validate_simulation_request(request: SimulationRequest) -> ValidationResult:
    return simulation_request_validator.validate(request)


def validate_data_quality(dataset: EnrichedDataset) -> ValidationResult:
    return data_quality_validator.validate_dataset(dataset)


def validate_model_output(output: Mapping[str, Any]) -> ValidationResult:
    return model_output_validator.validate_prediction_output(output)


def raise_if_invalid(result: ValidationResult, context: str = "Validation") -> None:
    """Raise SimulationValidationError listing every error in `result`."""
    if result.valid:
        return
    messages = ", ".join(f"{e.field}: {e.message}" for e in result.errors)
    raise SimulationValidationError(f"{context} failed: {messages}", validation=result)
