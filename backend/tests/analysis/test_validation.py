# tests/analysis/test_validation.py
"""
Tests for the validation layer

Coverage:
- Request validation (required fields, timeframe, metrics, scenarios)
- Data quality scoring and warnings
- Model output validation
- raise_if_invalid

Run with: pytest tests/analysis/test_validation.py -v
"""

import pytest
from datetime import timedelta

from simpipe.analysis.datasets import CampaignDataset, CampaignRecord, EnrichedDataset, MarketDataset
from simpipe.analysis.validation import (
    DataQualityValidator,
    ModelOutputValidator,
    SimulationRequestValidator,
    calculate_validation_score,
    raise_if_invalid,
)
from simpipe.errors import SimulationValidationError
from simpipe.schemas.simulation import SimulationRequest


@pytest.fixture
def request_validator(clock):
    return SimulationRequestValidator(clock=clock)


@pytest.fixture
def quality_validator(clock):
    return DataQualityValidator(clock=clock)


# ============================================================================
# TEST: Request Validation
# ============================================================================

class TestRequestValidation:
    """Submission-time checks"""

    def test_valid_request_passes(self, request_validator, make_request):
        """A well-formed request has no errors"""
        # Execute
        result = request_validator.validate(make_request())

        # Assert
        assert result.valid is True
        assert result.errors == []
        assert result.score == 1.0

    def test_missing_required_fields(self, request_validator):
        """campaign_id, timeframe and metrics are all required"""
        result = request_validator.validate(SimulationRequest())

        assert result.valid is False
        assert result.error_codes.count("REQUIRED_FIELD_MISSING") == 3
        assert {e.field for e in result.errors} == {"campaign_id", "timeframe", "metrics"}

    def test_end_before_start_rejected(self, request_validator, make_request, clock):
        """End date must follow start date"""
        start = clock() + timedelta(days=10)
        request = make_request(timeframe={
            "start_date": start.isoformat(),
            "end_date": (start - timedelta(days=10)).isoformat(),
        })

        result = request_validator.validate(request)

        assert result.valid is False
        assert "INVALID_DATE_RANGE" in result.error_codes

    def test_short_timeframe_rejected(self, request_validator, make_request, clock):
        """Timeframes under five days are errors"""
        start = clock() + timedelta(days=1)
        request = make_request(timeframe={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=3)).isoformat(),
        })

        result = request_validator.validate(request)

        assert "TIMEFRAME_TOO_SHORT" in result.error_codes

    def test_long_timeframe_warns(self, request_validator, make_request, clock):
        """Timeframes over ninety days are allowed with a warning"""
        start = clock() + timedelta(days=1)
        request = make_request(timeframe={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=120)).isoformat(),
        })

        result = request_validator.validate(request)

        assert result.valid is True
        assert any("90 days" in w.message for w in result.warnings)

    def test_past_start_warns(self, request_validator, make_request, clock):
        """A start date in the past is a warning only"""
        start = clock() - timedelta(days=2)
        request = make_request(timeframe={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=20)).isoformat(),
        })

        result = request_validator.validate(request)

        assert result.valid is True
        assert any("past" in w.message for w in result.warnings)

    def test_invalid_metric_type_and_weight(self, request_validator, make_request):
        """Unknown metric types and out-of-range weights are errors"""
        request = make_request(metrics=[
            {"type": "bogus", "weight": 0.5},
            {"type": "ctr", "weight": 1.5},
        ])

        result = request_validator.validate(request)

        assert result.valid is False
        assert "INVALID_METRIC_TYPE" in result.error_codes
        assert "INVALID_WEIGHT" in result.error_codes

    def test_weights_not_summing_to_one_warn(self, request_validator, make_request):
        """Weights off by more than the tolerance produce a warning"""
        request = make_request(metrics=[
            {"type": "ctr", "weight": 0.5},
            {"type": "cpc", "weight": 0.2},
        ])

        result = request_validator.validate(request)

        assert result.valid is True
        assert any(w.field == "metrics" for w in result.warnings)
        assert result.score == pytest.approx(0.9)

    def test_weights_within_tolerance_do_not_warn(self, request_validator, make_request):
        request = make_request(metrics=[
            {"type": "ctr", "weight": 0.505},
            {"type": "cpc", "weight": 0.5},
        ])

        result = request_validator.validate(request)

        assert result.warnings == []

    def test_empty_metrics_rejected(self, request_validator, make_request):
        result = request_validator.validate(make_request(metrics=[]))

        assert "NO_METRICS" in result.error_codes

    def test_invalid_scenario(self, request_validator, make_request):
        """Scenario type and percentile are checked"""
        request = make_request(scenarios=[{"type": "wild", "percentile": 150}])

        result = request_validator.validate(request)

        assert "INVALID_SCENARIO_TYPE" in result.error_codes
        assert "INVALID_PERCENTILE" in result.error_codes

    def test_validate_field_shapes(self, request_validator):
        assert request_validator.validate_field("campaign_id", "") is not None
        assert request_validator.validate_field("metrics", "ctr").code == "INVALID_METRICS_TYPE"
        assert request_validator.validate_field("timeframe", {"start_date": "x"}) is None

    def test_validation_score_floor(self):
        assert calculate_validation_score(0, 0) == 1.0
        assert calculate_validation_score(1, 2) == pytest.approx(0.5)
        assert calculate_validation_score(5, 0) == 0.0


# ============================================================================
# TEST: Data Quality
# ============================================================================

class TestDataQuality:
    """Dataset scoring before modelling"""

    def test_complete_dataset_scores_high(self, quality_validator, sample_campaign_dataset, sample_market_dataset):
        """A complete, fresh, consistent dataset has no errors"""
        enriched = EnrichedDataset(sample_campaign_dataset, sample_market_dataset)

        # Execute
        result = quality_validator.validate_dataset(enriched)

        # Assert
        assert result.valid is True
        assert result.quality.completeness == 1.0
        assert result.quality.accuracy == 1.0
        assert result.quality.freshness == 1.0
        assert result.quality.consistency == 1.0
        # Market data has no industry benchmarks
        assert [w.field for w in result.warnings] == ["market_data.industry_benchmarks"]

    def test_missing_campaign_fields_are_errors(self, quality_validator):
        """Structural gaps in the campaign record block processing"""
        dataset = CampaignDataset(campaign=CampaignRecord(id="camp-1", name="", budget=0.0))

        result = quality_validator.validate_dataset(EnrichedDataset(dataset))

        assert result.valid is False
        fields = {e.field for e in result.errors}
        assert {"campaign.name", "campaign.budget", "campaign.start_date", "campaign.end_date"} <= fields

    def test_no_history_is_a_warning(self, quality_validator, sample_campaign_dataset):
        """Missing history lowers confidence but never fails"""
        sample_campaign_dataset.historical_performance = []

        result = quality_validator.validate_dataset(EnrichedDataset(sample_campaign_dataset))

        assert result.valid is True
        assert any(w.field == "historical_performance" for w in result.warnings)
        assert result.quality.freshness == 0.5
        assert result.quality.completeness == pytest.approx(0.8)

    def test_gaps_and_stale_data(self, quality_validator, sample_campaign_dataset, clock):
        """Old data scores low freshness; gaps over a week warn"""
        for point in sample_campaign_dataset.historical_performance[:10]:
            point.date = point.date - timedelta(days=40)
        for point in sample_campaign_dataset.historical_performance[10:]:
            point.date = point.date - timedelta(days=100)

        result = quality_validator.validate_dataset(EnrichedDataset(sample_campaign_dataset))

        assert any("Gaps" in w.message for w in result.warnings)
        assert result.quality.freshness == 0.5

    def test_negative_values_and_budget_mismatch(self, quality_validator, sample_campaign_dataset):
        """Negative readings hurt accuracy; allocation off budget hurts consistency"""
        sample_campaign_dataset.historical_performance[0].value = -1.0
        sample_campaign_dataset.budget_allocation.allocated = {"google": 2000.0}

        quality = quality_validator.assess(EnrichedDataset(sample_campaign_dataset))

        assert quality.accuracy == pytest.approx(0.8)
        assert quality.consistency == pytest.approx(0.8)

    def test_empty_market_warns_twice(self, quality_validator, sample_campaign_dataset):
        result = quality_validator.validate_dataset(
            EnrichedDataset(sample_campaign_dataset, MarketDataset())
        )

        market_warnings = [w for w in result.warnings if w.field.startswith("market_data")]
        assert len(market_warnings) == 2


# ============================================================================
# TEST: Model Output
# ============================================================================

class TestModelOutputValidation:

    @staticmethod
    def _output(**overrides):
        output = {
            "trajectories": [{"date": "2025-06-03", "metrics": {"ctr": 2.0}, "confidence": 0.8}],
            "confidence_intervals": [{"metric": "ctr", "lower": 1.5, "upper": 2.5, "confidence_level": 0.8}],
            "model_metadata": {"model_name": "trend-baseline", "confidence_score": 0.8},
        }
        output.update(overrides)
        return output

    def test_valid_output(self):
        result = ModelOutputValidator().validate_prediction_output(self._output())

        assert result.valid is True
        assert result.warnings == []

    def test_missing_trajectories(self):
        result = ModelOutputValidator().validate_prediction_output(self._output(trajectories=[]))

        assert result.valid is False
        assert result.error_codes == ["MISSING_TRAJECTORIES"]

    def test_inverted_interval_and_bad_confidence(self):
        output = self._output(
            confidence_intervals=[{"lower": 3.0, "upper": 1.0, "confidence_level": 1.2}],
            model_metadata={"model_name": "", "confidence_score": 0.5},
        )

        result = ModelOutputValidator().validate_prediction_output(output)

        assert "INVALID_INTERVAL" in result.error_codes
        assert "INVALID_CONFIDENCE_LEVEL" in result.error_codes
        assert "MISSING_MODEL_NAME" in result.error_codes
        assert any(w.message == "Low model confidence" for w in result.warnings)


# ============================================================================
# TEST: raise_if_invalid
# ============================================================================

class TestRaiseIfInvalid:

    def test_raises_with_every_error(self, request_validator):
        result = request_validator.validate(SimulationRequest())

        with pytest.raises(SimulationValidationError) as exc_info:
            raise_if_invalid(result, "Simulation request validation")

        assert exc_info.value.validation is result
        assert "campaign_id" in exc_info.value.message
        assert "metrics" in exc_info.value.message

    def test_valid_result_passes(self, request_validator, make_request):
        raise_if_invalid(request_validator.validate(make_request()))
