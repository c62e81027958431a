"""
Simulation analysis components: validation, benchmark scoring and
competitive positioning. All scoring is synchronous and side-effect free.
"""
from .validation import (
    SimulationRequestValidator,
    DataQualityValidator,
    ModelOutputValidator,
    ValidationResult,
    validate_simulation_request,
    validate_data_quality,
    validate_model_output,
    raise_if_invalid,
)
from .benchmark_scorer import BenchmarkScorer, BenchmarkAnalysis, interpolate_percentile, create_benchmark_scorer
from .competitor_analyzer import CompetitorAnalyzer, CompetitiveAnalysis, create_competitor_analyzer
from .reference_data import ScoringTables, load_scoring_tables, get_scoring_tables

__all__ = [
    "SimulationRequestValidator",
    "DataQualityValidator",
    "ModelOutputValidator",
    "ValidationResult",
    "validate_simulation_request",
    "validate_data_quality",
    "validate_model_output",
    "raise_if_invalid",
    "BenchmarkScorer",
    "BenchmarkAnalysis",
    "interpolate_percentile",
    "create_benchmark_scorer",
    "CompetitorAnalyzer",
    "CompetitiveAnalysis",
    "create_competitor_analyzer",
    "ScoringTables",
    "load_scoring_tables",
    "get_scoring_tables",
]
