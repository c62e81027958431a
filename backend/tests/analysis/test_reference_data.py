# tests/analysis/test_reference_data.py
"""
Tests for the scoring table loader

Run with: pytest tests/analysis/test_reference_data.py -v
"""

import json

import pytest

from simpipe.analysis.reference_data import DEFAULT_TABLES_PATH, load_scoring_tables


class TestScoringTables:

    def test_bundled_tables_load(self):
        tables = load_scoring_tables()

        assert tables.benchmark_sample_size > 0
        assert "google" in tables.ad_channels
        assert tables.industry_multiplier("technology")["ctr"] == pytest.approx(1.2)

    def test_unknown_keys_fall_back_to_default(self):
        tables = load_scoring_tables()

        assert tables.industry_multiplier("aerospace") == tables.industry_multipliers["default"]
        assert tables.channel_base("tiktok") == tables.channel_bases["default"]
        assert tables.industry_budget("aerospace") == tables.industry_budgets["default"]

    def test_missing_section_rejected(self, tmp_path):
        """Recalibrated tables must keep every section"""
        data = json.loads(DEFAULT_TABLES_PATH.read_text(encoding="utf-8"))
        del data["activity_impact_coefficients"]
        path = tmp_path / "tables.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(ValueError, match="activity_impact_coefficients"):
            load_scoring_tables(str(path))

    def test_missing_default_rejected(self, tmp_path):
        data = json.loads(DEFAULT_TABLES_PATH.read_text(encoding="utf-8"))
        del data["channel_bases"]["default"]
        path = tmp_path / "tables.json"
        path.write_text(json.dumps(data), encoding="utf-8")

        with pytest.raises(ValueError, match="channel_bases"):
            load_scoring_tables(str(path))
