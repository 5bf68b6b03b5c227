"""
Tests for settings loading and validation.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from amlscope.config import ConfigurationError, Settings
from amlscope.entities.network import EntityNetworkAnalyzer
from amlscope.fincrime.aml_patterns import (
    AMLPatternDetector,
    LayeringDetector,
    RoundTripDetector,
    StructuringDetector,
)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, settings):
        assert settings.structuring_threshold == 10000
        assert settings.structuring_buffer == 1000
        assert settings.structuring_window_hours == 48
        assert settings.round_trip_max_chain_length == 5
        assert settings.round_trip_window_days == 7
        assert settings.layering_min_chain_length == 3
        assert settings.layering_window_hours == 72
        assert settings.layering_amount_variance == 0.10
        assert settings.shell_score_threshold == 50
        assert "Panama" in settings.high_risk_jurisdictions
        assert settings.log_level == "INFO"

    def test_environment_override(self, monkeypatch):
        """AMLSCOPE_ prefixed variables override defaults."""
        monkeypatch.setenv("AMLSCOPE_STRUCTURING_THRESHOLD", "5000")
        monkeypatch.setenv("AMLSCOPE_STRUCTURING_BUFFER", "500")
        monkeypatch.setenv("AMLSCOPE_LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.structuring_threshold == 5000
        assert settings.structuring_buffer == 500
        assert settings.log_level == "DEBUG"

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, structuring_window_hours=0)

    def test_rejects_buffer_not_below_threshold(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, structuring_threshold=1000, structuring_buffer=1000)

    def test_rejects_variance_out_of_range(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, layering_amount_variance=1.5)

    def test_rejects_short_chain_length(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, round_trip_max_chain_length=1)

    def test_rejects_max_below_min_layering_length(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, layering_min_chain_length=5, layering_max_chain_length=4)

    def test_rejects_unknown_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="chatty")

    def test_scoring_and_anomaly_defaults(self, settings):
        assert settings.risk_high_score == 70
        assert settings.risk_new_entity_days == 180
        assert settings.anomaly_velocity_multiplier == 3.0
        assert settings.anomaly_fan_min_count == 5
        assert settings.anomaly_fan_window_hours == 72
        assert settings.anomaly_round_amount_minimum == 10000

    def test_rejects_invalid_scoring_settings(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, risk_high_score=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, anomaly_fan_tolerance=2)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, anomaly_min_daily_count=0)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, anomaly_zscore_threshold=-1)


class TestDetectorConfiguration:
    """Detectors built from settings and rejecting bad parameters."""

    def test_detectors_from_settings(self):
        settings = Settings(
            _env_file=None,
            structuring_threshold=5000,
            structuring_buffer=250,
            round_trip_window_days=2,
            layering_window_hours=12,
        )

        structuring = StructuringDetector.from_settings(settings)
        round_trip = RoundTripDetector.from_settings(settings)
        layering = LayeringDetector.from_settings(settings)

        assert structuring.threshold == Decimal("5000")
        assert structuring.buffer == Decimal("250")
        assert round_trip.window == timedelta(days=2)
        assert layering.window == timedelta(hours=12)

    def test_pattern_detector_uses_settings(self):
        settings = Settings(_env_file=None, structuring_threshold=5000, structuring_buffer=500)

        detector = AMLPatternDetector(settings=settings)

        assert detector.detectors[0].threshold == Decimal("5000")

    def test_network_analyzer_uses_settings(self):
        settings = Settings(_env_file=None, min_component_size=5, shell_score_threshold=80)

        analyzer = EntityNetworkAnalyzer(settings)

        assert analyzer.component_finder.min_component_size == 5
        assert analyzer.shell_scorer.threshold == 80

    def test_configuration_error_is_value_error(self):
        """Callers catching ValueError also see configuration errors."""
        with pytest.raises(ValueError):
            StructuringDetector(threshold=100, buffer=200)
        assert issubclass(ConfigurationError, ValueError)
