"""Tests for analytics configuration."""

import os

import pytest

from lab_throughput.config import AnalyticsConfig, get_config, reset_config
from lab_throughput.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _fresh_config():
    """Drop the cached singleton around every test."""
    reset_config()
    yield
    reset_config()


class TestOverrides:
    """Tests for with_overrides."""

    def test_override_returns_copy(self):
        base = AnalyticsConfig()
        tuned = base.with_overrides(target_percentile=80, smoothing_alpha=0.5)
        assert tuned.target_percentile == 80
        assert tuned.smoothing_alpha == 0.5
        assert base.target_percentile == 75

    def test_unknown_field(self):
        with pytest.raises(ConfigurationError, match="Unknown"):
            AnalyticsConfig().with_overrides(percentile=80)

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig().with_overrides(smoothing_alpha=2.0)

    def test_invalid_workday(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig().with_overrides(workday_start_hour=18)


class TestLoadFactor:
    @pytest.mark.parametrize("active,factor", [
        (0, 0.9), (1, 1.0), (5, 1.0), (6, 1.05), (15, 1.15), (20, 1.3), (30, 1.5), (31, 2.0), (500, 2.0),
    ])
    def test_table(self, active, factor):
        assert AnalyticsConfig().load_factor(active) == factor


class TestEnvironment:
    """Tests for from_env and the singleton accessors."""

    def test_env_overrides_scalars(self, monkeypatch):
        monkeypatch.setenv("THROUGHPUT_TARGET_PERCENTILE", "80")
        monkeypatch.setenv("THROUGHPUT_WORKING_TIMEZONE", "America/Chicago")
        config = AnalyticsConfig.from_env()
        assert config.target_percentile == 80.0
        assert config.working_timezone == "America/Chicago"

    def test_invalid_env_value_keeps_default(self, monkeypatch, caplog):
        monkeypatch.setenv("THROUGHPUT_SMOOTHING_ALPHA", "not-a-number")
        config = AnalyticsConfig.from_env()
        assert config.smoothing_alpha == 0.2
        assert "THROUGHPUT_SMOOTHING_ALPHA" in caplog.text

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("THROUGHPUT_MAX_VISITS=5\n")
        try:
            config = AnalyticsConfig.from_env(str(env_file))
        finally:
            os.environ.pop("THROUGHPUT_MAX_VISITS", None)
        assert config.max_visits == 5

    def test_singleton(self, monkeypatch):
        monkeypatch.setenv("THROUGHPUT_MIN_SCORING_SAMPLE", "12")
        first = get_config()
        assert first is get_config()
        assert first.min_scoring_sample == 12

        reset_config()
        monkeypatch.delenv("THROUGHPUT_MIN_SCORING_SAMPLE")
        assert get_config().min_scoring_sample == 10
