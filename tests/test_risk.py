"""Tests for deadline risk prediction."""

from datetime import date, timedelta

import pytest

from lab_throughput.config import AnalyticsConfig
from lab_throughput.core.risk import RiskPredictor, category_loads, recommendation_for
from lab_throughput.models import (
    ActiveCase,
    Benchmark,
    CaseCategory,
    Confidence,
    PopulationSummary,
    RiskLevel,
    Stage,
    VelocityResult,
)
from tests.factories import DAY, HOUR, NOW


def _active(case_id, elapsed_hours, due, priority=False, rush=False, category=CaseCategory.GENERAL):
    return ActiveCase(
        case_id=case_id,
        case_number=f"N-{case_id}",
        stage=Stage.DESIGN,
        category=category,
        stage_entered_at=NOW - timedelta(hours=elapsed_hours),
        elapsed_working_seconds=elapsed_hours * HOUR,
        due=due,
        priority=priority,
        rush=rush,
    )


def _velocity(score, target_hours, avg_active=0.0):
    return VelocityResult(
        stage=Stage.DESIGN,
        category=CaseCategory.GENERAL,
        score=score,
        sample_size=12,
        adjusted_target_seconds=target_hours * HOUR,
        benchmark=Benchmark(
            stage=Stage.DESIGN,
            category=CaseCategory.GENERAL,
            raw_target_seconds=target_hours * HOUR,
            smoothed_target_seconds=target_hours * HOUR,
            sample_size=12,
            avg_historical_active=avg_active,
        ),
    )


@pytest.fixture
def predictor():
    return RiskPredictor(AnalyticsConfig())


class TestPredict:
    """Tests for predict."""

    def test_exhausted_benchmark_due_today_is_critical(self, predictor):
        case = _active("c1", elapsed_hours=10, due=date(2025, 9, 17))
        prediction = predictor.predict(case, 5 * HOUR, None, 1, NOW)
        assert prediction.projected_late
        assert prediction.risk_level == RiskLevel.CRITICAL
        assert prediction.remaining_seconds == 0.0
        assert prediction.progress_percent == 100.0

    def test_ample_slack_is_low(self, predictor):
        case = _active("c1", elapsed_hours=1, due=date(2025, 10, 1))
        prediction = predictor.predict(case, 5 * HOUR, None, 1, NOW)
        assert not prediction.projected_late
        assert prediction.risk_level == RiskLevel.LOW
        assert prediction.remaining_seconds == 4 * HOUR
        assert prediction.expected_completion == NOW + timedelta(hours=4)
        assert prediction.days_late == 0.0

    def test_overrun_with_ample_slack_is_medium(self, predictor):
        """Past the benchmark but two weeks from due: flagged, not escalated."""
        case = _active("c1", elapsed_hours=10, due=date(2025, 10, 1))
        prediction = predictor.predict(case, 5 * HOUR, None, 1, NOW)
        assert prediction.projected_late
        assert prediction.slack_days > 10
        assert prediction.days_late == 0.0
        assert prediction.risk_level == RiskLevel.MEDIUM

    def test_projected_past_deadline(self, predictor):
        """Three days of work left, due tomorrow."""
        case = _active("c1", elapsed_hours=0, due=date(2025, 9, 18))
        prediction = predictor.predict(case, 3 * DAY, None, 1, NOW)
        assert prediction.projected_late
        assert prediction.risk_level == RiskLevel.HIGH
        assert prediction.days_late == pytest.approx(-prediction.slack_days)


class TestClassify:
    """Tests for risk classification."""

    @pytest.mark.parametrize("late,days,slack,expedited,expected", [
        (True, 0.5, -1.0, False, RiskLevel.CRITICAL),
        (True, 1.5, -1.0, False, RiskLevel.HIGH),
        (True, 5.0, -1.0, False, RiskLevel.MEDIUM),
        (False, 5.0, 0.2, False, RiskLevel.MEDIUM),
        (False, 5.0, 3.0, False, RiskLevel.LOW),
        (True, 1.5, -1.0, True, RiskLevel.CRITICAL),
        (True, 5.0, -1.0, True, RiskLevel.HIGH),
        (False, 5.0, 3.0, True, RiskLevel.LOW),
    ])
    def test_levels(self, predictor, late, days, slack, expedited, expected):
        assert predictor.classify(late, days, slack, expedited) == expected


class TestConfidence:
    """Tests for confidence."""

    def test_high_velocity_is_high_confidence(self, predictor):
        level, score, _ = predictor.confidence(_velocity(85, 5, avg_active=2.0), current_load=2)
        assert level == Confidence.HIGH
        assert score == 85

    def test_contention_downgrades(self, predictor):
        level, score, historical = predictor.confidence(_velocity(85, 5, avg_active=2.0), current_load=4)
        assert level == Confidence.LOW
        assert score == pytest.approx(68.0)
        assert historical == 2.0

    def test_no_history_does_not_downgrade(self, predictor):
        level, _, historical = predictor.confidence(_velocity(85, 5, avg_active=0.0), current_load=6)
        assert level == Confidence.HIGH
        assert historical == 6.0

    def test_without_velocity_is_medium(self, predictor):
        level, score, _ = predictor.confidence(None, current_load=1)
        assert level == Confidence.MEDIUM
        assert score == 50.0


class TestPredictPopulation:
    """Tests for per-case prediction, summaries and benchmark fallback."""

    def test_benchmark_fallback_chain(self, predictor):
        summary = PopulationSummary(sample_size=3, median=6 * HOUR)
        overall = PopulationSummary(sample_size=9, median=7 * HOUR)
        assert predictor.benchmark_for(_velocity(80, 5), summary, overall) == 5 * HOUR
        assert predictor.benchmark_for(None, summary, overall) == 6 * HOUR
        assert predictor.benchmark_for(None, None, overall) == 7 * HOUR
        assert predictor.benchmark_for(None, None, None) == DAY

    def test_sorted_most_urgent_first(self, predictor):
        active = [
            _active("calm", elapsed_hours=1, due=date(2025, 10, 1)),
            _active("burning", elapsed_hours=10, due=date(2025, 9, 17)),
            _active("tight", elapsed_hours=4, due=date(2025, 9, 30)),
        ]
        velocity = {CaseCategory.GENERAL: _velocity(80, 5)}
        load = category_loads(active)
        predictions = [predictor.predict_case(case, velocity, {}, None, load, NOW) for case in active]
        predictions, summary = predictor.summarize(Stage.DESIGN, predictions)
        assert [p.case_id for p in predictions][0] == "burning"
        assert summary.total == 3
        assert summary.critical == 1
        assert summary.by_level[RiskLevel.CRITICAL] == ["N-burning"]
        assert summary.on_track == 2


class TestRecommendation:
    def test_texts(self):
        assert recommendation_for(RiskLevel.CRITICAL, 30, False).startswith("Immediate escalation")
        assert recommendation_for(RiskLevel.HIGH, 30, True).startswith("Priority case at risk")
        assert recommendation_for(RiskLevel.LOW, 30, False) == "On schedule - continue normal processing"
