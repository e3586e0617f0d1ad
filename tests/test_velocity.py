"""Tests for the velocity engine."""

from datetime import date, timedelta

import pytest

from lab_throughput.config import AnalyticsConfig
from lab_throughput.core.velocity import VelocityEngine, classify_completions, round_half_up
from lab_throughput.models import (
    ActiveCase,
    CaseCategory,
    CompletionRecord,
    Stage,
    VelocityStatus,
)
from tests.factories import HOUR, NOW


def _completion(case_id, hours, active_at_start=0):
    entered = NOW - timedelta(days=10)
    return CompletionRecord(
        case_id=case_id,
        case_number=f"N-{case_id}",
        stage=Stage.DESIGN,
        category=CaseCategory.GENERAL,
        duration_seconds=hours * HOUR,
        entered_at=entered,
        exited_at=entered + timedelta(hours=hours),
        active_count_at_start=active_at_start,
    )


def _active(case_id, days_in_stage=0.0, elapsed_hours=1.0):
    return ActiveCase(
        case_id=case_id,
        case_number=f"N-{case_id}",
        stage=Stage.DESIGN,
        category=CaseCategory.GENERAL,
        stage_entered_at=NOW - timedelta(days=days_in_stage),
        elapsed_working_seconds=elapsed_hours * HOUR,
        due=date(2025, 10, 1),
    )


@pytest.fixture
def engine():
    return VelocityEngine(AnalyticsConfig())


class TestScore:
    """Tests for score."""

    def test_no_completions_is_no_data(self, engine):
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, [], [_active("a")], NOW)
        assert result.no_data
        assert result.current_active == 1
        assert result.benchmark is None

    def test_single_completion_without_load_scores_100(self, engine):
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, [_completion("c1", 4)], [], NOW)
        assert result.score == 100.0
        assert result.is_single_completion
        assert result.adjusted_target_seconds == 4 * HOUR
        assert result.classifications[0].status == VelocityStatus.MET

    def test_single_completion_with_load(self, engine):
        result = engine.score(
            Stage.DESIGN, CaseCategory.GENERAL, [_completion("c1", 4)], [_active("a")], NOW
        )
        # impact = 100 / (1.0 * 1.0) -> 90 + 100 / 10
        assert result.score == 100.0

        aged = engine.score(
            Stage.DESIGN, CaseCategory.GENERAL, [_completion("c1", 4)], [_active("a", days_in_stage=7)], NOW
        )
        # load weight 2.0 -> impact 50 -> 90 + 5
        assert aged.score == 95.0

    def test_score_is_bounded(self, engine):
        completions = [_completion(f"c{i}", h) for i, h in enumerate([1, 2, 8, 30, 40])]
        active = [_active(f"a{i}", days_in_stage=i) for i in range(25)]
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, completions, active, NOW)
        assert 0.0 <= result.score <= 100.0

    def test_raw_target_is_75th_percentile(self, engine):
        hours = [2, 3, 3, 4, 4, 4, 5, 5, 5, 6, 6]
        completions = [_completion(f"c{i}", h) for i, h in enumerate(hours)]
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, completions, [], NOW)
        assert result.benchmark.raw_target_seconds == pytest.approx(5 * HOUR)
        assert result.benchmark.smoothed_target_seconds == pytest.approx(5 * HOUR)

    def test_previous_target_is_smoothed(self, engine):
        completions = [_completion(f"c{i}", h) for i, h in enumerate([4, 5, 6])]
        result = engine.score(
            Stage.DESIGN, CaseCategory.GENERAL, completions, [], NOW, previous_smoothed=10 * HOUR
        )
        raw = result.benchmark.raw_target_seconds
        assert result.benchmark.smoothed_target_seconds == pytest.approx(0.2 * raw + 0.8 * 10 * HOUR)
        assert result.next_smoothed_target == result.benchmark.smoothed_target_seconds

    def test_small_samples_have_a_velocity_floor(self, engine):
        completions = [_completion(f"c{i}", h) for i, h in enumerate([1, 100, 100])]
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, completions, [], NOW)
        assert result.completed_velocity >= 50.0

    def test_idle_stage_uses_idle_scale(self, engine):
        completions = [_completion(f"c{i}", 4, active_at_start=2) for i in range(4)]
        result = engine.score(Stage.DESIGN, CaseCategory.GENERAL, completions, [], NOW)
        assert result.concurrency_scale == pytest.approx(0.9)
        assert result.load_factor == pytest.approx(0.9)


class TestConcurrencyScale:
    """Tests for concurrency_scale."""

    def test_no_history_is_neutral(self, engine):
        assert engine.concurrency_scale(5, 0.0) == 1.0

    def test_matching_history_is_neutral(self, engine):
        assert engine.concurrency_scale(4, 4.0) == pytest.approx(1.0)

    def test_scale_is_clamped(self, engine):
        assert engine.concurrency_scale(100, 1.0) <= 1.5
        assert engine.concurrency_scale(1, 100.0) >= 0.5


class TestClassify:
    """Tests for classify_completions."""

    def test_statuses(self):
        completions = [_completion("fast", 2), _completion("exact", 4), _completion("slow", 6)]
        classified = {c.case_id: c for c in classify_completions(completions, 4 * HOUR)}
        assert classified["fast"].status == VelocityStatus.EXCEEDED
        assert classified["exact"].status == VelocityStatus.MET
        assert classified["slow"].status == VelocityStatus.MISSED
        assert classified["slow"].percent_difference == 50.0
        assert classified["slow"].performance_percent == pytest.approx(150.0)

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3.0
        assert round_half_up(0.125, 2) == pytest.approx(0.13)
