"""Tests for population statistics and screening."""

import random

import pytest

from lab_throughput.config import AnalyticsConfig
from lab_throughput.core.statistics import (
    MANUAL_EXCLUSION_REASON,
    PopulationStatistics,
    active_counts_at_start,
    detect_outliers,
    iqr_fences,
    mean,
    mode,
    percentile,
    sample_std,
)
from lab_throughput.models import CaseCategory, CaseDetail, Stage, StageTime
from tests.factories import DAY, HOUR, local, make_case

SCENARIO_HOURS = [2, 3, 3, 4, 4, 4, 5, 5, 5, 6, 6, 20]


def _detail(case_id, hours, active=False, priority=False, rush=False, visits=1):
    return CaseDetail(
        case_id=case_id,
        case_number=f"N-{case_id}",
        category=CaseCategory.GENERAL,
        duration_seconds=hours * HOUR,
        visit_count=visits,
        is_active=active,
        priority=priority,
        rush=rush,
    )


@pytest.fixture
def stats():
    return PopulationStatistics(AnalyticsConfig())


class TestDescriptive:
    """Tests for the descriptive statistics functions."""

    def test_sample_std_uses_n_minus_one(self):
        assert sample_std([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.138, abs=1e-3)
        assert sample_std([5.0]) == 0.0

    def test_percentile_interpolates(self):
        assert percentile([1.0, 2.0, 3.0, 4.0], 75) == pytest.approx(3.25)
        assert percentile([], 75) == 0.0

    def test_mean_of_empty_is_zero(self):
        assert mean([]) == 0.0

    def test_mode_buckets_to_nearest_day(self):
        values = [1.2 * DAY, 0.8 * DAY, 2.1 * DAY, 3.0 * DAY]
        assert mode(values) == DAY

    def test_mode_tie_goes_to_first_bucket_reaching_max(self):
        values = [3 * DAY, 1 * DAY, 1 * DAY, 3 * DAY]
        assert mode(values) == DAY

    def test_mode_rounds_half_up(self):
        assert mode([1.5 * DAY]) == 2 * DAY


class TestOutliers:
    """Tests for IQR outlier detection."""

    def test_scenario_fences(self):
        lower, upper = iqr_fences([h * HOUR for h in SCENARIO_HOURS])
        assert upper == pytest.approx(7.5 * HOUR)
        assert lower == pytest.approx(1.5 * HOUR)

    def test_scenario_flags_only_the_long_stay(self):
        values = [h * HOUR for h in SCENARIO_HOURS]
        mask, fences = detect_outliers(values)
        assert [v for v, flagged in zip(values, mask) if flagged] == [20 * HOUR]
        assert fences is not None

    def test_order_independent(self):
        values = [h * HOUR for h in SCENARIO_HOURS]
        shuffled = values[:]
        random.Random(7).shuffle(shuffled)

        mask, fences = detect_outliers(values)
        shuffled_mask, shuffled_fences = detect_outliers(shuffled)

        assert fences == shuffled_fences
        assert sorted(v for v, f in zip(values, mask) if f) == sorted(
            v for v, f in zip(shuffled, shuffled_mask) if f
        )

    def test_small_samples_are_not_screened(self):
        mask, fences = detect_outliers([1.0, 2.0, 100.0])
        assert mask == [False, False, False]
        assert fences is None


class TestScreening:
    """Tests for policy and data-quality exclusion."""

    def test_exclude_all_with_reason(self, stats):
        case = make_case(tags=["stats-exclude:all", "stats-exclude-reason:Remake"])
        excluded = stats.screen_case(case, Stage.DESIGN)
        assert excluded.reason == "Remake"
        assert excluded.policy

    def test_stage_specific_exclusion(self, stats):
        case = make_case(tags=["stats-exclude:production"])
        assert stats.screen_case(case, Stage.DESIGN) is None
        assert stats.screen_case(case, Stage.PRODUCTION).reason == MANUAL_EXCLUSION_REASON

    def test_too_short(self, stats):
        stay = StageTime(stage=Stage.DESIGN, adjusted_working_seconds=5 * 60, adjusted_seconds=5 * 60, visit_count=1)
        excluded = stats.screen_case(make_case(), Stage.DESIGN, stay)
        assert excluded.reason == "Time too short (5m)"
        assert not excluded.policy

    def test_too_long(self, stats):
        stay = StageTime(
            stage=Stage.DESIGN,
            adjusted_working_seconds=100 * HOUR,
            adjusted_seconds=31 * DAY,
            visit_count=1,
        )
        assert stats.quality_exclusion(stay) == "Time too long (31d 0h)"

    def test_too_many_visits(self, stats):
        stay = StageTime(stage=Stage.DESIGN, adjusted_working_seconds=5 * HOUR, adjusted_seconds=DAY, visit_count=4)
        assert stats.quality_exclusion(stay) == "Too many visits (4)"

    def test_active_stays_are_not_checked(self, stats):
        stay = StageTime(stage=Stage.PRODUCTION, adjusted_working_seconds=60, visit_count=1, is_active=True)
        assert stats.quality_exclusion(stay) is None


class TestSummaries:
    """Tests for summarize and segment comparisons."""

    def test_summary_leaves_out_outliers_and_active(self, stats):
        details = [_detail(f"c{i}", h) for i, h in enumerate(SCENARIO_HOURS)]
        details.append(_detail("active", 1, active=True))
        outlier_ids, fences = stats.outlier_ids(details)
        flagged = stats.mark_outliers(details, outlier_ids)

        summary = stats.summarize(flagged, excluded_count=1, fences=fences)
        assert summary.sample_size == 11
        assert summary.outlier_count == 1
        assert summary.active_count == 1
        assert summary.max == 6 * HOUR
        assert summary.p75 == pytest.approx(5 * HOUR)
        assert summary.data_quality_score == pytest.approx(12 / 14 * 100)

    def test_empty_population_has_no_data(self, stats):
        summary = stats.summarize([], excluded_count=2)
        assert summary.no_data
        assert summary.excluded_count == 2

    def test_priority_segment_needs_three_cases(self, stats):
        details = [_detail(f"s{i}", 6) for i in range(4)]
        details += [_detail("p1", 3, priority=True), _detail("p2", 3, priority=True)]
        priority, rush = stats.compare_segments(details)
        assert priority.insufficient_sample
        assert rush.insufficient_sample

    def test_priority_segment_faster_than_standard(self, stats):
        details = [_detail(f"s{i}", 6) for i in range(4)]
        details += [_detail(f"p{i}", 3, priority=True) for i in range(3)]
        priority, _ = stats.compare_segments(details)
        assert not priority.insufficient_sample
        assert priority.percent_faster == pytest.approx(50.0)


class TestConcurrency:
    """Tests for active_counts_at_start."""

    def test_counts_other_cases_in_stage(self):
        intervals = {
            "a": [(local(2025, 9, 8, 8), local(2025, 9, 8, 12))],
            "b": [(local(2025, 9, 8, 10), local(2025, 9, 8, 14))],
            "c": [(local(2025, 9, 8, 9), None)],
        }
        starts = {key: spans[0][0] for key, spans in intervals.items()}
        counts = active_counts_at_start(intervals, starts)
        assert counts == {"a": 0, "b": 2, "c": 1}
