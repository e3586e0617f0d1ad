"""Population statistics over per-case stage durations.

Pure functions (``mean``, ``percentile``, ``detect_outliers``...) operate on
plain sequences of seconds. ``PopulationStatistics`` applies them to a screened
population: policy exclusions first, then data-quality checks, then the IQR
outlier pass over closed stays. Outliers stay visible in per-case detail but
are left out of every aggregate.
"""

import logging
import math
from bisect import bisect_right
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from lab_throughput.config import DAY_SECONDS, AnalyticsConfig
from lab_throughput.models.analytics import CaseDetail, ExcludedCase, PopulationSummary, SegmentComparison
from lab_throughput.models.case import Case, Stage
from lab_throughput.models.timeline import StageTime
from lab_throughput.utils.formatting import format_duration

logger = logging.getLogger(__name__)

MANUAL_EXCLUSION_REASON = "Manually excluded"


# ============================================================
# Descriptive statistics
# ============================================================

def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def sample_std(values: Sequence[float]) -> float:
    """Sample standard deviation (n-1 denominator, 0 for fewer than 2 values)"""
    if len(values) < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def percentile(values: Sequence[float], p: float) -> float:
    """Percentile with linear interpolation between order statistics (0 if empty)"""
    if len(values) == 0:
        return 0.0
    return float(np.percentile(values, p))


def median(values: Sequence[float]) -> float:
    return percentile(values, 50)


def mode(values: Sequence[float], bucket: float = DAY_SECONDS) -> float:
    """Most frequent value after rounding to the nearest ``bucket``.

    Ties go to the bucket that reached the highest frequency first.
    """
    if len(values) == 0:
        return 0.0

    frequency: Dict[float, int] = defaultdict(int)
    best, best_count = 0.0, 0
    for value in values:
        rounded = math.floor(value / bucket + 0.5) * bucket
        frequency[rounded] += 1
        if frequency[rounded] > best_count:
            best, best_count = rounded, frequency[rounded]
    return best


def iqr_fences(values: Sequence[float], multiplier: float = 1.5) -> Tuple[float, float]:
    """Lower and upper Tukey fences from Q1/Q3 of the whole (unfiltered) set"""
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    return float(q1 - multiplier * iqr), float(q3 + multiplier * iqr)


def detect_outliers(
    values: Sequence[float],
    multiplier: float = 1.5,
    min_sample: int = 4,
) -> Tuple[List[bool], Optional[Tuple[float, float]]]:
    """Flag values outside the IQR fences.

    Order-independent: the fences depend only on the multiset of values.

    Returns:
        (mask aligned with ``values``, fences) - fences are None and nothing
        is flagged when fewer than ``min_sample`` values are given
    """
    if len(values) < min_sample:
        return [False] * len(values), None

    lower, upper = iqr_fences(values, multiplier)
    return [v < lower or v > upper for v in values], (lower, upper)


# ============================================================
# Concurrency
# ============================================================

def active_counts_at_start(
    intervals: Dict[str, List[Tuple[datetime, Optional[datetime]]]],
    starts: Dict[str, datetime],
) -> Dict[str, int]:
    """Number of *other* cases in the stage at each case's start instant.

    Args:
        intervals: Stage intervals ``(entered, exited or None)`` per case id
        starts: Instant to evaluate per case id

    A case counts at instant ``t`` when one of its intervals satisfies
    ``entered <= t < exited`` (open intervals never end).
    """
    enters = sorted(
        entered.timestamp() for spans in intervals.values() for entered, _ in spans
    )
    exits = sorted(
        exited.timestamp() if exited is not None else float("inf")
        for spans in intervals.values()
        for _, exited in spans
    )

    counts = {}
    for case_id, start in starts.items():
        t = start.timestamp()
        inside = bisect_right(enters, t) - bisect_right(exits, t)
        own = sum(
            1
            for entered, exited in intervals.get(case_id, [])
            if entered.timestamp() <= t and (exited is None or t < exited.timestamp())
        )
        counts[case_id] = max(0, inside - own)
    return counts


# ============================================================
# Screening and summaries
# ============================================================

class PopulationStatistics:
    """Screens cases of one stage and summarizes their durations.

    Usage:
        stats = PopulationStatistics(config)
        reason = stats.policy_exclusion(case, Stage.DESIGN)
        outlier_ids, fences = stats.outlier_ids(details)
        details = stats.mark_outliers(details, outlier_ids)
        summary = stats.summarize(details, excluded_count=len(excluded))
    """

    def __init__(self, config: Optional[AnalyticsConfig] = None):
        self.config = config or AnalyticsConfig()

    def policy_exclusion(self, case: Case, stage: Stage) -> Optional[str]:
        """Reason the case is excluded by tag, or None if it is not"""
        if not case.is_excluded(stage):
            return None
        return case.exclusion_reason or MANUAL_EXCLUSION_REASON

    def quality_exclusion(self, stage_time: StageTime) -> Optional[str]:
        """Reason a stage stay is rejected as broken data, or None if plausible.

        Only closed stays are checked; an active stay is still accumulating time.
        """
        if stage_time.is_active:
            return None

        minimum = self.config.min_stage_seconds.get(stage_time.stage, 0.0)
        if stage_time.adjusted_working_seconds < minimum:
            return f"Time too short ({format_duration(stage_time.adjusted_working_seconds)})"
        if stage_time.adjusted_seconds > self.config.max_stage_seconds:
            return f"Time too long ({format_duration(stage_time.adjusted_seconds)})"
        if stage_time.visit_count > self.config.max_visits:
            return f"Too many visits ({stage_time.visit_count})"
        return None

    def screen_case(
        self, case: Case, stage: Stage, stage_time: Optional[StageTime] = None
    ) -> Optional[ExcludedCase]:
        """Exclusion record for a case, or None if it joins the population.

        Policy exclusion runs first and needs no stage time; the data-quality
        checks run only when ``stage_time`` is given.
        """
        reason = self.policy_exclusion(case, stage)
        policy = reason is not None
        if reason is None and stage_time is not None:
            reason = self.quality_exclusion(stage_time)
        if reason is None:
            return None

        logger.debug(f"Excluding case {case.case_number} from {stage.value}: {reason}")
        return ExcludedCase(
            case_id=case.id,
            case_number=case.case_number,
            reason=reason,
            policy=policy,
            category=case.category,
            duration_seconds=stage_time.adjusted_working_seconds if stage_time else None,
            visit_count=stage_time.visit_count if stage_time else None,
            priority=case.priority,
            rush=case.is_rush,
        )

    def outlier_ids(
        self, details: Sequence[CaseDetail]
    ) -> Tuple[Set[str], Optional[Tuple[float, float]]]:
        """Ids of closed stays outside the IQR fences, plus the fences"""
        closed = [d for d in details if not d.is_active]
        mask, fences = detect_outliers(
            [d.duration_seconds for d in closed],
            multiplier=self.config.outlier_fence_multiplier,
            min_sample=self.config.min_outlier_sample,
        )
        outlier_ids = {d.case_id for d, flagged in zip(closed, mask) if flagged}
        if outlier_ids:
            logger.debug(f"Outliers outside fences {fences}: {sorted(outlier_ids)}")
        return outlier_ids, fences

    @staticmethod
    def mark_outliers(details: Sequence[CaseDetail], outlier_ids: Set[str]) -> List[CaseDetail]:
        """Copies of ``details`` with ``is_outlier`` set from ``outlier_ids``"""
        return [d.model_copy(update={"is_outlier": d.case_id in outlier_ids}) for d in details]

    def summarize(
        self,
        details: Sequence[CaseDetail],
        excluded_count: int = 0,
        fences: Optional[Tuple[float, float]] = None,
    ) -> PopulationSummary:
        """Descriptive statistics over closed, non-outlier stays.

        Args:
            details: Screened case details (outliers flagged, active included)
            excluded_count: Cases removed by policy or data-quality screening
            fences: Outlier fences used, reported back for drill-down
        """
        outliers = [d for d in details if d.is_outlier]
        valid = [d for d in details if not d.is_outlier]
        durations = [d.duration_seconds for d in valid if not d.is_active]

        if not durations:
            return PopulationSummary.empty(excluded_count=excluded_count, outlier_count=len(outliers))

        screened = len(details) + excluded_count
        p10, p25, p50, p75, p90 = np.percentile(durations, [10, 25, 50, 75, 90])

        return PopulationSummary(
            sample_size=len(durations),
            mean=mean(durations),
            median=float(p50),
            mode=mode(durations),
            std_dev=sample_std(durations),
            min=float(np.min(durations)),
            max=float(np.max(durations)),
            p10=float(p10),
            p25=float(p25),
            p50=float(p50),
            p75=float(p75),
            p90=float(p90),
            lower_fence=fences[0] if fences else None,
            upper_fence=fences[1] if fences else None,
            outlier_count=len(outliers),
            excluded_count=excluded_count,
            multi_visit_count=sum(1 for d in details if d.visit_count > 1),
            active_count=sum(1 for d in valid if d.is_active),
            completed_count=len(durations),
            data_quality_score=len(valid) / screened * 100.0 if screened else 0.0,
        )

    def compare_segments(
        self, details: Iterable[CaseDetail]
    ) -> Tuple[SegmentComparison, SegmentComparison]:
        """Priority and rush-only mean durations against standard cases.

        Segments smaller than ``min_segment_sample`` come back flagged
        ``insufficient_sample``.
        """
        closed = [d for d in details if not d.is_active and not d.is_outlier]
        standard = [d.duration_seconds for d in closed if not d.priority and not d.rush]
        standard_mean = mean(standard) if standard else mean([d.duration_seconds for d in closed])

        priority = [d.duration_seconds for d in closed if d.priority]
        rush_only = [d.duration_seconds for d in closed if d.rush and not d.priority]

        return (
            self._segment("priority", priority, standard_mean, len(standard)),
            self._segment("rush", rush_only, standard_mean, len(standard)),
        )

    def _segment(
        self, name: str, durations: List[float], standard_mean: float, standard_count: int
    ) -> SegmentComparison:
        if len(durations) < self.config.min_segment_sample:
            return SegmentComparison(
                segment=name,
                insufficient_sample=True,
                count=len(durations),
                standard_mean=standard_mean,
                standard_count=standard_count,
            )

        segment_mean = mean(durations)
        return SegmentComparison(
            segment=name,
            count=len(durations),
            mean=segment_mean,
            median=median(durations),
            standard_mean=standard_mean,
            standard_count=standard_count,
            percent_faster=(
                (standard_mean - segment_mean) / standard_mean * 100.0 if standard_mean > 0 else 0.0
            ),
        )
