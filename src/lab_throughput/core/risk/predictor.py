"""Risk predictor - will an in-flight case miss its deadline?

For every active case the remaining time is the category benchmark minus the
working time already spent in the stage. The projected completion is compared
to the deadline (end of the due day) and mapped to a risk level.

Risk Levels:
- critical: projected late with less than 1 day until due
- high: projected late with less than 2 days until due
- medium: projected late further out, or less than half a day of slack
- low: everything else

Expedited cases escalate medium -> high and high -> critical; low stays low.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from lab_throughput.config import DAY_SECONDS, AnalyticsConfig
from lab_throughput.core.timeline.working_time import WorkingTimeClock
from lab_throughput.models.analytics import (
    Confidence,
    PopulationSummary,
    RiskLevel,
    RiskPrediction,
    RiskSummary,
    VelocityResult,
)
from lab_throughput.models.case import CaseCategory, Stage
from lab_throughput.models.timeline import ActiveCase

logger = logging.getLogger(__name__)


def recommendation_for(risk_level: RiskLevel, progress_percent: float, expedited: bool) -> str:
    """Action text for a prediction"""
    if risk_level is RiskLevel.CRITICAL:
        if progress_percent < 50:
            return "Immediate escalation required - case significantly behind schedule"
        return "Urgent attention needed - due within 24 hours"

    if risk_level is RiskLevel.HIGH:
        if expedited:
            return "Priority case at risk - consider resource reallocation"
        return "Monitor closely - may require intervention"

    if risk_level is RiskLevel.MEDIUM:
        if progress_percent > 75:
            return "Nearly complete but timing is tight"
        return "On track but limited buffer - avoid delays"

    return "On schedule - continue normal processing"


def category_loads(active: Sequence[ActiveCase]) -> Dict[CaseCategory, int]:
    """Active cases per category"""
    load: Dict[CaseCategory, int] = {}
    for case in active:
        load[case.category] = load.get(case.category, 0) + 1
    return load


class RiskPredictor:
    """Classifies the deadline risk of active cases.

    Usage:
        predictor = RiskPredictor(config)
        load = category_loads(active)
        predictions = [
            predictor.predict_case(case, velocity_by_category, summaries, overall, load, now)
            for case in active
        ]
        predictions, summary = predictor.summarize(Stage.DESIGN, predictions)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[WorkingTimeClock] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.clock = clock or WorkingTimeClock.from_config(self.config)

    def benchmark_for(
        self,
        velocity: Optional[VelocityResult],
        summary: Optional[PopulationSummary],
        overall: Optional[PopulationSummary] = None,
    ) -> float:
        """Adjusted target of the category, else its median, else the overall median"""
        if velocity is not None and velocity.adjusted_target_seconds:
            return velocity.adjusted_target_seconds
        if summary is not None and not summary.no_data and summary.median > 0:
            return summary.median
        if overall is not None and not overall.no_data and overall.median > 0:
            return overall.median
        return self.config.fallback_benchmark_seconds

    def classify(
        self,
        projected_late: bool,
        days_until_due: float,
        slack_days: float,
        expedited: bool,
    ) -> RiskLevel:
        config = self.config
        if projected_late:
            if days_until_due < config.critical_days:
                level = RiskLevel.CRITICAL
            elif days_until_due < config.high_risk_days:
                level = RiskLevel.HIGH
            else:
                level = RiskLevel.MEDIUM
        elif slack_days < config.min_slack_days:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        if expedited:
            level = level.escalate()
        return level

    def confidence(
        self,
        velocity: Optional[VelocityResult],
        current_load: int,
    ) -> Tuple[Confidence, float, float]:
        """Confidence label, score and historical load used for the comparison.

        Contention (current load above ``contention_ratio`` times the
        historical average) always downgrades confidence to low.
        """
        config = self.config
        level, score = Confidence.MEDIUM, config.default_confidence_score

        if velocity is not None and not velocity.no_data and velocity.score:
            score = velocity.score
            if score >= config.confidence_high_score:
                level = Confidence.HIGH
            elif score < config.confidence_low_score:
                level = Confidence.LOW

        historical = 0.0
        if velocity is not None and velocity.benchmark is not None:
            historical = velocity.benchmark.avg_historical_active
        if not historical:
            historical = float(current_load)

        if current_load > historical * config.contention_ratio:
            level = Confidence.LOW
            score *= config.contention_confidence_factor

        return level, score, historical

    def predict(
        self,
        case: ActiveCase,
        benchmark: float,
        velocity: Optional[VelocityResult],
        current_load: int,
        now: datetime,
    ) -> RiskPrediction:
        """Prediction for one active case.

        Args:
            case: Active case with elapsed adjusted working time in the stage
            benchmark: Expected working seconds for the stage
            velocity: Velocity result of the case's category (for confidence)
            current_load: Active cases of the category right now
            now: Reference time of the run
        """
        elapsed = case.elapsed_working_seconds
        remaining = max(0.0, benchmark - elapsed)
        expected_completion = now + timedelta(seconds=remaining)
        deadline = self.clock.end_of_due_day(case.due)

        days_until_due = (deadline - now).total_seconds() / DAY_SECONDS
        expected_days = remaining / DAY_SECONDS
        slack_days = days_until_due - expected_days

        # Overrunning the benchmark counts as projected late regardless of slack;
        # with a far due date that classifies as medium
        projected_late = expected_completion > deadline or elapsed >= benchmark

        progress = min(100.0, elapsed / benchmark * 100.0) if benchmark > 0 else 100.0
        level = self.classify(projected_late, days_until_due, slack_days, case.is_expedited)
        confidence, confidence_score, historical = self.confidence(velocity, current_load)

        return RiskPrediction(
            case_id=case.case_id,
            case_number=case.case_number,
            category=case.category,
            stage=case.stage,
            stage_entered_at=case.stage_entered_at,
            elapsed_seconds=elapsed,
            benchmark_seconds=benchmark,
            remaining_seconds=remaining,
            progress_percent=progress,
            expected_completion=expected_completion,
            deadline=deadline,
            days_until_due=days_until_due,
            expected_days_to_complete=expected_days,
            slack_days=slack_days,
            projected_late=projected_late,
            days_late=max(0.0, -slack_days) if projected_late else 0.0,
            risk_level=level,
            confidence=confidence,
            confidence_score=confidence_score,
            expedited=case.is_expedited,
            current_load=current_load,
            historical_avg_load=historical,
            velocity_score=velocity.score if velocity is not None else 0.0,
            recommendation=recommendation_for(level, progress, case.is_expedited),
        )

    def predict_case(
        self,
        case: ActiveCase,
        velocity_by_category: Dict[CaseCategory, VelocityResult],
        summaries: Dict[CaseCategory, PopulationSummary],
        overall: Optional[PopulationSummary],
        load: Dict[CaseCategory, int],
        now: datetime,
    ) -> RiskPrediction:
        """Prediction for one active case against its category benchmark"""
        velocity = velocity_by_category.get(case.category)
        benchmark = self.benchmark_for(velocity, summaries.get(case.category), overall)
        return self.predict(case, benchmark, velocity, load.get(case.category, 0), now)

    def summarize(
        self, stage: Stage, predictions: Sequence[RiskPrediction]
    ) -> Tuple[List[RiskPrediction], RiskSummary]:
        """Sort predictions by urgency and count them per risk level"""
        predictions = sorted(predictions, key=lambda p: (p.risk_level.rank, p.days_until_due))

        by_level = {level: [] for level in RiskLevel}
        for p in predictions:
            by_level[p.risk_level].append(p.case_number)

        summary = RiskSummary(
            total=len(predictions),
            projected_late=sum(1 for p in predictions if p.projected_late),
            on_track=sum(1 for p in predictions if not p.projected_late and p.risk_level is RiskLevel.LOW),
            medium=len(by_level[RiskLevel.MEDIUM]),
            high=len(by_level[RiskLevel.HIGH]),
            critical=len(by_level[RiskLevel.CRITICAL]),
            average_confidence=(
                sum(p.confidence_score for p in predictions) / len(predictions) if predictions else 0.0
            ),
            by_level=by_level,
        )

        if summary.critical:
            logger.warning(f"{summary.critical} {stage.value} case(s) at critical risk: {by_level[RiskLevel.CRITICAL]}")
        return predictions, summary
