"""On-time delivery scoring for one stage.

Each case starts at 100 and loses points for the failures the analysed stage
owns: a missed buffer, lateness that happened while the case sat in this
stage, and an over-benchmark stay. Lateness owned by another stage never
counts against this one.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from lab_throughput.config import DAY_SECONDS, AnalyticsConfig
from lab_throughput.core.compliance.buffer import BufferComplianceAnalyzer
from lab_throughput.core.statistics.population import mean
from lab_throughput.models.analytics import (
    CaseDelivery,
    CompletionClassification,
    DeliverySegment,
    OnTimeSummary,
    PenaltyInsight,
    PenaltyKind,
    RushFactor,
    VelocityStatus,
)
from lab_throughput.models.case import Case, CaseCategory, Stage
from lab_throughput.models.timeline import StageVisit

logger = logging.getLogger(__name__)

DONE_ACTION = "marked done"

# (case, replayed timeline, velocity classification of its stay if any)
DeliveryInput = Tuple[Case, List[StageVisit], Optional[CompletionClassification]]


class DeliveryScorer:
    """Scores delivery of a stage's population and summarizes it.

    Usage:
        scorer = DeliveryScorer(config)
        rush = scorer.analyzer.rush_factor(cases)
        deliveries = [scorer.evaluate(case, timeline, Stage.DESIGN, rush.factor) for case, timeline in replayed]
        summary = scorer.summarize(Stage.DESIGN, deliveries, rush)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        analyzer: Optional[BufferComplianceAnalyzer] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.analyzer = analyzer or BufferComplianceAnalyzer(self.config)

    @staticmethod
    def completion_instant(case: Case) -> Optional[datetime]:
        """First 'marked done' log entry, else ``completed_at`` of a completed case"""
        for entry in case.sorted_history():
            if entry.normalized_action == DONE_ACTION:
                return entry.created_at
        if case.completed:
            return case.completed_at
        return None

    def evaluate(
        self,
        case: Case,
        timeline: Sequence[StageVisit],
        stage: Stage,
        rush_factor: float,
        velocity: Optional[CompletionClassification] = None,
    ) -> CaseDelivery:
        """Delivery score of one case for ``stage``."""
        config = self.config
        deadline = self.analyzer.deadline(case)
        completed_at = self.completion_instant(case)
        checks = self.analyzer.check_buffers(case, timeline, rush_factor, completed_at)

        on_time, hours_late, stage_at_due = True, 0.0, None
        if completed_at is not None:
            stage_at_due = self.analyzer.responsible_stage(timeline, deadline)
            if completed_at > deadline and stage_at_due == stage:
                on_time = False
                hours_late = (completed_at - deadline).total_seconds() / 3600.0

        penalties: List[PenaltyInsight] = []

        check = checks.get(stage)
        buffer_missed = check is not None and not check.compliant
        if buffer_missed and stage in config.buffer_miss_penalty:
            penalties.append(PenaltyInsight(
                kind=PenaltyKind.BUFFER,
                points=config.buffer_miss_penalty[stage],
                detail=(
                    f"Left {stage.display_name} {check.shortage_hours:.1f}h short of the "
                    f"{check.required_lead_days:g}-day buffer"
                ),
            ))

        if not on_time:
            penalties.append(PenaltyInsight(
                kind=PenaltyKind.LATENESS,
                points=min(config.max_lateness_penalty, hours_late * config.lateness_penalty_per_hour),
                detail=f"Delivered {hours_late:.1f}h late while in {stage.display_name}",
            ))

        if velocity is not None and velocity.status == VelocityStatus.MISSED:
            points = min(
                config.max_velocity_penalty,
                math.floor((velocity.performance_percent - 100) / config.velocity_penalty_step),
            )
            if points > 0:
                penalties.append(PenaltyInsight(
                    kind=PenaltyKind.VELOCITY,
                    points=points,
                    detail=f"{velocity.percent_difference:+.1f}% over the benchmark",
                ))

        score = max(0.0, min(100.0, 100.0 - sum(p.points for p in penalties)))

        if stage in config.buffer_miss_penalty:
            penalty_units = (0.5 if buffer_missed else 0.0) + (0.5 if not on_time else 0.0)
        else:
            penalty_units = 0.0 if on_time else 1.0

        return CaseDelivery(
            case_id=case.id,
            case_number=case.case_number,
            category=case.category,
            priority=case.priority,
            rush=case.is_rush,
            is_completed=completed_at is not None,
            completed_at=completed_at,
            deadline=deadline,
            available_days=(deadline - case.created_at).total_seconds() / DAY_SECONDS,
            delivered_on_time=on_time,
            hours_late=hours_late,
            stage_at_due=stage_at_due,
            score=score,
            effective=score >= config.effective_delivery_score,
            penalty_units=penalty_units,
            buffer_checks=checks,
            velocity=velocity,
            penalties=penalties,
        )

    def summarize(
        self, stage: Stage, deliveries: Sequence[CaseDelivery], rush: RushFactor
    ) -> OnTimeSummary:
        """On-time summary of a stage's evaluated population.

        Active cases count as on time; completed cases count as late only when
        the lateness happened in ``stage``.
        """
        config = self.config

        if not deliveries:
            return OnTimeSummary(
                stage=stage,
                buffer_compliance={s: 100.0 for s in self.analyzer.buffered_stages},
                rush_factor=rush,
                expedited=DeliverySegment(label="expedited", insufficient_sample=True),
            )

        completed = [d for d in deliveries if d.is_completed]
        late = [d for d in completed if not d.delivered_on_time]
        compliance = {
            s: _share(deliveries, lambda d, s=s: d.buffer_met(s)) for s in self.analyzer.buffered_stages
        }
        average_hours_late = mean([d.hours_late for d in late])

        summary = OnTimeSummary(
            stage=stage,
            count=len(deliveries),
            completed_count=len(completed),
            actual_on_time=sum(1 for d in deliveries if d.delivered_on_time),
            actual_rate=_share(deliveries, lambda d: d.delivered_on_time),
            effective_on_time=sum(1 for d in completed if d.effective),
            effective_rate=_share(completed, lambda d: d.effective, empty=0.0),
            average_score=mean([d.score for d in deliveries]),
            buffer_compliance=compliance,
            current_buffer_compliance=compliance.get(stage, 100.0),
            average_hours_late=average_hours_late,
            late_completed_count=len(late),
            average_days_late=average_hours_late / 24.0,
            critical_violations=sum(
                1 for d in completed if not d.buffer_met(Stage.PRODUCTION) and d.hours_late > 0
            ),
            expedited_count=sum(1 for d in deliveries if d.is_expedited),
            short_lead_count=sum(1 for d in deliveries if d.available_days < config.short_lead_days),
            stage_late_count=len(late),
            rush_factor=rush,
            by_category=self._by_category(deliveries),
            expedited=self._segment("expedited", [d for d in completed if d.is_expedited]),
            cases=deliveries,
            penalized_cases=[d for d in deliveries if d.penalties],
            late_cases=late,
            buffer_violations=[
                d for d in deliveries if stage in config.buffer_miss_penalty and not d.buffer_met(stage)
            ],
        )

        logger.info(
            f"On-time {stage.value}: {summary.actual_on_time}/{summary.count} on time, "
            f"buffer compliance {summary.current_buffer_compliance:.0f}%, rush factor {rush.factor:.2f}"
        )
        return summary

    def _by_category(self, deliveries: Sequence[CaseDelivery]) -> Dict[CaseCategory, DeliverySegment]:
        segments = {}
        for category in CaseCategory:
            members = [d for d in deliveries if d.category == category]
            if len(members) >= self.config.min_segment_sample:
                segments[category] = self._segment(category.value, members)
        return segments

    @staticmethod
    def _segment(label: str, members: Sequence[CaseDelivery]) -> DeliverySegment:
        if not members:
            return DeliverySegment(label=label, insufficient_sample=True, count=len(members))

        completed = [d for d in members if d.is_completed]
        return DeliverySegment(
            label=label,
            count=len(members),
            actual_on_time=sum(1 for d in completed if d.delivered_on_time),
            actual_rate=_share(completed, lambda d: d.delivered_on_time, empty=0.0),
            effective_on_time=sum(1 for d in completed if d.effective),
            effective_rate=_share(completed, lambda d: d.effective, empty=0.0),
            average_score=mean([d.score for d in members]),
            buffer_compliance=_share(members, lambda d: d.met_all_buffers),
        )


def _share(items: Sequence[CaseDelivery], predicate, empty: float = 100.0) -> float:
    """Percentage of ``items`` satisfying ``predicate``"""
    if not items:
        return empty
    return sum(1 for item in items if predicate(item)) / len(items) * 100.0
