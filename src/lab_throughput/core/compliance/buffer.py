"""Buffer compliance - did a case leave each stage early enough?

Each buffered stage must be left ``lead_days`` before the case deadline (the
end of the due day in the working calendar). Expedited cases get shorter
leads, scaled by a rush-reduction factor learned from how much less total time
expedited cases are historically given than standard ones.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from lab_throughput.config import DAY_SECONDS, AnalyticsConfig
from lab_throughput.core.statistics.population import mean
from lab_throughput.core.timeline.replay import TimelineReplayer
from lab_throughput.core.timeline.working_time import WorkingTimeClock
from lab_throughput.models.analytics import BufferCheck, RushFactor
from lab_throughput.models.case import Case, Stage
from lab_throughput.models.timeline import StageVisit

logger = logging.getLogger(__name__)


def iqr_trimmed_mean(values: Sequence[float]) -> float:
    """Mean of the sorted values between the 25th and 75th position (inclusive)"""
    ordered = sorted(values)
    lo = math.floor(len(ordered) * 0.25)
    hi = math.floor(len(ordered) * 0.75)
    return mean(ordered[lo:hi + 1])


class BufferComplianceAnalyzer:
    """Checks stage transitions against deadline buffers.

    Usage:
        analyzer = BufferComplianceAnalyzer(config)
        rush = analyzer.rush_factor(population)
        checks = analyzer.check_buffers(case, timeline, rush.factor, completed_at)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[WorkingTimeClock] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.clock = clock or WorkingTimeClock.from_config(self.config)

    @property
    def buffered_stages(self) -> List[Stage]:
        """Stages with a lead requirement, in workflow order"""
        return sorted(self.config.buffer_lead_days, key=lambda s: s.order)

    def deadline(self, case: Case) -> datetime:
        return self.clock.end_of_due_day(case.due)

    def available_lead_days(self, case: Case) -> float:
        """Days between creation and the deadline"""
        return (self.deadline(case) - case.created_at).total_seconds() / DAY_SECONDS

    def rush_factor(self, cases: Sequence[Case]) -> RushFactor:
        """Expedited-over-standard ratio of available lead days, clamped.

        Falls back to the configured default, flagged ``insufficient_sample``,
        when either population is below its minimum size.
        """
        config = self.config
        standard = [self.available_lead_days(c) for c in cases if not c.is_expedited]
        expedited = [self.available_lead_days(c) for c in cases if c.is_expedited]

        if len(standard) < config.rush_min_standard_sample or len(expedited) < config.rush_min_expedited_sample:
            return RushFactor(
                factor=config.rush_reduction_default,
                insufficient_sample=True,
                standard_count=len(standard),
                expedited_count=len(expedited),
            )

        standard_days = iqr_trimmed_mean(standard)
        expedited_days = iqr_trimmed_mean(expedited)
        if standard_days <= 0:
            ratio = config.rush_reduction_max
        else:
            ratio = expedited_days / standard_days
        factor = max(config.rush_reduction_min, min(config.rush_reduction_max, ratio))

        logger.debug(
            f"Rush factor {factor:.2f} (expedited {expedited_days:.2f}d over standard {standard_days:.2f}d)"
        )
        return RushFactor(
            factor=factor,
            standard_count=len(standard),
            expedited_count=len(expedited),
            standard_lead_days=standard_days,
            expedited_lead_days=expedited_days,
        )

    def required_lead_days(self, stage: Stage, expedited: bool, rush_factor: float) -> float:
        """Lead days required when leaving ``stage`` (0 for unbuffered stages)"""
        lead = self.config.buffer_lead_days.get(stage, 0.0)
        if not expedited:
            return lead
        return max(self.config.min_rush_lead_days.get(stage, 0.0), lead * rush_factor)

    def transition_times(
        self,
        timeline: Sequence[StageVisit],
        completed_at: Optional[datetime],
    ) -> Dict[Stage, Optional[datetime]]:
        """When the case left each buffered stage, per the replayed timeline.

        A stage is left when one of its visits is followed by a visit to a
        later stage; the last such exit counts. The final buffered stage is
        left when the case is completed.
        """
        stages = self.buffered_stages
        final = stages[-1] if stages else None

        transitions: Dict[Stage, Optional[datetime]] = {}
        for stage in stages:
            if stage is final:
                transitions[stage] = completed_at
                continue

            left_at = None
            for i, visit in enumerate(timeline):
                if visit.stage != stage or visit.exited_at is None:
                    continue
                if any(later.stage.order > stage.order for later in timeline[i + 1:]):
                    left_at = visit.exited_at
            transitions[stage] = left_at
        return transitions

    def check_buffers(
        self,
        case: Case,
        timeline: Sequence[StageVisit],
        rush_factor: float,
        completed_at: Optional[datetime] = None,
    ) -> Dict[Stage, BufferCheck]:
        """Buffer check for every buffered stage.

        A stage the case never left has no data and counts as met.
        """
        deadline = self.deadline(case)
        checks = {}
        for stage, left_at in self.transition_times(timeline, completed_at).items():
            lead = self.required_lead_days(stage, case.is_expedited, rush_factor)
            required_by = deadline - timedelta(days=lead)

            if left_at is None:
                checks[stage] = BufferCheck(
                    stage=stage,
                    required_lead_days=lead,
                    required_by=required_by,
                )
                continue

            checks[stage] = BufferCheck(
                stage=stage,
                required_lead_days=lead,
                transition_at=left_at,
                required_by=required_by,
                compliant=left_at <= required_by,
                buffer_hours=(deadline - left_at).total_seconds() / 3600.0,
            )
        return checks

    @staticmethod
    def responsible_stage(timeline: Sequence[StageVisit], deadline: datetime) -> Optional[Stage]:
        """Stage the case was in when its deadline passed"""
        return TimelineReplayer.stage_at(timeline, deadline)
