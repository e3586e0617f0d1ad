"""Analytics result models.

Every object in this module is produced by one analytics run and carries no
identity across runs, except ``Benchmark.smoothed_target_seconds`` which the
caller feeds back as the next run's previous smoothed target.

Key Models:
- PopulationSummary / SegmentComparison: descriptive statistics of a population
- CompletionClassification / VelocityResult / Benchmark: velocity engine output
- BufferCheck / CaseDelivery / OnTimeSummary: buffer compliance and delivery
- RiskPrediction / RiskSummary: forward-looking risk of active cases
- EfficiencyResult: combined stage score with insights and recommendations

Insufficient data is never a number: results carry ``no_data`` or
``insufficient_sample`` flags which callers must check before trusting a score.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from lab_throughput.models.case import CaseCategory, Stage


# ============================================================
# Population Statistics
# ============================================================

class ExcludedCase(BaseModel):
    """A case left out of every aggregate, with the reason it was left out."""

    case_id: str
    case_number: str
    reason: str = Field(description="Human-readable exclusion reason")
    policy: bool = Field(
        default=False,
        description="True for tag-driven exclusions, False for data-quality rejections"
    )
    category: Optional[CaseCategory] = None
    duration_seconds: Optional[float] = Field(
        default=None,
        description="Adjusted working time in the stage, when it was computed"
    )
    visit_count: Optional[int] = None
    priority: bool = False
    rush: bool = False


class CaseDetail(BaseModel):
    """Per-case drill-down row. Outliers stay visible here."""

    case_id: str
    case_number: str
    category: CaseCategory
    duration_seconds: float = Field(description="Adjusted working time in the stage")
    raw_working_seconds: float = 0.0
    hold_seconds: float = Field(default=0.0, description="Working time spent on hold")
    visit_count: int = 0
    is_active: bool = False
    is_outlier: bool = False
    priority: bool = False
    rush: bool = False
    stage_entered_at: Optional[datetime] = None
    stage_exited_at: Optional[datetime] = None


class PopulationSummary(BaseModel):
    """Descriptive statistics over the non-outlier durations of a population.

    All durations are seconds. When ``no_data`` is True every statistic is 0.
    """

    no_data: bool = False
    sample_size: int = 0
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    p10: float = 0.0
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    lower_fence: Optional[float] = None
    upper_fence: Optional[float] = None
    outlier_count: int = 0
    excluded_count: int = 0
    multi_visit_count: int = 0
    active_count: int = 0
    completed_count: int = 0
    data_quality_score: float = Field(
        default=0.0,
        description="Share (0-100) of screened cases that survived exclusion and outlier passes"
    )

    @classmethod
    def empty(cls, excluded_count: int = 0, outlier_count: int = 0) -> "PopulationSummary":
        return cls(no_data=True, excluded_count=excluded_count, outlier_count=outlier_count)


class SegmentComparison(BaseModel):
    """Mean duration of an expedited segment against standard cases."""

    segment: str = Field(description="'priority' or 'rush'")
    insufficient_sample: bool = False
    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    standard_mean: float = 0.0
    standard_count: int = 0
    percent_faster: float = Field(
        default=0.0,
        description="How much faster than standard, in percent (negative = slower)"
    )


# ============================================================
# Velocity Engine
# ============================================================

class VelocityStatus(str, Enum):
    """Classification of one completion against the adjusted target."""

    EXCEEDED = "exceeded"
    """Finished faster than the adjusted target"""

    MET = "met"
    """Finished exactly on the adjusted target"""

    MISSED = "missed"
    """Took longer than the adjusted target"""


class CompletionClassification(BaseModel):
    """One completion compared to the adjusted target."""

    case_id: str
    case_number: str
    status: VelocityStatus
    actual_seconds: float
    target_seconds: float
    percent_difference: float = Field(
        description="(actual / target - 1) * 100, one decimal; positive = slower"
    )
    time_difference_seconds: float = Field(
        ge=0.0,
        description="Absolute difference between actual and target"
    )

    @property
    def performance_percent(self) -> float:
        """Actual time as a percentage of the target"""
        if self.target_seconds <= 0:
            return 100.0
        return self.actual_seconds / self.target_seconds * 100.0


class Benchmark(BaseModel):
    """Expected duration for one (stage, category) pair."""

    stage: Stage
    category: CaseCategory
    raw_target_seconds: float
    smoothed_target_seconds: float
    sample_size: int
    avg_historical_active: float = Field(
        default=0.0,
        description="Average active-count-at-start across the completions"
    )


class VelocityResult(BaseModel):
    """Velocity score of one (stage, category) plus every intermediate value."""

    stage: Stage
    category: CaseCategory
    no_data: bool = False
    score: float = 0.0
    sample_size: int = 0
    current_active: int = 0
    completed_velocity: float = 0.0
    active_impact: float = 100.0
    active_weight: float = 0.0
    concurrency_scale: float = 1.0
    load_factor: float = 1.0
    time_weighted_load: float = 0.0
    load_adjustment: float = 1.0
    adjusted_target_seconds: Optional[float] = None
    benchmark: Optional[Benchmark] = None
    next_smoothed_target: Optional[float] = None
    is_single_completion: bool = False
    excluded_from_scoring: bool = Field(
        default=False,
        description="Too few completions to count toward overall throughput"
    )
    classifications: List[CompletionClassification] = Field(default_factory=list)

    def count(self, status: VelocityStatus) -> int:
        return sum(1 for c in self.classifications if c.status == status)

    @classmethod
    def empty(cls, stage: Stage, category: CaseCategory, current_active: int = 0) -> "VelocityResult":
        return cls(stage=stage, category=category, no_data=True, current_active=current_active)


# ============================================================
# Buffer Compliance & Delivery
# ============================================================

class RushFactor(BaseModel):
    """Multiplier shrinking buffer requirements for expedited cases."""

    factor: float = Field(ge=0.0, le=1.0)
    insufficient_sample: bool = False
    standard_count: int = 0
    expedited_count: int = 0
    standard_lead_days: Optional[float] = None
    expedited_lead_days: Optional[float] = None


class BufferCheck(BaseModel):
    """Whether a case left a stage early enough before its deadline."""

    stage: Stage
    required_lead_days: float
    transition_at: Optional[datetime] = Field(
        default=None,
        description="When the case left the stage; None means no data (treated as met)"
    )
    required_by: datetime
    compliant: bool = True
    buffer_hours: Optional[float] = Field(
        default=None,
        description="Hours between leaving the stage and the deadline"
    )

    @property
    def shortage_hours(self) -> float:
        if self.compliant or self.buffer_hours is None:
            return 0.0
        return self.required_lead_days * 24.0 - self.buffer_hours


class PenaltyKind(str, Enum):
    BUFFER = "buffer"
    LATENESS = "lateness"
    VELOCITY = "velocity"


class PenaltyInsight(BaseModel):
    """One deduction applied to a case's delivery score."""

    kind: PenaltyKind
    points: float
    detail: str


class CaseDelivery(BaseModel):
    """Delivery evaluation of one case for the analysed stage."""

    case_id: str
    case_number: str
    category: CaseCategory
    priority: bool = False
    rush: bool = False
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    deadline: datetime
    available_days: float = Field(description="Days from creation to the deadline")
    delivered_on_time: bool = Field(
        default=True,
        description="On time for this stage (lateness owned by another stage does not count)"
    )
    hours_late: float = Field(
        default=0.0,
        description="Hours past the deadline attributed to this stage (0 when not responsible)"
    )
    stage_at_due: Optional[Stage] = None
    score: float = 100.0
    effective: bool = True
    penalty_units: float = 0.0
    buffer_checks: Dict[Stage, BufferCheck] = Field(default_factory=dict)
    velocity: Optional[CompletionClassification] = None
    penalties: List[PenaltyInsight] = Field(default_factory=list)

    @property
    def is_expedited(self) -> bool:
        return self.priority or self.rush

    def buffer_met(self, stage: Stage) -> bool:
        check = self.buffer_checks.get(stage)
        return check is None or check.compliant

    @property
    def met_all_buffers(self) -> bool:
        return all(check.compliant for check in self.buffer_checks.values())


class DeliverySegment(BaseModel):
    """On-time figures for a slice of the population (category or expedited)."""

    label: str
    insufficient_sample: bool = False
    count: int = 0
    actual_on_time: int = 0
    actual_rate: float = 0.0
    effective_on_time: int = 0
    effective_rate: float = 0.0
    average_score: float = 0.0
    buffer_compliance: float = 100.0


class OnTimeSummary(BaseModel):
    """On-time delivery and buffer compliance of the analysed stage."""

    stage: Stage
    count: int = 0
    completed_count: int = 0
    actual_on_time: int = 0
    actual_rate: float = 0.0
    effective_on_time: int = 0
    effective_rate: float = 0.0
    average_score: float = 0.0
    buffer_compliance: Dict[Stage, float] = Field(default_factory=dict)
    current_buffer_compliance: float = 100.0
    average_hours_late: float = 0.0
    late_completed_count: int = 0
    average_days_late: float = Field(
        default=0.0,
        description="Mean days late over completed cases delivered late"
    )
    critical_violations: int = 0
    expedited_count: int = 0
    short_lead_count: int = Field(
        default=0,
        description="Cases created with less than the short-lead threshold of total time"
    )
    stage_late_count: int = Field(
        default=0,
        description="Completed cases that went late while in the analysed stage"
    )
    rush_factor: RushFactor
    by_category: Dict[CaseCategory, DeliverySegment] = Field(default_factory=dict)
    expedited: DeliverySegment
    cases: List[CaseDelivery] = Field(default_factory=list)
    penalized_cases: List[CaseDelivery] = Field(default_factory=list)
    late_cases: List[CaseDelivery] = Field(default_factory=list)
    buffer_violations: List[CaseDelivery] = Field(default_factory=list)


# ============================================================
# Risk Prediction
# ============================================================

class RiskLevel(str, Enum):
    """Forward-looking risk that an active case misses its deadline."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort key, most urgent first"""
        return _RISK_RANK[self]

    def escalate(self) -> "RiskLevel":
        """One level up for expedited cases (low is never escalated)"""
        if self is RiskLevel.MEDIUM:
            return RiskLevel.HIGH
        if self is RiskLevel.HIGH:
            return RiskLevel.CRITICAL
        return self


_RISK_RANK = {
    RiskLevel.CRITICAL: 0,
    RiskLevel.HIGH: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.LOW: 3,
}


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskPrediction(BaseModel):
    """Projected completion and risk of one active case."""

    case_id: str
    case_number: str
    category: CaseCategory
    stage: Stage
    stage_entered_at: datetime
    elapsed_seconds: float
    benchmark_seconds: float
    remaining_seconds: float
    progress_percent: float
    expected_completion: datetime
    deadline: datetime
    days_until_due: float
    expected_days_to_complete: float
    slack_days: float
    projected_late: bool
    days_late: float = 0.0
    risk_level: RiskLevel
    confidence: Confidence
    confidence_score: float
    expedited: bool = False
    current_load: int = 0
    historical_avg_load: float = 0.0
    velocity_score: float = 0.0
    recommendation: str


class RiskSummary(BaseModel):
    """Counts and groupings over all predictions of a stage."""

    total: int = 0
    projected_late: int = 0
    on_track: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0
    average_confidence: float = 0.0
    by_level: Dict[RiskLevel, List[str]] = Field(
        default_factory=dict,
        description="Case numbers grouped by risk level"
    )


# ============================================================
# Efficiency
# ============================================================

class Insight(BaseModel):
    """A human-readable statement with a severity for display."""

    level: str = Field(description="info | success | warning | error")
    message: str


class Recommendation(BaseModel):
    """Actionable suggestion derived from the same thresholds used for scoring."""

    priority: str = Field(description="high | medium | low")
    kind: str = Field(description="process | workflow | planning | performance | throughput")
    message: str
    impact: str


class Explanation(BaseModel):
    """Breakdown of how the efficiency score came about."""

    overall: List[Insight] = Field(default_factory=list)
    throughput: List[Insight] = Field(default_factory=list)
    on_time: List[Insight] = Field(default_factory=list)
    factors: List[Insight] = Field(default_factory=list)


class EfficiencyResult(BaseModel):
    """Combined efficiency score of a stage."""

    stage: Stage
    no_data: bool = False
    score: float = 0.0
    overall_throughput: float = 0.0
    on_time_rate: float = 0.0
    buffer_factor: float = 1.0
    lateness_dampened: bool = False
    expedited_bonus: bool = False
    critical_penalty: bool = False
    sample_size: int = 0
    confidence: str = Field(default="Low", description="Low | Medium | High | Very High")
    insights: List[Insight] = Field(default_factory=list)
    explanation: Explanation = Field(default_factory=Explanation)
    recommendations: List[Recommendation] = Field(default_factory=list)
