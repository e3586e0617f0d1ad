"""
Data models for the throughput analytics engine.

Input models (``Case``, ``EventLogEntry``) mirror what the case store
supplies; everything else is derived per run.
"""

from lab_throughput.models.case import (
    Case,
    CaseCategory,
    EventLogEntry,
    Stage,
    TAG_EXCLUDE,
    TAG_EXCLUDE_ALL,
    TAG_EXCLUDE_REASON_PREFIX,
    TAG_EXCLUDE_STAGE_PREFIX,
    TAG_HOLD,
    TAG_RUSH,
    ensure_utc,
)
from lab_throughput.models.timeline import (
    ActiveCase,
    CompletionRecord,
    HoldPeriod,
    StageTime,
    StageVisit,
)
from lab_throughput.models.analytics import (
    Benchmark,
    BufferCheck,
    CaseDelivery,
    CaseDetail,
    CompletionClassification,
    Confidence,
    DeliverySegment,
    EfficiencyResult,
    ExcludedCase,
    Explanation,
    Insight,
    OnTimeSummary,
    PenaltyInsight,
    PenaltyKind,
    PopulationSummary,
    Recommendation,
    RiskLevel,
    RiskPrediction,
    RiskSummary,
    RushFactor,
    SegmentComparison,
    VelocityResult,
    VelocityStatus,
)
from lab_throughput.models.report import CategoryReport, StageReport

__all__ = [
    # Case input
    "Case",
    "CaseCategory",
    "EventLogEntry",
    "Stage",
    "TAG_EXCLUDE",
    "TAG_EXCLUDE_ALL",
    "TAG_EXCLUDE_REASON_PREFIX",
    "TAG_EXCLUDE_STAGE_PREFIX",
    "TAG_HOLD",
    "TAG_RUSH",
    "ensure_utc",

    # Timeline
    "ActiveCase",
    "CompletionRecord",
    "HoldPeriod",
    "StageTime",
    "StageVisit",

    # Analytics results
    "Benchmark",
    "BufferCheck",
    "CaseDelivery",
    "CaseDetail",
    "CompletionClassification",
    "Confidence",
    "DeliverySegment",
    "EfficiencyResult",
    "ExcludedCase",
    "Explanation",
    "Insight",
    "OnTimeSummary",
    "PenaltyInsight",
    "PenaltyKind",
    "PopulationSummary",
    "Recommendation",
    "RiskLevel",
    "RiskPrediction",
    "RiskSummary",
    "RushFactor",
    "SegmentComparison",
    "VelocityResult",
    "VelocityStatus",

    # Report
    "CategoryReport",
    "StageReport",
]
