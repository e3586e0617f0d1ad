"""Stage report - the structured output handed to the presentation layer.

One ``StageReport`` per analysed stage, with one ``CategoryReport`` per case
category. ``model_dump(mode="json")`` gives a JSON-ready document.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from lab_throughput.models.analytics import (
    Benchmark,
    CaseDetail,
    EfficiencyResult,
    ExcludedCase,
    OnTimeSummary,
    PopulationSummary,
    RiskPrediction,
    RiskSummary,
    SegmentComparison,
    VelocityResult,
)
from lab_throughput.models.case import CaseCategory, Stage


class CategoryReport(BaseModel):
    """Statistics and velocity of one (stage, category) pair."""

    category: CaseCategory
    summary: PopulationSummary
    velocity: VelocityResult
    priority: SegmentComparison
    rush: SegmentComparison
    active_count: int = 0


class StageReport(BaseModel):
    """Everything one analytics run computed for one stage."""

    stage: Stage
    reference_time: datetime = Field(description="The single 'now' used throughout the run")
    no_data: bool = False
    summary: PopulationSummary
    categories: Dict[CaseCategory, CategoryReport] = Field(default_factory=dict)
    overall_throughput: float = 0.0
    on_time: OnTimeSummary
    predictions: List[RiskPrediction] = Field(default_factory=list)
    risk_summary: RiskSummary = Field(default_factory=RiskSummary)
    efficiency: EfficiencyResult
    excluded_cases: List[ExcludedCase] = Field(default_factory=list)
    case_details: List[CaseDetail] = Field(default_factory=list)

    @property
    def benchmarks(self) -> List[Benchmark]:
        """Benchmarks to persist and feed back as ``previous_benchmarks``"""
        return [
            report.velocity.benchmark
            for report in self.categories.values()
            if report.velocity.benchmark is not None
        ]

    def category(self, category: CaseCategory) -> Optional[CategoryReport]:
        return self.categories.get(category)
