"""Derived timeline models.

Nothing in this module is persisted: every analytics run recomputes visits,
hold periods and completion records from the case snapshot.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from lab_throughput.models.case import CaseCategory, Stage


class StageVisit(BaseModel):
    """
    One contiguous interval a case spent in a stage.

    ``exited_at`` is None exactly when this is the case's current, still-open
    visit. A case can visit the same stage several times (rework).
    """

    stage: Stage
    entered_at: datetime
    exited_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_interval(self) -> 'StageVisit':
        if self.exited_at is not None and self.exited_at < self.entered_at:
            raise ValueError(
                f"Visit to {self.stage.value} exits before it was entered "
                f"({self.exited_at.isoformat()} < {self.entered_at.isoformat()})"
            )
        return self

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def end_or(self, now: datetime) -> datetime:
        """Exit instant, or ``now`` for the open visit"""
        return self.exited_at if self.exited_at is not None else now

    def contains(self, instant: datetime) -> bool:
        """Whether ``instant`` falls in [entered_at, exited_at)"""
        if instant < self.entered_at:
            return False
        return self.exited_at is None or instant < self.exited_at


class HoldPeriod(BaseModel):
    """Interval [start, end) during which the case was on hold."""

    start: datetime
    end: datetime


class StageTime(BaseModel):
    """
    Time one case spent in one stage, summed over all of its visits.

    All values are seconds. ``adjusted_*`` values have hold time removed and
    are clamped at zero.
    """

    stage: Stage
    total_seconds: float = 0.0
    working_seconds: float = 0.0
    hold_seconds: float = 0.0
    working_hold_seconds: float = 0.0
    adjusted_seconds: float = 0.0
    adjusted_working_seconds: float = 0.0
    visit_count: int = 0
    is_active: bool = False
    visits: List[StageVisit] = Field(default_factory=list)
    timeline: List[StageVisit] = Field(
        default_factory=list,
        description="Full replayed timeline of the case (all stages)"
    )

    @property
    def first_entered_at(self) -> Optional[datetime]:
        return self.visits[0].entered_at if self.visits else None

    @property
    def last_exited_at(self) -> Optional[datetime]:
        if not self.visits or self.visits[-1].exited_at is None:
            return None
        return self.visits[-1].exited_at


class CompletionRecord(BaseModel):
    """
    A case's closed stay in a stage, the unit statistics are computed over.

    ``duration_seconds`` is the adjusted working time (holds removed).
    """

    case_id: str
    case_number: str
    stage: Stage
    category: CaseCategory
    duration_seconds: float = Field(ge=0.0)
    raw_working_seconds: float = 0.0
    hold_seconds: float = 0.0
    visit_count: int = 1
    entered_at: datetime
    exited_at: datetime
    active_count_at_start: int = Field(
        default=0,
        description="Other same-category cases in this stage when the stay began"
    )
    priority: bool = False
    rush: bool = False
    is_outlier: bool = False

    @property
    def is_expedited(self) -> bool:
        return self.priority or self.rush


class ActiveCase(BaseModel):
    """A case whose visit to the analysed stage is still open."""

    case_id: str
    case_number: str
    stage: Stage
    category: CaseCategory
    stage_entered_at: datetime
    elapsed_working_seconds: float = Field(
        ge=0.0,
        description="Adjusted working time spent in the stage so far"
    )
    due: date
    priority: bool = False
    rush: bool = False

    @property
    def is_expedited(self) -> bool:
        return self.priority or self.rush
