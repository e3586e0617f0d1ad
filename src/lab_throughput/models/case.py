"""Case data models - production cases and their event log.

This module defines the snapshot of a dental-lab case as the analytics engine
receives it from the case store.

Key Models:
- Case: Root case entity with tags (current truth) and history (historical truth)
- EventLogEntry: One timestamped free-text action from the append-only log
- Stage: Workflow stage (design → production → finishing → qc)
- CaseCategory: Case type used to segment benchmarks (general / bbs / flex)

Architecture:
- Tags describe what the case looks like right now ("stage-production", "rush")
- The history must be replayed to learn what the case looked like in the past
- The two can disagree; historical analysis trusts the replay, "where is this
  case right now" trusts the tag
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================
# Workflow Enums
# ============================================================

class Stage(str, Enum):
    """
    Production workflow stage.

    Workflow Order:
      DESIGN → PRODUCTION → FINISHING → QC

    Cases may move backwards (rework); every entry into a stage is a
    separate visit.
    """

    DESIGN = "design"
    PRODUCTION = "production"
    FINISHING = "finishing"
    QC = "qc"

    @property
    def order(self) -> int:
        """Position of this stage in the workflow (0-based)"""
        return _STAGE_ORDER.index(self)

    @property
    def display_name(self) -> str:
        """Human-readable stage name"""
        return "Quality Control" if self is Stage.QC else self.value.title()

    @property
    def tag(self) -> str:
        """Tag marking a case as currently in this stage"""
        return f"stage-{self.value}"

    @classmethod
    def from_phrase(cls, phrase: str) -> Optional["Stage"]:
        """Resolve a stage name as it appears in log text ("quality control", "qc", ...)"""
        key = phrase.strip().lower()
        if key.endswith(" stage"):
            key = key[: -len(" stage")].strip()
        return _STAGE_PHRASES.get(key)


_STAGE_ORDER = [Stage.DESIGN, Stage.PRODUCTION, Stage.FINISHING, Stage.QC]

_STAGE_PHRASES = {
    "design": Stage.DESIGN,
    "production": Stage.PRODUCTION,
    "finishing": Stage.FINISHING,
    "quality control": Stage.QC,
    "qc": Stage.QC,
}


class CaseCategory(str, Enum):
    """
    Case type used to segment benchmarks.

    Each category gets its own benchmark per stage, because categories have
    very different typical processing times.
    """

    GENERAL = "general"
    """Standard restorations (primary category)"""

    BBS = "bbs"
    """Secondary category, tagged "bbs" on the board"""

    FLEX = "flex"
    """Tertiary category (3D flex), tagged "flex" on the board"""

    @property
    def display_name(self) -> str:
        return _CATEGORY_NAMES[self]


_CATEGORY_NAMES = {
    CaseCategory.GENERAL: "General",
    CaseCategory.BBS: "BBS",
    CaseCategory.FLEX: "3D Flex",
}


# ============================================================
# Tag Vocabulary
# ============================================================

TAG_RUSH = "rush"
TAG_HOLD = "hold"
TAG_EXCLUDE = "stats-exclude"
TAG_EXCLUDE_ALL = "stats-exclude:all"
TAG_EXCLUDE_STAGE_PREFIX = "stats-exclude:"
TAG_EXCLUDE_REASON_PREFIX = "stats-exclude-reason:"


# ============================================================
# Event Log
# ============================================================

class EventLogEntry(BaseModel):
    """One entry of a case's append-only action log."""

    action: str = Field(
        description="Free-text action, e.g. 'Moved from Design to Production stage'"
    )

    created_at: datetime = Field(
        description="When the action was logged (timezone-aware, UTC if naive)"
    )

    user_name: Optional[str] = Field(
        default=None,
        description="Who performed the action"
    )

    @field_validator('created_at')
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC"""
        return ensure_utc(v)

    @property
    def normalized_action(self) -> str:
        """Lower-cased, whitespace-collapsed action text used for matching"""
        return " ".join(self.action.lower().split())


# ============================================================
# Case
# ============================================================

class Case(BaseModel):
    """
    A production case as supplied by the case store.

    The engine never mutates a Case; every analytics run derives its own
    visits, hold periods and completion records from this snapshot.
    """

    id: str = Field(description="Case identifier")

    case_number: str = Field(
        description="Human-facing case number shown on the board"
    )

    department: str = Field(
        default="General",
        description="Owning department; only tracked departments take part in stage analytics"
    )

    category: Optional[CaseCategory] = Field(
        default=None,
        description="Case category; derived from 'bbs'/'flex' tags when omitted"
    )

    created_at: datetime = Field(description="Case creation timestamp")

    due: date = Field(description="Due date (calendar date, deadline is end of that day)")

    completed: bool = Field(default=False, description="Whether the case is done")

    completed_at: Optional[datetime] = Field(
        default=None,
        description="When the case was marked done"
    )

    priority: bool = Field(default=False, description="Priority flag")

    tags: List[str] = Field(
        default_factory=list,
        description="Current free-form modifiers (stage, expedite, hold, exclusion tags)"
    )

    history: List[EventLogEntry] = Field(
        default_factory=list,
        description="Append-only action log"
    )

    @field_validator('created_at', 'completed_at')
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @field_validator('due', mode='before')
    @classmethod
    def parse_due(cls, v):
        """Accept 'YYYY-MM-DD' or a full ISO timestamp, keeping only the calendar date"""
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str):
            return date.fromisoformat(v.split("T")[0])
        return v

    @model_validator(mode='after')
    def derive_category(self) -> 'Case':
        """Fill category from tags when the store did not supply one"""
        if self.category is None:
            if "bbs" in self.tags:
                self.category = CaseCategory.BBS
            elif "flex" in self.tags:
                self.category = CaseCategory.FLEX
            else:
                self.category = CaseCategory.GENERAL
        return self

    @property
    def is_rush(self) -> bool:
        return TAG_RUSH in self.tags

    @property
    def is_expedited(self) -> bool:
        """Priority or rush"""
        return self.priority or self.is_rush

    @property
    def on_hold(self) -> bool:
        return TAG_HOLD in self.tags

    @property
    def current_stage(self) -> Stage:
        """Stage according to the current tags (defaults to design)"""
        for stage in (Stage.QC, Stage.FINISHING, Stage.PRODUCTION, Stage.DESIGN):
            if stage.tag in self.tags:
                return stage
        return Stage.DESIGN

    def is_excluded(self, stage: Optional[Stage] = None) -> bool:
        """Whether the case carries a policy exclusion tag (global or for ``stage``)"""
        if TAG_EXCLUDE in self.tags or TAG_EXCLUDE_ALL in self.tags:
            return True
        if stage is not None and f"{TAG_EXCLUDE_STAGE_PREFIX}{stage.value}" in self.tags:
            return True
        return False

    @property
    def exclusion_reason(self) -> Optional[str]:
        """Reason text attached with a 'stats-exclude-reason:' tag, if any"""
        for tag in self.tags:
            if tag.startswith(TAG_EXCLUDE_REASON_PREFIX):
                return tag[len(TAG_EXCLUDE_REASON_PREFIX):]
        return None

    def sorted_history(self) -> List[EventLogEntry]:
        """History in chronological order (stable for equal timestamps)"""
        return sorted(self.history, key=lambda entry: entry.created_at)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
