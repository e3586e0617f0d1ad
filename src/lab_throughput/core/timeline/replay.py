"""Timeline replay - reconstructs stage visits from a case's free-text log.

The action log is a serialized state-machine transcript. Replay walks it once
in chronological order and matches each action against an ordered table of
``TransitionRule`` entries (first match wins). New phrasings are added to the
table; the replay loop itself does not change.

Rule Kinds:
- TRANSFER: close the open visit, open a visit of the destination stage
- ASSIGN: open a visit only if none is open (or replace the untouched
  visit seeded at creation)
- DONE: close the open visit and stop replay
- HOLD_ADDED / HOLD_REMOVED: delimit hold periods, ignored by visit replay

Unrecognized actions are skipped, never raised.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from lab_throughput.config import AnalyticsConfig
from lab_throughput.core.timeline.working_time import WorkingTimeClock
from lab_throughput.models.case import Case, EventLogEntry, Stage
from lab_throughput.models.timeline import HoldPeriod, StageTime, StageVisit

logger = logging.getLogger(__name__)


class TransitionKind(str, Enum):
    """What a recognized log action does to the replay state."""

    TRANSFER = "transfer"
    ASSIGN = "assign"
    DONE = "done"
    HOLD_ADDED = "hold_added"
    HOLD_REMOVED = "hold_removed"


@dataclass(frozen=True)
class TransitionRule:
    """Maps an action phrase to a transition.

    Attributes:
        pattern: Regex searched in the normalized (lower-case) action text
        kind: Transition applied when the pattern matches
        stage: Fixed destination stage; when None the stage is read from the
            pattern's ``dest`` group
    """

    pattern: Pattern[str]
    kind: TransitionKind
    stage: Optional[Stage] = None

    def match(self, action: str) -> Optional[Tuple[TransitionKind, Optional[Stage]]]:
        found = self.pattern.search(action)
        if not found:
            return None
        stage = self.stage
        if stage is None and "dest" in self.pattern.groupindex:
            stage = Stage.from_phrase(found.group("dest"))
            if stage is None:
                return None
        return self.kind, stage


_STAGE = r"(?:design|production|finishing|quality control|qc)"

DEFAULT_TRANSITION_RULES: List[TransitionRule] = [
    TransitionRule(re.compile(r"^marked done$"), TransitionKind.DONE),
    TransitionRule(re.compile(r"^hold added"), TransitionKind.HOLD_ADDED),
    TransitionRule(re.compile(r"^hold removed"), TransitionKind.HOLD_REMOVED),
    TransitionRule(
        re.compile(r"created and sent directly to finishing"),
        TransitionKind.ASSIGN,
        Stage.FINISHING,
    ),
    TransitionRule(
        re.compile(r"sent for repair\b.*\bfinishing"),
        TransitionKind.TRANSFER,
        Stage.FINISHING,
    ),
    TransitionRule(
        re.compile(rf"moved from {_STAGE} back to (?P<dest>{_STAGE})\b"),
        TransitionKind.TRANSFER,
    ),
    TransitionRule(
        re.compile(rf"moved from {_STAGE} to (?P<dest>{_STAGE})\b"),
        TransitionKind.TRANSFER,
    ),
    TransitionRule(
        re.compile(rf"^moved to (?P<dest>{_STAGE}) stage"),
        TransitionKind.TRANSFER,
    ),
    TransitionRule(
        re.compile(r"assigned to (?P<dest>design|production|finishing) stage"),
        TransitionKind.ASSIGN,
    ),
]

# Stages whose clock stops at the first onward transition found in the log
DEFAULT_ONWARD_CAPS: Dict[Stage, Pattern[str]] = {
    Stage.FINISHING: re.compile(r"moved from finishing to quality control"),
}


class TimelineReplayer:
    """Replays case logs into typed ``StageVisit`` timelines.

    Usage:
        replayer = TimelineReplayer(config)
        timeline = replayer.replay(case, now=reference_time)
        design = replayer.stage_time(case, Stage.DESIGN, now=reference_time)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[WorkingTimeClock] = None,
        rules: Optional[Sequence[TransitionRule]] = None,
        onward_caps: Optional[Dict[Stage, Pattern[str]]] = None,
    ):
        self.config = config or AnalyticsConfig()
        self.clock = clock or WorkingTimeClock.from_config(self.config)
        self.rules = list(rules) if rules is not None else list(DEFAULT_TRANSITION_RULES)
        self.onward_caps = dict(onward_caps) if onward_caps is not None else dict(DEFAULT_ONWARD_CAPS)

    def classify(self, entry: EventLogEntry) -> Optional[Tuple[TransitionKind, Optional[Stage]]]:
        """First matching rule for a log entry, or None if the phrase is unknown."""
        action = entry.normalized_action
        for rule in self.rules:
            result = rule.match(action)
            if result is not None:
                return result
        return None

    def participates(self, case: Case) -> bool:
        """Whether the case is under stage tracking at all."""
        return (
            case.department in self.config.tracked_departments
            and case.created_at >= self.config.stage_tracking_start
        )

    def replay(self, case: Case, now: datetime) -> List[StageVisit]:
        """Reconstruct the ordered stage visits of a case.

        Args:
            case: Case snapshot
            now: Reference time of the run (used for stale-visit recovery)

        Returns:
            Chronological visits; empty when the case is not stage-tracked
        """
        if not self.participates(case):
            return []

        timeline: List[StageVisit] = []
        open_stage: Optional[Stage] = Stage.DESIGN
        open_since: datetime = case.created_at
        seeded = True
        finished = False

        for entry in case.sorted_history():
            match = self.classify(entry)
            if match is None:
                logger.debug(f"Case {case.case_number}: ignoring action {entry.action!r}")
                continue

            kind, stage = match
            at = entry.created_at

            if kind is TransitionKind.DONE:
                if open_stage is not None:
                    _close(timeline, open_stage, open_since, at)
                open_stage = None
                finished = True
                break

            if kind is TransitionKind.TRANSFER:
                if open_stage is not None:
                    _close(timeline, open_stage, open_since, at)
                open_stage, open_since, seeded = stage, at, False

            elif kind is TransitionKind.ASSIGN:
                if open_stage is None:
                    open_stage, open_since, seeded = stage, at, False
                elif seeded:
                    open_stage, seeded = stage, False

        if open_stage is not None and not finished:
            self._settle_open_visit(case, timeline, open_stage, open_since, now)

        return timeline

    def _settle_open_visit(
        self,
        case: Case,
        timeline: List[StageVisit],
        stage: Stage,
        since: datetime,
        now: datetime,
    ) -> None:
        """Keep, close, or force-close the visit still open after replay."""
        if case.completed:
            _close(timeline, stage, since, case.completed_at or now)
            return

        tagged = case.current_stage
        if stage != tagged:
            # Stale transition: the log missed the move the tag reflects
            logger.warning(
                f"Case {case.case_number}: replay ends in {stage.value} but tag says "
                f"{tagged.value}; closing stale visit at reference time"
            )
            _close(timeline, stage, since, now)
            return

        timeline.append(StageVisit(stage=stage, entered_at=since, exited_at=None))

    def hold_periods(self, case: Case, now: datetime) -> List[HoldPeriod]:
        """Hold intervals from 'hold added' / 'hold removed' pairs.

        An unmatched 'hold added' runs until ``now`` only while the case still
        carries the hold tag.
        """
        periods: List[HoldPeriod] = []
        hold_start: Optional[datetime] = None

        for entry in case.sorted_history():
            match = self.classify(entry)
            if match is None:
                continue
            kind = match[0]
            if kind is TransitionKind.HOLD_ADDED:
                hold_start = entry.created_at
            elif kind is TransitionKind.HOLD_REMOVED and hold_start is not None:
                periods.append(HoldPeriod(start=hold_start, end=entry.created_at))
                hold_start = None

        if hold_start is not None and case.on_hold and now > hold_start:
            periods.append(HoldPeriod(start=hold_start, end=now))

        return periods

    def stage_time(
        self,
        case: Case,
        stage: Stage,
        now: datetime,
        timeline: Optional[List[StageVisit]] = None,
    ) -> StageTime:
        """Total, working and hold-adjusted time a case spent in ``stage``.

        Args:
            case: Case snapshot
            stage: Stage to measure
            now: Reference time; open visits run until it
            timeline: Pre-computed replay result (replayed when omitted)
        """
        if timeline is None:
            timeline = self.replay(case, now)

        visits = self._apply_onward_cap(case, stage, [v for v in timeline if v.stage == stage])
        holds = self.hold_periods(case, now) if visits else []

        total = working = hold = working_hold = 0.0
        is_active = False
        for visit in visits:
            start, end = visit.entered_at, visit.end_or(now)
            total += max(0.0, (end - start).total_seconds())
            working += self.clock.working_seconds(start, end)
            if visit.is_open and not case.completed:
                is_active = True

            for period in holds:
                if period.start < end and period.end > start:
                    overlap_start = max(period.start, start)
                    overlap_end = min(period.end, end)
                    hold += (overlap_end - overlap_start).total_seconds()
                    working_hold += self.clock.working_seconds(overlap_start, overlap_end)

        return StageTime(
            stage=stage,
            total_seconds=total,
            working_seconds=working,
            hold_seconds=hold,
            working_hold_seconds=working_hold,
            adjusted_seconds=max(0.0, total - hold),
            adjusted_working_seconds=max(0.0, working - working_hold),
            visit_count=len(visits),
            is_active=is_active,
            visits=visits,
            timeline=timeline,
        )

    def _apply_onward_cap(self, case: Case, stage: Stage, visits: List[StageVisit]) -> List[StageVisit]:
        pattern = self.onward_caps.get(stage)
        if pattern is None or not visits:
            return visits

        cap = next(
            (e.created_at for e in case.sorted_history() if pattern.search(e.normalized_action)),
            None,
        )
        if cap is None:
            return visits

        capped = []
        for visit in visits:
            if visit.entered_at <= cap and (visit.exited_at is None or visit.exited_at > cap):
                visit = visit.model_copy(update={"exited_at": cap})
            capped.append(visit)
        return capped

    @staticmethod
    def stage_at(timeline: Sequence[StageVisit], instant: datetime) -> Optional[Stage]:
        """Stage the case was logically in at ``instant``.

        Between visits (or after the last one) the most recently entered
        stage is returned; before the first visit, None.
        """
        current: Optional[Stage] = None
        for visit in timeline:
            if visit.entered_at > instant:
                break
            if visit.contains(instant):
                return visit.stage
            current = visit.stage
        return current


def _close(timeline: List[StageVisit], stage: Stage, since: datetime, at: datetime) -> None:
    """Append a closed visit; zero-length visits carry no time and are dropped."""
    exited = max(at, since)
    if exited > since:
        timeline.append(StageVisit(stage=stage, entered_at=since, exited_at=exited))
