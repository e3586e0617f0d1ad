"""Timeline reconstruction: working-time clock and event-log replay."""

from lab_throughput.core.timeline.working_time import WorkingTimeClock
from lab_throughput.core.timeline.replay import (
    DEFAULT_ONWARD_CAPS,
    DEFAULT_TRANSITION_RULES,
    TimelineReplayer,
    TransitionKind,
    TransitionRule,
)

__all__ = [
    "WorkingTimeClock",
    "TimelineReplayer",
    "TransitionKind",
    "TransitionRule",
    "DEFAULT_TRANSITION_RULES",
    "DEFAULT_ONWARD_CAPS",
]
