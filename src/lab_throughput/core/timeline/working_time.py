"""Working-time clock.

Converts wall-clock intervals into working time: the number of fixed-length
steps, starting at the interval start, whose start instant falls on a weekday
inside the daily working window of the local calendar, times the step length.

Counting is done per local day in closed form instead of stepping minute by
minute, so a 30-day interval costs ~30 iterations. Window edges are resolved
through the local calendar, which keeps DST days at their real local length.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from lab_throughput.config import AnalyticsConfig
from lab_throughput.models.case import ensure_utc

logger = logging.getLogger(__name__)

_MICROS = 1_000_000


class WorkingTimeClock:
    """Measures elapsed working time in a local business calendar.

    Example:
        ```python
        clock = WorkingTimeClock("America/Denver", start_hour=8, end_hour=17)
        clock.working_seconds(monday_7am, monday_6pm)  # 9 hours -> 32400.0
        ```
    """

    def __init__(
        self,
        tz_name: str = "America/Denver",
        start_hour: int = 8,
        end_hour: int = 17,
        step_seconds: int = 60,
    ):
        """Initialize the clock.

        Args:
            tz_name: IANA timezone whose calendar defines days and hours
            start_hour: First working hour (inclusive, local)
            end_hour: End of the working window (exclusive, local)
            step_seconds: Length of one counting step
        """
        if start_hour >= end_hour:
            raise ValueError(f"start_hour ({start_hour}) must be before end_hour ({end_hour})")
        self.zone = ZoneInfo(tz_name)
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.step_seconds = step_seconds
        self._step_us = step_seconds * _MICROS

    @classmethod
    def from_config(cls, config: AnalyticsConfig) -> "WorkingTimeClock":
        return cls(
            tz_name=config.working_timezone,
            start_hour=config.workday_start_hour,
            end_hour=config.workday_end_hour,
            step_seconds=config.step_seconds,
        )

    def working_seconds(self, start: datetime, end: datetime) -> float:
        """Working time between ``start`` and ``end`` in seconds (0 if end <= start)."""
        start_utc = ensure_utc(start).astimezone(timezone.utc)
        end_utc = ensure_utc(end).astimezone(timezone.utc)
        if end_utc <= start_utc:
            return 0.0

        steps = 0
        day = start_utc.astimezone(self.zone).date()
        last_day = end_utc.astimezone(self.zone).date()
        while day <= last_day:
            if day.weekday() < 5:
                window_start, window_end = self._window(day)
                steps += self._count_steps(
                    start_utc,
                    max(window_start, start_utc),
                    min(window_end, end_utc),
                )
            day += timedelta(days=1)

        return float(steps * self.step_seconds)

    def end_of_due_day(self, due: date) -> datetime:
        """Last instant of the due date on the local calendar (the case deadline)."""
        return datetime.combine(due, time.max, tzinfo=self.zone).astimezone(timezone.utc)

    def _window(self, day: date):
        """Working window of a local day as UTC instants."""
        window_start = datetime.combine(day, time(self.start_hour), tzinfo=self.zone)
        if self.end_hour >= 24:
            window_end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=self.zone)
        else:
            window_end = datetime.combine(day, time(self.end_hour), tzinfo=self.zone)
        return window_start.astimezone(timezone.utc), window_end.astimezone(timezone.utc)

    def _count_steps(self, origin: datetime, lo: datetime, hi: datetime) -> int:
        """Number of steps origin + k*step (k >= 0) lying in [lo, hi)."""
        if hi <= lo:
            return 0
        lo_us = _to_micros(lo - origin)
        hi_us = _to_micros(hi - origin)
        first = -(-lo_us // self._step_us)
        past_last = -(-hi_us // self._step_us)
        return max(0, past_last - first)


def _to_micros(delta: timedelta) -> int:
    return (delta.days * 86400 + delta.seconds) * _MICROS + delta.microseconds

