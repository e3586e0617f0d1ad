"""Human-readable formatting of durations."""

import math
from typing import Optional


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration as "2d 3h", "4h 15m" or "12m" ("-" for empty values)."""
    if not seconds or not math.isfinite(seconds):
        return "-"

    total_minutes = int(seconds // 60)
    hours = total_minutes // 60
    days = hours // 24
    minutes = total_minutes % 60

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"

