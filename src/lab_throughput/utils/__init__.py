"""Utility Functions"""

from lab_throughput.utils.formatting import format_duration
from lab_throughput.utils.resilience import TRANSIENT_ERRORS, create_custom_retry

__all__ = [
    "format_duration",
    "TRANSIENT_ERRORS",
    "create_custom_retry",
]
