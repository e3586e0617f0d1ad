"""Descriptive statistics, outlier detection and population screening."""

from lab_throughput.core.statistics.population import (
    MANUAL_EXCLUSION_REASON,
    PopulationStatistics,
    active_counts_at_start,
    detect_outliers,
    iqr_fences,
    mean,
    median,
    mode,
    percentile,
    sample_std,
)

__all__ = [
    "PopulationStatistics",
    "MANUAL_EXCLUSION_REASON",
    "active_counts_at_start",
    "detect_outliers",
    "iqr_fences",
    "mean",
    "median",
    "mode",
    "percentile",
    "sample_std",
]
