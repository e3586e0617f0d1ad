"""Combined stage efficiency scoring."""

from lab_throughput.core.efficiency.aggregator import EfficiencyAggregator, confidence_label

__all__ = [
    "EfficiencyAggregator",
    "confidence_label",
]
