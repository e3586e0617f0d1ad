"""Analytics engine: timeline replay, statistics, velocity, compliance, risk, efficiency."""

from lab_throughput.core.compliance import BufferComplianceAnalyzer, DeliveryScorer
from lab_throughput.core.efficiency import EfficiencyAggregator
from lab_throughput.core.pipeline import CaseSource, ThroughputAnalytics, benchmark_targets
from lab_throughput.core.processing import ChunkedProcessor, ProgressTracker
from lab_throughput.core.risk import RiskPredictor
from lab_throughput.core.statistics import PopulationStatistics
from lab_throughput.core.timeline import TimelineReplayer, WorkingTimeClock
from lab_throughput.core.velocity import VelocityEngine

__all__ = [
    # Run
    "ThroughputAnalytics",
    "CaseSource",
    "benchmark_targets",
    "ChunkedProcessor",
    "ProgressTracker",
    # Components
    "WorkingTimeClock",
    "TimelineReplayer",
    "PopulationStatistics",
    "VelocityEngine",
    "BufferComplianceAnalyzer",
    "DeliveryScorer",
    "RiskPredictor",
    "EfficiencyAggregator",
]
