"""Buffer compliance and on-time delivery scoring."""

from lab_throughput.core.compliance.buffer import BufferComplianceAnalyzer, iqr_trimmed_mean
from lab_throughput.core.compliance.delivery import DeliveryInput, DeliveryScorer

__all__ = [
    "BufferComplianceAnalyzer",
    "DeliveryInput",
    "DeliveryScorer",
    "iqr_trimmed_mean",
]
