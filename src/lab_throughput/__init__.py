"""Lab Throughput Core

Case throughput analytics for a dental-lab production board: stage timeline
replay, load-adjusted benchmarks, buffer-aware delivery scoring and deadline
risk prediction.
"""

__version__ = "0.1.0"

# Export models and configuration first (no engine dependencies)
from lab_throughput.models import (
    Case, CaseCategory, EventLogEntry, Stage, StageReport,
)
from lab_throughput.config import AnalyticsConfig, get_config, reset_config
from lab_throughput.exceptions import (
    ConfigurationError,
    PopulationFetchError,
    ThroughputError,
)
from lab_throughput.core import ThroughputAnalytics, benchmark_targets


# Lazy import for clients; the engine never needs them
def __getattr__(name):
    """Lazy import for CaseStoreClient."""
    if name == "CaseStoreClient":
        from lab_throughput.clients import CaseStoreClient
        return CaseStoreClient
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    # Models
    "Case", "CaseCategory", "EventLogEntry", "Stage", "StageReport",
    # Configuration
    "AnalyticsConfig",
    "get_config",
    "reset_config",
    # Errors
    "ThroughputError",
    "PopulationFetchError",
    "ConfigurationError",
    # Engine
    "ThroughputAnalytics",
    "benchmark_targets",
    # Clients (lazy loaded)
    "CaseStoreClient",
]
