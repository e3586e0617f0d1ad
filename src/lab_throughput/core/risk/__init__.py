"""Deadline risk prediction for active cases."""

from lab_throughput.core.risk.predictor import RiskPredictor, category_loads, recommendation_for

__all__ = [
    "RiskPredictor",
    "category_loads",
    "recommendation_for",
]
