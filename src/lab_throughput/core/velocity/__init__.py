"""Velocity engine: load-adjusted benchmarks and velocity scores."""

from lab_throughput.core.velocity.engine import VelocityEngine, classify_completions, round_half_up

__all__ = [
    "VelocityEngine",
    "classify_completions",
    "round_half_up",
]
