"""Exceptions raised by the throughput analytics library."""

from typing import Optional


class ThroughputError(Exception):
    """Base class for all library errors."""


class PopulationFetchError(ThroughputError):
    """The case population for a run could not be fetched.

    Terminal for the run: no partial report is produced from an incomplete
    population.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class ConfigurationError(ThroughputError):
    """An analytics configuration value is invalid."""
