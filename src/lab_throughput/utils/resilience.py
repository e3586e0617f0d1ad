"""Retry policies for calls to the case store.

Transient transport failures (connection refused during a restart, read
timeouts) are retried with exponential backoff. HTTP error statuses are not
retried; they surface immediately.
"""

import logging
from typing import Callable, Tuple, Type, TypeVar

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (httpx.TransportError,)


def create_custom_retry(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8,
    multiplier: float = 1,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Create a retry decorator with specific parameters.

    Args:
        max_attempts: Maximum number of attempts (1 disables retrying)
        min_wait: Minimum wait time between attempts (seconds)
        max_wait: Maximum wait time between attempts (seconds)
        multiplier: Exponential backoff multiplier
        retry_on: Exception types that trigger another attempt

    Returns:
        A retry decorator; the last exception is re-raised when attempts run out

    Example:
        ```python
        fetch_retry = create_custom_retry(max_attempts=5, min_wait=1, max_wait=10)

        @fetch_retry
        async def load_cases():
            ...
        ```
    """
    return retry(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )

