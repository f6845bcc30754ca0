"""Retry logic with exponential backoff.

This module provides:
- compute_backoff: Delay before the next attempt of a failed upload
- retry_with_backoff: Bounded in-call retry used while downloading
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Any

from punchlist.client.api import NetworkUnavailableError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    NetworkUnavailableError,
    ConnectionError,
    TimeoutError,
)


def compute_backoff(
    retry_count: int,
    initial: float = DEFAULT_INITIAL_BACKOFF,
    maximum: float = DEFAULT_MAX_BACKOFF,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    jitter: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Compute the delay after the ``retry_count``-th failure.

    Args:
        retry_count: Failures so far (1 for the first failure).
        initial: Delay after the first failure; 0 disables backoff.
        maximum: Upper bound of the delay.
        multiplier: Growth factor between consecutive delays.
        jitter: Proportional spread (0.1 spreads the delay by +/-10%).
        rng: Random source returning floats in [0, 1).

    Returns:
        Delay in seconds, never negative.
    """
    if initial <= 0 or retry_count <= 0:
        return 0.0
    delay = min(initial * multiplier ** (retry_count - 1), maximum)
    if jitter:
        delay *= 1 + jitter * (2 * rng() - 1)
    return max(0.0, delay)


def retry_with_backoff(
    func: Callable[[], Any],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = NETWORK_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Sleep function (tests inject a no-op).

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail. Exceptions outside
        ``retryable_exceptions`` propagate immediately.
    """
    backoff = initial_backoff

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                if max_retries:
                    logger.warning("All %d retries failed: %s", max_retries, e)
                raise

            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt + 1,
                max_retries + 1,
                e,
                backoff,
            )
            sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")
