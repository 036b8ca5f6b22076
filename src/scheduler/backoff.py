"""Retry delay calculation for failed task executions."""

import random


def retry_delay(
    retry: int,
    base_delay: float,
    multiplier: float = 1.0,
    max_delay: float | None = None,
    jitter: float = 0.0,
) -> float:
    """
    Delay in seconds before the given retry (1 for the first retry).

    The first retry waits base_delay; each later one multiplies it by
    multiplier, capped at max_delay. jitter adds a random +/- fraction.
    """
    delay = base_delay * (multiplier ** max(0, retry - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    if jitter:
        delay += delay * random.uniform(-jitter, jitter)
    return max(0.0, delay)
