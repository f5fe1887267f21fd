"""
Call pacing and retry for broker requests.

CallThrottle enforces a fixed minimum interval between consecutive calls.
call_with_retry retries only TransientBrokerError, sleeping per
RETRY_DELAYS; domain rejections propagate on the first attempt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence, TypeVar

from execution.broker import BrokerError, TransientBrokerError

logger = logging.getLogger("portfolio.broker")

RETRY_DELAYS = [1, 5, 30]  # seconds, exponential-ish backoff

T = TypeVar("T")


class CallThrottle:
    """Block until at least ``min_interval`` seconds passed since the previous call."""

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def wait(self) -> float:
        """Sleep as needed; return the seconds slept."""
        now = self._clock()
        waited = 0.0
        if self._last is not None:
            remaining = self._min_interval - (now - self._last)
            if remaining > 0:
                self._sleep(remaining)
                waited = remaining
                now = self._clock()
        self._last = now
        return waited


def call_with_retry(
    fn: Callable[[], T],
    *,
    description: str,
    max_retries: int = 3,
    delays: Sequence[float] = RETRY_DELAYS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn*, retrying TransientBrokerError up to *max_retries* extra times.

    Any other exception propagates immediately. When retries are exhausted
    the last transient error is re-raised as a non-retryable BrokerError.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except TransientBrokerError as exc:
            if attempt >= max_retries:
                raise BrokerError(
                    f"{description} failed after {attempt + 1} attempt(s): {exc}",
                    code=exc.code,
                ) from exc
            delay = delays[min(attempt, len(delays) - 1)] if delays else 0
            attempt += 1
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %ss",
                description, attempt, max_retries + 1, exc, delay,
            )
            sleep(delay)
