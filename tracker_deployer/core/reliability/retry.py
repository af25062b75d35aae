"""
Retry with exponential backoff and jitter.

Used by the environment store to wait out a held lock. Steps never
retry; the pipeline never retries.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Backoff:
    """Delay schedule: ``base * 2**(attempt-1)`` capped at ``max_delay``, plus jitter."""

    base_delay: float = 0.2
    max_delay: float = 2.0
    jitter: float = 0.3

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)


def retry_call(
    fn: Callable[[], T],
    *,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    attempts: int,
    backoff: Backoff | None = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """Call ``fn`` up to ``attempts`` times while it raises ``retry_on``.

    The last exception propagates once attempts are exhausted. Other
    exceptions propagate immediately.
    """
    backoff = backoff or Backoff()
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning("%s: giving up after %d attempts", label, attempt)
                raise
            wait = backoff.delay(attempt)
            logger.debug(
                "%s: attempt %d/%d failed (%s), retrying in %.2fs",
                label,
                attempt,
                attempts,
                e,
                wait,
            )
            sleep(wait)
    raise AssertionError("unreachable")
