"""Reconcile deadlines propagated to every cluster call."""

import time
from typing import Callable, Optional

from clusterscan.core.exceptions import DeadlineExceeded


class Deadline:
    """Absolute point in (monotonic) time after which calls must not start."""

    def __init__(self, expires_at: float, clock: Callable[[], float] = time.monotonic):
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(clock() + seconds, clock)

    def remaining(self) -> float:
        """Seconds left; raises DeadlineExceeded once expired."""
        left = self.expires_at - self._clock()
        if left <= 0:
            raise DeadlineExceeded("reconcile deadline exceeded")
        return left

    def timeout(self, ceiling: Optional[float] = None) -> float:
        """Request timeout bounded by both the deadline and a per-call ceiling."""
        left = self.remaining()
        if ceiling is None:
            return left
        return min(ceiling, left)
