"""Reconnect backoff policy."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff between reconnect attempts.

    ``max_attempts`` of None retries forever. ``reset_after`` is how long a
    connection must be held before the attempt counter starts over.
    ``jitter`` is a fraction of the computed delay added at random.
    """

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    max_attempts: Optional[int] = None
    reset_after: float = 30.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("backoff delays must satisfy 0 <= base_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("backoff multiplier must be >= 1")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("backoff max_attempts must be positive or None")
        if not 0 <= self.jitter <= 1:
            raise ValueError("backoff jitter must be between 0 and 1")

    def delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Return the sleep before reconnect attempt number ``attempt`` (0-based)."""

        # Past a few dozen attempts the cap always wins; avoid float overflow.
        exponent = min(max(attempt, 0), 64)
        delay = min(self.base_delay * (self.multiplier ** exponent), self.max_delay)
        if self.jitter:
            delay = min(delay + delay * self.jitter * rand(), self.max_delay)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts
