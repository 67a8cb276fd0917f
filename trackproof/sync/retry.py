"""
Retry backoff for transient attempt failures.
"""

import random
from dataclasses import dataclass, field
from typing import Callable

from trackproof.config import SyncSettings


@dataclass
class RetryPolicy:
    """
    Capped exponential backoff with additive jitter.

    The delay before retry n (n=1 after the first failed attempt) is
    min(max_seconds, base_seconds * factor ** (n - 1)) plus a uniform
    jitter in [0, jitter_seconds].
    """

    max_attempts: int = 3
    base_seconds: float = 2.0
    factor: float = 2.0
    max_seconds: float = 30.0
    jitter_seconds: float = 1.0
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after `attempt` attempts."""
        return attempt < self.max_attempts

    def delay_for(self, retry_number: int) -> float:
        if retry_number < 1:
            raise ValueError("retry_number starts at 1")
        delay = min(self.max_seconds, self.base_seconds * self.factor ** (retry_number - 1))
        return delay + self.rng() * self.jitter_seconds

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_seconds=settings.backoff_base_seconds,
            factor=settings.backoff_factor,
            max_seconds=settings.backoff_max_seconds,
            jitter_seconds=settings.backoff_jitter_seconds,
        )
