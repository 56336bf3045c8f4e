"""Retry backoff for failed job attempts.

backoff(n) = min(max, base * 2^(n-1)); the applied delay multiplies it by a
uniform factor in [1-jitter, 1+jitter] and is capped at max again.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sellerops.core.config import Settings
from sellerops.shared.utils.datetime import utc_now


@dataclass
class RetryPolicy:
    base_seconds: float = 30.0
    max_seconds: float = 3600.0
    jitter: float = 0.5
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            base_seconds=settings.backoff_base_seconds,
            max_seconds=settings.backoff_max_seconds,
            jitter=settings.backoff_jitter,
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Deterministic (no jitter) delay after the given attempt number (1-based)."""
        exponent = max(0, attempt - 1)
        # 2 ** 64 already dwarfs any sane cap; avoid float overflow on huge attempts
        if exponent >= 64:
            return self.max_seconds
        return min(self.max_seconds, self.base_seconds * (2.0**exponent))

    def delay_seconds(self, attempt: int) -> float:
        """Jittered delay, never above max_seconds."""
        lo = 1.0 - self.jitter
        hi = 1.0 + self.jitter
        factor = lo + (hi - lo) * self.rng.random()
        return min(self.max_seconds, self.backoff_seconds(attempt) * factor)

    def next_run_at(self, attempt: int, now: datetime | None = None) -> datetime:
        return (now or utc_now()) + timedelta(seconds=self.delay_seconds(attempt))
