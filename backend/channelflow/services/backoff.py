"""Exponential backoff with jitter for retried channel calls."""

import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from channelflow.config import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry delay policy.

    Attributes:
        base_seconds: Delay before the first retry.
        cap_seconds: Upper bound of the nominal delay.
        jitter: Fraction of the delay added or removed at random (0.2 = +/-20%).
        rng: Random source, injectable for deterministic tests.
    """
    base_seconds: float = 60.0
    cap_seconds: float = 86400.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, rng: Optional[random.Random] = None) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.RETRY_BASE_SECONDS,
            cap_seconds=settings.RETRY_CAP_SECONDS,
            jitter=settings.RETRY_JITTER,
            rng=rng or random.Random(),
        )

    def nominal_seconds(self, attempt: int) -> float:
        """base * 2^(attempt-1), capped. Attempts are 1-indexed."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        # exponent bounded so huge attempt counts do not overflow
        exponent = min(attempt - 1, 64)
        return min(self.base_seconds * (2 ** exponent), self.cap_seconds)

    def delay(self, attempt: int) -> timedelta:
        nominal = self.nominal_seconds(attempt)
        if self.jitter:
            nominal *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return timedelta(seconds=max(0.0, nominal))
