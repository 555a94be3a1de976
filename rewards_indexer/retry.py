"""Retry timing for subscription setup."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"
BACKOFF_MODES = (BACKOFF_FIXED, BACKOFF_EXPONENTIAL)

DEFAULT_DELAY_SECONDS = 60.0


@dataclass(frozen=True)
class RetryPolicy:
    delay_seconds: float = DEFAULT_DELAY_SECONDS
    max_attempts: Optional[int] = None  # None = retry forever
    backoff: str = BACKOFF_FIXED
    max_delay_seconds: float = 600.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        if self.backoff not in BACKOFF_MODES:
            raise ValueError(f"backoff must be one of {BACKOFF_MODES}, got {self.backoff!r}")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    def should_retry(self, attempts_made: int) -> bool:
        return self.max_attempts is None or attempts_made < self.max_attempts

    def delay_for(self, failures: int, rng: random.Random | None = None) -> float:
        """Delay to wait after the ``failures``-th consecutive failed attempt (1-based)."""
        if self.backoff == BACKOFF_FIXED:
            delay = self.delay_seconds
        else:
            delay = min(self.delay_seconds * (2 ** max(failures - 1, 0)), self.max_delay_seconds)
        if self.jitter:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(delay, 0.0)


def describe_delay(seconds: float) -> str:
    """Human wording used in the retry log line, e.g. ``"1 minute"``."""
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" + ("" if minutes == 1 else "s")
    if float(seconds).is_integer():
        secs = int(seconds)
        return f"{secs} second" + ("" if secs == 1 else "s")
    return f"{seconds:.1f} seconds"
