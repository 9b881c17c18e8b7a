"""
Delay policies for throttling and retry backoff.

Batch geocoding pauses between upstream calls to stay under provider rate limits,
and retries back off linearly. Both go through a small `DelayPolicy` so tests can
swap in `NoDelay` without touching business logic.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class DelayPolicy(Protocol):
    def wait(self, attempt: int = 0) -> None: ...


@dataclass(frozen=True)
class NoDelay:
    """Never sleeps."""

    def wait(self, attempt: int = 0) -> None:
        return None


@dataclass(frozen=True)
class FixedDelay:
    """Sleep the same amount before every request (batch throttle)."""

    seconds: float

    def __post_init__(self) -> None:
        if float(self.seconds) < 0:
            raise ValueError("seconds must be >= 0")

    def wait(self, attempt: int = 0) -> None:
        if self.seconds > 0:
            time.sleep(float(self.seconds))


@dataclass(frozen=True)
class LinearBackoff:
    """Sleep `step_seconds * attempt` (attempt is 1-based)."""

    step_seconds: float = 1.0

    def __post_init__(self) -> None:
        if float(self.step_seconds) < 0:
            raise ValueError("step_seconds must be >= 0")

    def wait(self, attempt: int = 0) -> None:
        delay = float(self.step_seconds) * max(0, int(attempt))
        if delay > 0:
            time.sleep(delay)
