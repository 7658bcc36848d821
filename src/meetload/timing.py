from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Return a monotonic timestamp in seconds."""

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for ``seconds``."""


class MonotonicClock:
    """Real-time clock used for pacing audio and polling result queues."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))
