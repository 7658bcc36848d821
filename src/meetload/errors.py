"""Exception hierarchy for scenario-level failures."""

from __future__ import annotations

from typing import Sequence


class ConfigError(ValueError):
    """Raised when the load test configuration is incomplete or invalid."""


class LoadTestError(RuntimeError):
    """Base class for failures that abort a scenario at a given stage."""

    stage = "unknown"


class HandshakeError(LoadTestError):
    stage = "setup"

    def __init__(self, not_ready: Sequence[str], timeout: float):
        self.not_ready = list(not_ready)
        self.timeout = timeout
        super().__init__(
            f"{len(self.not_ready)} client(s) not ready after {timeout:g}s: {', '.join(self.not_ready)}"
        )


class StreamingError(LoadTestError):
    stage = "streaming"


class QuiescenceTimeout(LoadTestError):
    stage = "quiescence"

    def __init__(self, timeout: float, saw_final: bool):
        self.timeout = timeout
        self.saw_final = saw_final
        if saw_final:
            reason = "final results arrived but output never quieted down"
        else:
            reason = "no final result ever arrived"
        super().__init__(f"Quiescence not reached within {timeout:g}s: {reason}")
