"""
Repeated scenario runner.

Each iteration builds fresh participants (they are never reused across
meetings), runs one batch and feeds the result into a latency collector.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import LoadTestConfig
from .engine import MeetingLoadTest, ScenarioResult
from .logging_utils import RichLogger
from .metrics import LatencyCollector, LatencyStats
from .participants import Room, build_rooms
from .timing import Clock, MonotonicClock

RoomFactory = Callable[[], Sequence[Room]]


@dataclass
class RunSummary:
    """Results of all iterations of one scenario."""

    results: List[ScenarioResult]
    latency: LatencyStats
    translation_latency: LatencyStats
    failure_rate: float
    max_consecutive_failures: int
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def passed(self) -> bool:
        return bool(self.results) and all(r.succeeded for r in self.results)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "iterations": len(self.results),
            "passed": self.passed,
            "failure_rate": self.failure_rate,
            "max_consecutive_failures": self.max_consecutive_failures,
            "latency": self.latency.to_dict(),
            "translation_latency": self.translation_latency.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "results": [r.to_dict() for r in self.results],
        }


class ScenarioRunner:
    """Runs a scenario ``config.iterations`` times."""

    def __init__(
        self,
        config: LoadTestConfig,
        logger: RichLogger,
        audio_buffers: Sequence[bytes],
        clock: Optional[Clock] = None,
        room_factory: Optional[RoomFactory] = None,
    ):
        """
        Initialize the runner.

        Args:
            config: Scenario configuration
            logger: Shared logger
            audio_buffers: WAV buffers distributed across speakers
            clock: Clock for pacing and polling
            room_factory: Builds the rooms for one iteration; defaults to
                :func:`build_rooms` with real websocket clients
        """
        self.config = config
        self.logger = logger
        self.audio_buffers = list(audio_buffers)
        self.clock = clock or MonotonicClock()
        self.room_factory = room_factory or self._build_rooms
        self.engine = MeetingLoadTest(config, logger, self.clock)
        self.collector = LatencyCollector(config.meeting_prefix)

    def run(self) -> RunSummary:
        consecutive_failures = 0
        max_consecutive_failures = 0

        for iteration in range(1, self.config.iterations + 1):
            if self.config.iterations > 1:
                self.logger.log_panel(
                    f"Iteration {iteration}/{self.config.iterations}", "ITERATION", "cyan"
                )
            result = self.engine.run(self.room_factory())
            self.collector.add(result)

            if result.succeeded:
                consecutive_failures = 0
            else:
                consecutive_failures += 1
                max_consecutive_failures = max(max_consecutive_failures, consecutive_failures)

            if iteration < self.config.iterations:
                self.clock.sleep(self.config.iteration_pause)

        return RunSummary(
            results=list(self.collector.results),
            latency=self.collector.get_stats("latency_ms"),
            translation_latency=self.collector.get_stats("translation_latency_ms"),
            failure_rate=self.collector.failure_rate,
            max_consecutive_failures=max_consecutive_failures,
        )

    def _build_rooms(self) -> Sequence[Room]:
        return build_rooms(self.config, self.logger, self.audio_buffers, self.clock)


def save_results(summary: RunSummary, config: LoadTestConfig, output_dir: Path) -> Path:
    """
    Save a run summary to JSON.

    Args:
        summary: RunSummary to save
        config: Configuration the run used (token redacted)
        output_dir: Directory to save results

    Returns:
        Path to saved file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_path = output_dir / f"meetload_{config.meeting_prefix}_{timestamp}.json"

    data = {"config": config.to_dict(), "summary": summary.to_dict()}
    with open(output_path, "w") as f:
        json.dump(data, f, indent=2)

    return output_path
