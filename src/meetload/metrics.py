"""Latency statistics aggregated over repeated scenario runs."""

import statistics
from dataclasses import dataclass
from typing import Iterable, Optional

from .engine import ScenarioResult


@dataclass
class LatencyStats:
    """Aggregated latency statistics from multiple measurements."""

    count: int
    mean: float
    std: float
    min: float
    max: float
    p50: float  # Median
    p90: float
    p95: float
    p99: float

    @classmethod
    def from_values(cls, values: Iterable[float]) -> "LatencyStats":
        values = list(values)
        if not values:
            return cls(count=0, mean=0.0, std=0.0, min=0.0, max=0.0, p50=0.0, p90=0.0, p95=0.0, p99=0.0)

        sorted_values = sorted(values)
        n = len(sorted_values)

        return cls(
            count=n,
            mean=statistics.mean(values),
            std=statistics.stdev(values) if n > 1 else 0.0,
            min=sorted_values[0],
            max=sorted_values[-1],
            p50=sorted_values[int(n * 0.50)],
            p90=sorted_values[int(n * 0.90)] if n >= 10 else sorted_values[-1],
            p95=sorted_values[int(n * 0.95)] if n >= 20 else sorted_values[-1],
            p99=sorted_values[int(n * 0.99)] if n >= 100 else sorted_values[-1],
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "count": self.count,
            "mean": self.mean,
            "std": self.std,
            "min": self.min,
            "max": self.max,
            "p50": self.p50,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
        }


class LatencyCollector:
    """Collects scenario results and aggregates their latencies."""

    METRICS = ("latency_ms", "translation_latency_ms", "streaming_ms", "total_scenario_time_ms")

    def __init__(self, name: str = "default"):
        self.name = name
        self.results: list[ScenarioResult] = []

    def add(self, result: ScenarioResult) -> None:
        self.results.append(result)

    def get_stats(self, metric: str = "latency_ms") -> LatencyStats:
        """
        Calculate statistics for a metric over successful runs with a final result.

        Runs whose value for ``metric`` is ``None`` or 0 (for latencies: no
        final of that kind observed) are excluded.
        """
        if metric not in self.METRICS:
            raise ValueError(f"Unknown metric {metric!r}")
        values = []
        for result in self.results:
            if not result.succeeded:
                continue
            value: Optional[float] = getattr(result, metric)
            if value is not None and value > 0:
                values.append(float(value))
        return LatencyStats.from_values(values)

    def get_all_stats(self) -> dict[str, LatencyStats]:
        return {metric: self.get_stats(metric) for metric in self.METRICS}

    @property
    def failure_rate(self) -> float:
        if not self.results:
            return 0.0
        return sum(1 for r in self.results if not r.succeeded) / len(self.results)

    def to_dict(self) -> dict:
        """Export all data as dictionary."""
        return {
            "name": self.name,
            "count": len(self.results),
            "failure_rate": self.failure_rate,
            "stats": {k: v.to_dict() for k, v in self.get_all_stats().items()},
        }
