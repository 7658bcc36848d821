from __future__ import annotations

from rich.console import Console
from rich.table import Table

from .engine import ScenarioResult, ScenarioStatus
from .metrics import LatencyStats
from .runner import RunSummary

_STATUS_STYLES = {
    ScenarioStatus.SUCCESS: "green",
    ScenarioStatus.FAILED: "red",
    ScenarioStatus.CONTAMINATED: "magenta",
}


def result_table(result: ScenarioResult, title: str = "Scenario result") -> Table:
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    status = result.status.value
    table.add_row("Status", f"[{_STATUS_STYLES[result.status]}]{status}[/]")
    if result.stage:
        table.add_row("Failed stage", result.stage)
        table.add_row("Reason", result.error or "")
    table.add_row("Meetings", ", ".join(result.meeting_ids))
    table.add_row("Participants", str(result.participant_count))
    table.add_row("Speakers", str(result.speaker_count))
    table.add_row("E2E latency", f"{result.latency_ms} ms" if result.latency_ms else "no final result")
    if result.translation_latency_ms is not None:
        table.add_row("Translation latency", f"{result.translation_latency_ms} ms")
    table.add_row("Streaming time", f"{result.streaming_ms} ms")
    table.add_row("Scenario time", f"{result.total_scenario_time_ms} ms")
    table.add_row("Messages / finals", f"{result.message_count} / {result.final_count}")

    for room, speakers in sorted(result.max_utterance_idx.items()):
        indexes = ", ".join(f"{name}={index}" for name, index in sorted(speakers.items())) or "N/A"
        table.add_row(f"Max utteranceIdx [{room}]", indexes)
    for room, speakers in sorted(result.out_of_order_finals.items()):
        counts = ", ".join(f"{name}={count}" for name, count in sorted(speakers.items()))
        table.add_row(f"Out-of-order finals [{room}]", counts)
    if result.violations:
        table.add_row("Isolation violations", str(len(result.violations)))
    return table


def stats_table(title: str, stats: LatencyStats) -> Table:
    table = Table(title=title)
    for column in ("Count", "Mean", "P50", "P95", "P99", "Min", "Max", "Std"):
        table.add_column(column, justify="right")
    table.add_row(
        str(stats.count),
        f"{stats.mean:.0f}",
        f"{stats.p50:.0f}",
        f"{stats.p95:.0f}",
        f"{stats.p99:.0f}",
        f"{stats.min:.0f}",
        f"{stats.max:.0f}",
        f"{stats.std:.0f}",
    )
    return table


def print_summary(console: Console, summary: RunSummary) -> None:
    for iteration, result in enumerate(summary.results, start=1):
        title = "Scenario result" if len(summary.results) == 1 else f"Iteration {iteration}"
        console.print(result_table(result, title))

    if len(summary.results) > 1:
        console.print(stats_table("E2E latency (ms) across iterations", summary.latency))
        if summary.translation_latency.count:
            console.print(stats_table("Translation latency (ms) across iterations", summary.translation_latency))
        console.print(
            f"Failure rate: {summary.failure_rate:.0%}, "
            f"max consecutive failures: {summary.max_consecutive_failures}"
        )
