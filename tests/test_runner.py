import io
import json
from dataclasses import replace

import pytest
from rich.console import Console

from meetload import __main__ as entrypoint
from meetload.engine import ScenarioResult, ScenarioStatus
from meetload.metrics import LatencyCollector, LatencyStats
from meetload.reporting import print_summary
from meetload.runner import RunSummary, ScenarioRunner, save_results
from tests.fakes import fake_room, result_message

SCRIPT = [(0.5, result_message("userA1", 0)), (0.5, result_message("userA1", 1))]


def test_latency_stats():
    stats = LatencyStats.from_values([300, 100, 200])

    assert stats.count == 3
    assert stats.mean == 200
    assert stats.p50 == 200
    assert (stats.min, stats.max) == (100, 300)
    assert LatencyStats.from_values([]).count == 0


def test_collector_ignores_failed_and_final_less_runs():
    collector = LatencyCollector("demo")
    collector.add(ScenarioResult(["m1"], 2, 1, latency_ms=1200))
    collector.add(ScenarioResult(["m2"], 2, 1, latency_ms=0))
    failed = ScenarioResult(["m3"], 2, 1, latency_ms=900)
    failed.fail("quiescence", "timeout")
    collector.add(failed)

    assert collector.get_stats().count == 1
    assert collector.get_stats().mean == 1200
    assert collector.failure_rate == pytest.approx(1 / 3)
    assert collector.to_dict()["stats"]["latency_ms"]["count"] == 1
    with pytest.raises(ValueError):
        collector.get_stats("cpu_percent")


def test_runner_uses_fresh_rooms_per_iteration(config, logger, clock):
    config = replace(config, iterations=3, iteration_pause=1.5)
    built = []

    def factory():
        room = fake_room("A", clock, script=SCRIPT)
        built.append(room)
        return [room]

    summary = ScenarioRunner(config, logger, [b"wav"], clock=clock, room_factory=factory).run()

    assert summary.passed
    assert len(summary.results) == 3
    assert len({id(room) for room in built}) == 3
    assert summary.latency.count == 3
    assert summary.failure_rate == 0
    assert clock.sleeps.count(1.5) == 2


def test_runner_tracks_consecutive_failures(config, logger, clock):
    config = replace(config, iterations=4)
    readiness = iter([True, False, False, True])

    def factory():
        room = fake_room("A", clock, script=SCRIPT)
        room.participants[1].receiver.ready = next(readiness)
        return [room]

    summary = ScenarioRunner(config, logger, [b"wav"], clock=clock, room_factory=factory).run()

    assert not summary.passed
    assert [r.status for r in summary.results] == [
        ScenarioStatus.SUCCESS,
        ScenarioStatus.FAILED,
        ScenarioStatus.FAILED,
        ScenarioStatus.SUCCESS,
    ]
    assert summary.failure_rate == 0.5
    assert summary.max_consecutive_failures == 2
    assert summary.latency.count == 2


def test_save_results_and_summary_table(config, logger, clock, tmp_path):
    config = replace(config, iterations=2)
    runner = ScenarioRunner(config, logger, [b"wav"], clock=clock, room_factory=lambda: [fake_room("A", clock, script=SCRIPT)])
    summary = runner.run()

    path = save_results(summary, config, tmp_path / "out")
    data = json.loads(path.read_text())

    assert data["config"]["access_token"] == "***"
    assert data["summary"]["iterations"] == 2
    assert data["summary"]["results"][0]["max_utterance_idx"] == {"A": {"userA1": 1}}

    console = Console(file=io.StringIO(), width=200)
    print_summary(console, summary)
    output = console.file.getvalue()
    assert "Iteration 2" in output
    assert "E2E latency (ms) across iterations" in output
    assert "Failure rate: 0%" in output


def test_main_reports_configuration_errors(monkeypatch):
    monkeypatch.setattr("meetload.config.load_dotenv", lambda override=False: False)
    monkeypatch.delenv("MEETLOAD_ACCESS_TOKEN", raising=False)

    assert entrypoint.main(["--tone-seconds", "1"]) == 2


def test_main_runs_scenario_and_saves_results(monkeypatch, tmp_path):
    monkeypatch.setattr("meetload.config.load_dotenv", lambda override=False: False)
    monkeypatch.setenv("MEETLOAD_ACCESS_TOKEN", "token")
    monkeypatch.setenv("MEETLOAD_VOICE_GATEWAY_URI", "ws://gateway/")
    monkeypatch.setenv("MEETLOAD_TEXT_RETRIEVER_URI", "ws://retriever/ws")
    captured = {}

    class StubRunner:
        def __init__(self, config, logger, buffers):
            captured["buffers"] = buffers

        def run(self):
            result = ScenarioResult(["meeting-A"], 2, 1, latency_ms=1500)
            collector = LatencyCollector()
            collector.add(result)
            return RunSummary([result], collector.get_stats(), collector.get_stats("translation_latency_ms"), 0.0, 0)

    monkeypatch.setattr(entrypoint, "ScenarioRunner", StubRunner)

    exit_code = entrypoint.main(["--tone-seconds", "0.5", "--output-dir", str(tmp_path)])

    assert exit_code == 0
    assert len(captured["buffers"]) == 1
    assert list(tmp_path.glob("meetload_meeting_*.json"))


def test_translation_stats_do_not_depend_on_transcription_finals():
    collector = LatencyCollector()
    collector.add(ScenarioResult(["m1"], 3, 1, latency_ms=0, translation_latency_ms=2100))
    collector.add(ScenarioResult(["m2"], 3, 1, latency_ms=1500, translation_latency_ms=None))

    translation = collector.get_stats("translation_latency_ms")

    assert translation.count == 1
    assert translation.mean == 2100
    assert collector.get_stats("latency_ms").count == 1
