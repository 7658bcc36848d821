"""
Multi-room meeting load test engine.

Connects every participant of every room, streams one speaker's audio per
room concurrently, waits for the transcription service to go quiet and
reports end-to-end latency to the last final result.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .config import LoadTestConfig
from .errors import HandshakeError, LoadTestError, StreamingError
from .logging_utils import RichLogger
from .participants import Participant, Room
from .quiescence import IsolationViolation, QuiescenceMonitor, QuiescenceReport
from .timing import Clock, MonotonicClock, to_ms


class ScenarioStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CONTAMINATED = "contaminated"


@dataclass
class ScenarioResult:
    """Outcome of one scenario run, handed to reporting layers."""

    meeting_ids: List[str]
    participant_count: int
    speaker_count: int
    status: ScenarioStatus = ScenarioStatus.SUCCESS
    stage: Optional[str] = None
    error: Optional[str] = None

    # Latencies (ms); 0 means no final result was observed
    latency_ms: int = 0
    translation_latency_ms: Optional[int] = None
    streaming_ms: int = 0
    total_scenario_time_ms: int = 0

    # Sequencing: room -> speaker -> value
    max_utterance_idx: Dict[str, Dict[str, int]] = field(default_factory=dict)
    out_of_order_finals: Dict[str, Dict[str, int]] = field(default_factory=dict)
    violations: List[IsolationViolation] = field(default_factory=list)

    message_count: int = 0
    final_count: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ScenarioStatus.SUCCESS

    def fail(self, stage: str, reason: str) -> None:
        self.status = ScenarioStatus.FAILED
        self.stage = stage
        self.error = reason

    def apply(self, report: QuiescenceReport, start: float) -> None:
        """Fill latency and sequencing fields from a completed quiescence wait."""
        self.latency_ms = to_ms(report.last_final - start) if report.last_final is not None else 0
        if report.last_translation_final is not None:
            self.translation_latency_ms = to_ms(report.last_translation_final - start)
        self.max_utterance_idx = report.max_utterance
        self.out_of_order_finals = report.out_of_order
        self.violations = list(report.violations)
        self.message_count = report.message_count
        self.final_count = report.final_count
        if self.violations:
            self.status = ScenarioStatus.CONTAMINATED

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "stage": self.stage,
            "error": self.error,
            "meeting_id": self.meeting_ids[0] if self.meeting_ids else None,
            "meeting_ids": self.meeting_ids,
            "participant_count": self.participant_count,
            "speaker_count": self.speaker_count,
            "latency_ms": self.latency_ms,
            "translation_latency_ms": self.translation_latency_ms,
            "streaming_ms": self.streaming_ms,
            "total_scenario_time_ms": self.total_scenario_time_ms,
            "max_utterance_idx": self.max_utterance_idx,
            "out_of_order_finals": self.out_of_order_finals,
            "violations": [v.to_dict() for v in self.violations],
            "message_count": self.message_count,
            "final_count": self.final_count,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class MeetingLoadTest:
    """Runs one batch over a set of rooms: setup, dispatch, quiescence, teardown."""

    def __init__(
        self,
        config: LoadTestConfig,
        logger: RichLogger,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.logger = logger
        self.clock = clock or MonotonicClock()

    def run(self, rooms: Sequence[Room]) -> ScenarioResult:
        """
        Run the scenario end to end.

        Stage failures (setup, streaming, quiescence) are reported on the
        returned result; clients are always torn down.

        Args:
            rooms: Independent rooms, each with a designated speaker and audio

        Returns:
            ScenarioResult with latency or the failing stage
        """
        rooms = list(rooms)
        participants = [p for room in rooms for p in room.participants]
        result = ScenarioResult(
            meeting_ids=[room.meeting_id for room in rooms],
            participant_count=len(participants),
            speaker_count=len(rooms),
        )
        scenario_start = self.clock.now()
        self.logger.log_panel(
            f"{len(rooms)} room(s), {len(participants)} participant(s): "
            + ", ".join(f"{room.name}={room.meeting_id}" for room in rooms),
            "SCENARIO",
            "blue1",
        )

        try:
            setup_start = self.clock.now()
            self.connect_all(rooms)
            not_ready = self.wait_for_all_ready(rooms, self.config.ready_timeout, started=setup_start)
            if not_ready:
                raise HandshakeError(not_ready, self.config.ready_timeout)
            self.logger.log_text(f"All participants ({', '.join(p.name for p in participants)}) are ready.")

            start = self.dispatch(rooms)
            result.streaming_ms = to_ms(self.clock.now() - start)

            report = self.await_quiescence(rooms)
            result.apply(report, start)
            self._log_outcome(rooms, result)

            if self.config.cleanup_grace > 0:
                self.logger.log_debug(f"Waiting {self.config.cleanup_grace:g}s for streams to close")
                self.clock.sleep(self.config.cleanup_grace)
        except LoadTestError as error:
            result.fail(error.stage, str(error))
            self.logger.log_panel(f"{error.stage}: {error}", "FAILED", "red")
        finally:
            self.teardown(rooms)
            result.total_scenario_time_ms = to_ms(self.clock.now() - scenario_start)
            result.completed_at = datetime.now()

        return result

    def connect_all(self, rooms: Sequence[Room]) -> None:
        """Open every participant's connections at once; failures surface as readiness timeouts."""

        pairs = [(room, participant) for room in rooms for participant in room.participants]
        with ThreadPoolExecutor(max_workers=max(1, len(pairs)), thread_name_prefix="connect") as executor:
            futures = [(participant, executor.submit(self._connect, room, participant)) for room, participant in pairs]
            for participant, future in futures:
                try:
                    future.result()
                except Exception as error:
                    self.logger.log_exception(error, f"Connecting {participant.name} failed")

    def _connect(self, room: Room, participant: Participant) -> None:
        participant.receiver.connect(self.config.text_retriever_uri, room.meeting_id)
        participant.sender.connect(self.config.voice_gateway_uri + room.meeting_id)

    def wait_for_all_ready(self, rooms: Sequence[Room], timeout: float, started: Optional[float] = None) -> List[str]:
        """
        Wait, with one shared deadline, until every client reports ready.

        The deadline runs from ``started`` (the beginning of setup) when given,
        so time spent opening connections counts against it.

        Returns:
            Labels of the clients that were not ready, empty when all are
        """
        deadline = (self.clock.now() if started is None else started) + timeout
        not_ready: List[str] = []
        for room in rooms:
            for participant in room.participants:
                for label, client in (("AudioSender", participant.sender), ("ResultReceiver", participant.receiver)):
                    remaining = max(0.0, deadline - self.clock.now())
                    if not client.is_ready(remaining):
                        not_ready.append(f"{participant.name} ({label})")
        return not_ready

    def dispatch(self, rooms: Sequence[Room]) -> float:
        """Stream every room's speaker audio concurrently; return the start timestamp."""

        for room in rooms:
            for participant in room.participants:
                for queue in participant.queues():
                    queue.clear()

        failures: List[str] = []
        with ThreadPoolExecutor(max_workers=len(rooms), thread_name_prefix="speaker") as executor:
            start = self.clock.now()
            futures = [
                (room, executor.submit(room.speaker_participant.sender.send_audio, room.audio))
                for room in rooms
            ]
            for room, future in futures:
                try:
                    delivered = future.result()
                except Exception as error:
                    self.logger.log_exception(error, f"Speaker {room.speaker} in room {room.name}")
                    failures.append(f"{room.speaker}: {error}")
                    continue
                if not delivered:
                    self.logger.log_warning(
                        f"Speaker {room.speaker} in room {room.name} did not deliver all audio"
                    )

        if failures:
            raise StreamingError(f"Audio streaming failed for {len(failures)} speaker(s): {'; '.join(failures)}")
        return start

    def await_quiescence(self, rooms: Sequence[Room]) -> QuiescenceReport:
        monitor = QuiescenceMonitor(
            rooms,
            clock=self.clock,
            logger=self.logger,
            quiet_period=self.config.quiet_period,
            poll_interval=self.config.poll_interval,
            initial_delay=self.config.initial_delay,
            timeout=self.config.quiescence_timeout,
        )
        return monitor.wait()

    def teardown(self, rooms: Sequence[Room]) -> None:
        participants = [p for room in rooms for p in room.participants]
        self.logger.log_debug(f"Cleanup: {', '.join(p.name for p in participants)}")
        for participant in participants:
            self._close(participant, "audio sender", participant.sender)
            self._close(participant, "result receiver", participant.receiver)

    def _close(self, participant: Participant, label: str, client) -> None:
        try:
            client.close()
        except Exception as error:
            self.logger.log_warning(f"Closing {label} of {participant.name} failed: {error}")

    def _log_outcome(self, rooms: Sequence[Room], result: ScenarioResult) -> None:
        self.logger.log_text(
            f"[Transcription Latency {len(rooms)} Channel] E2E Latency (to last final message): {result.latency_ms} ms"
        )
        if result.translation_latency_ms is not None:
            self.logger.log_text(f"[Translation Latency] E2E Latency: {result.translation_latency_ms} ms")
        for room in rooms:
            index = result.max_utterance_idx.get(room.name, {}).get(room.speaker)
            self.logger.log_text(
                f"Final max index for {room.speaker}: {index if index is not None else 'N/A'}"
            )
        if result.violations:
            self.logger.log_panel(
                f"{len(result.violations)} message(s) crossed room boundaries",
                "CONTAMINATED",
                "magenta",
            )
