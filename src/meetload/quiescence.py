"""Completion detection over all participants' result queues.

Partial results stream continuously and finals arrive unpredictably, so a
single empty poll proves nothing. A batch is complete only when a poll round
finds every queue empty *and* no participant has seen output for longer than
the quiet period.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import QuiescenceTimeout
from .logging_utils import RichLogger
from .participants import Room
from .results import ResultMessage, ResultQueue, is_final, speaker_of, utterance_index
from .timing import Clock

TRANSCRIPTION = "transcription"
TRANSLATION = "translation"


@dataclass(frozen=True)
class IsolationViolation:
    """A message delivered to one room that names a speaker from outside it."""

    room: str
    meeting_id: str
    participant: str
    speaker: str
    kind: str
    utterance_idx: Optional[int]

    def to_dict(self) -> dict:
        return {
            "room": self.room,
            "meeting_id": self.meeting_id,
            "participant": self.participant,
            "speaker": self.speaker,
            "kind": self.kind,
            "utterance_idx": self.utterance_idx,
        }


class RoomTracker:
    """Per-room activity and sequencing state; never shared between rooms."""

    def __init__(self, room: Room, started: float):
        self.name = room.name
        self.meeting_id = room.meeting_id
        self.members = room.member_names
        self.last_activity: Dict[str, float] = {name: started for name in self.members}
        self.max_utterance: Dict[str, int] = {}
        self.out_of_order: Dict[str, int] = {}
        self.violations: List[IsolationViolation] = []

    def touch(self, participant: str, now: float) -> None:
        self.last_activity[participant] = now

    def record_final(self, speaker: str, index: int) -> None:
        current = self.max_utterance.get(speaker)
        if current is None or index > current:
            self.max_utterance[speaker] = index
        elif index < current:
            self.out_of_order[speaker] = self.out_of_order.get(speaker, 0) + 1

    def quiet_for(self, now: float, quiet_period: float) -> bool:
        return all(now - last > quiet_period for last in self.last_activity.values())


@dataclass
class _Channel:
    tracker: RoomTracker
    participant: str
    kind: str
    queue: ResultQueue


@dataclass
class QuiescenceReport:
    started: float
    completed: float
    rounds: int
    message_count: int
    final_count: int
    last_final: Optional[float]
    last_translation_final: Optional[float]
    max_utterance: Dict[str, Dict[str, int]] = field(default_factory=dict)
    out_of_order: Dict[str, Dict[str, int]] = field(default_factory=dict)
    violations: List[IsolationViolation] = field(default_factory=list)

    @property
    def saw_final(self) -> bool:
        return self.last_final is not None


class QuiescenceMonitor:
    """
    Polls every result queue of every room until the service has gone quiet.

    One monitor serves one batch. It must be polled from a single thread, the
    one that drains the queues.
    """

    def __init__(
        self,
        rooms: Sequence[Room],
        clock: Clock,
        logger: RichLogger,
        quiet_period: float = 10.0,
        poll_interval: float = 0.1,
        initial_delay: float = 0.0,
        timeout: float = 120.0,
    ):
        """
        Initialize the monitor.

        Args:
            rooms: Rooms whose participants' queues are watched
            clock: Time source used for timestamps and sleeps
            logger: Shared scenario logger
            quiet_period: Seconds every participant must stay silent
            poll_interval: Seconds between poll rounds
            initial_delay: Seconds to wait before the first round
            timeout: Upper bound in seconds on the whole wait
        """
        self.rooms = list(rooms)
        self.clock = clock
        self.logger = logger
        self.quiet_period = quiet_period
        self.poll_interval = poll_interval
        self.initial_delay = initial_delay
        self.timeout = timeout

        self.started = clock.now()
        self.trackers = [RoomTracker(room, self.started) for room in self.rooms]
        self.channels: List[_Channel] = []
        for tracker, room in zip(self.trackers, self.rooms):
            for participant in room.participants:
                self.channels.append(_Channel(tracker, participant.name, TRANSCRIPTION, participant.transcription_queue))
                if participant.translation_queue is not None:
                    self.channels.append(
                        _Channel(tracker, participant.name, TRANSLATION, participant.translation_queue)
                    )

        self.rounds = 0
        self.message_count = 0
        self.final_count = 0
        self.last_final: Optional[float] = None
        self.last_translation_final: Optional[float] = None

    def poll_once(self, now: Optional[float] = None) -> bool:
        """Run one poll round; return True when the batch is complete."""

        if now is None:
            now = self.clock.now()
        self.rounds += 1
        all_empty = True

        for channel in self.channels:
            if channel.queue.empty():
                continue
            messages = channel.queue.drain()
            if not messages:
                continue
            all_empty = False
            channel.tracker.touch(channel.participant, now)
            for message in messages:
                self._inspect(channel, message, now)

        if not all_empty:
            return False
        return all(tracker.quiet_for(now, self.quiet_period) for tracker in self.trackers)

    def wait(self) -> QuiescenceReport:
        """
        Poll until quiescence or timeout.

        Returns:
            QuiescenceReport describing what was drained

        Raises:
            QuiescenceTimeout: If the output never settled within ``timeout``
        """
        deadline = self.started + self.timeout
        if self.initial_delay > 0:
            self.clock.sleep(self.initial_delay)

        while True:
            now = self.clock.now()
            if self.poll_once(now):
                self.logger.log_debug(
                    f"Quiescence reached after {self.rounds} rounds, {self.message_count} messages drained"
                )
                return self.report(now)
            if now >= deadline:
                raise QuiescenceTimeout(self.timeout, saw_final=self.last_final is not None)
            self.clock.sleep(self.poll_interval)

    def report(self, completed: float) -> QuiescenceReport:
        return QuiescenceReport(
            started=self.started,
            completed=completed,
            rounds=self.rounds,
            message_count=self.message_count,
            final_count=self.final_count,
            last_final=self.last_final,
            last_translation_final=self.last_translation_final,
            max_utterance={t.name: dict(t.max_utterance) for t in self.trackers},
            out_of_order={t.name: dict(t.out_of_order) for t in self.trackers if t.out_of_order},
            violations=[v for t in self.trackers for v in t.violations],
        )

    def _inspect(self, channel: _Channel, message: ResultMessage, now: float) -> None:
        self.message_count += 1
        tracker = channel.tracker
        speaker = speaker_of(message)
        index = utterance_index(message)

        if speaker is not None and speaker not in tracker.members:
            violation = IsolationViolation(
                room=tracker.name,
                meeting_id=tracker.meeting_id,
                participant=channel.participant,
                speaker=speaker,
                kind=channel.kind,
                utterance_idx=index,
            )
            tracker.violations.append(violation)
            self.logger.log_panel(
                f"Room {tracker.name} participant {channel.participant} received {channel.kind} "
                f"from foreign speaker {speaker} (utteranceIdx={index})",
                "ISOLATION VIOLATION",
                "magenta",
            )

        if not is_final(message):
            return

        self.final_count += 1
        if channel.kind == TRANSLATION:
            self.last_translation_final = now
            return

        self.last_final = now
        if speaker is None or speaker not in tracker.members:
            return
        if index is None:
            self.logger.log_debug(f"Final from {speaker} without a usable utteranceIdx: {_preview(message)}")
            return
        tracker.record_final(speaker, index)


def _preview(message: Mapping[str, Any], limit: int = 120) -> str:
    text = str(message)
    return text if len(text) <= limit else text[: limit - 3] + "..."
