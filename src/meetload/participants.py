from __future__ import annotations

import string
import time
import uuid
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Protocol

from .clients.audio_sender import AudioSenderClient
from .clients.result_receiver import ResultReceiverClient
from .clients.transport import websocket_connector
from .config import LoadTestConfig
from .logging_utils import RichLogger
from .results import ResultQueue
from .timing import Clock


class SenderClient(Protocol):
    user_name: str

    def connect(self, uri: str) -> bool: ...

    def is_ready(self, timeout: float) -> bool: ...

    def send_audio(self, audio: bytes) -> bool: ...

    def close(self) -> None: ...


class ReceiverClient(Protocol):
    user_name: str

    def connect(self, uri: str, meeting_id: str) -> None: ...

    def is_ready(self, timeout: float) -> bool: ...

    def close(self) -> None: ...


class Participant(NamedTuple):
    name: str
    language: str
    sender: SenderClient
    receiver: ReceiverClient
    transcription_queue: ResultQueue
    translation_queue: Optional[ResultQueue]

    @property
    def wants_translation(self) -> bool:
        return self.translation_queue is not None

    def queues(self) -> List[ResultQueue]:
        if self.translation_queue is None:
            return [self.transcription_queue]
        return [self.transcription_queue, self.translation_queue]


@dataclass
class Room:
    """Participants sharing one meeting; the isolation boundary for results."""

    name: str
    meeting_id: str
    participants: List[Participant]
    speaker: str
    audio: bytes = b""

    def __post_init__(self) -> None:
        names = [p.name for p in self.participants]
        if len(names) < 2:
            raise ValueError(f"Room {self.name} needs at least 2 participants, got {len(names)}")
        if len(set(names)) != len(names):
            raise ValueError(f"Room {self.name} has duplicate participant names")
        if self.speaker not in names:
            raise ValueError(f"Speaker {self.speaker!r} is not a participant of room {self.name}")

    @property
    def member_names(self) -> set[str]:
        return {p.name for p in self.participants}

    @property
    def speaker_participant(self) -> Participant:
        return next(p for p in self.participants if p.name == self.speaker)


def create_participant(
    name: str,
    language: str,
    wants_translation: bool,
    config: LoadTestConfig,
    logger: RichLogger,
    clock: Optional[Clock] = None,
) -> Participant:
    transcription_queue = ResultQueue(f"{name}/transcription")
    translation_queue = ResultQueue(f"{name}/translation") if wants_translation else None
    connector = websocket_connector(open_timeout=config.open_timeout)
    sender = AudioSenderClient(
        user_name=name,
        token=config.access_token,
        language=language,
        logger=logger,
        connector=connector,
        clock=clock,
        chunk_interval=config.chunk_interval,
        settle_delay=config.settle_delay,
    )
    receiver = ResultReceiverClient(
        user_name=name,
        language=language,
        token=config.access_token,
        transcription_queue=transcription_queue,
        translation_queue=translation_queue,
        logger=logger,
        connector=connector,
        use_sockjs=config.use_sockjs,
        await_receipts=config.await_receipts,
    )
    return Participant(name, language, sender, receiver, transcription_queue, translation_queue)


def meeting_id(label: str, prefix: str = "meeting") -> str:
    return f"{prefix}-{label}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


def room_label(index: int) -> str:
    letters = string.ascii_uppercase
    label = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, len(letters))
        label = letters[remainder] + label
    return label


def build_rooms(
    config: LoadTestConfig,
    logger: RichLogger,
    audio_buffers: Iterable[bytes],
    clock: Optional[Clock] = None,
) -> List[Room]:
    """
    Create the rooms described by ``config``.

    Each room is named by a letter; participant ``user<L>1`` is the speaker,
    the remaining ``user<L>2..n`` are listeners. The last
    ``translation_listeners`` of each room also receive translations in
    ``translation_language``. Audio buffers are assigned round-robin.

    Args:
        config: Scenario configuration
        logger: Shared logger for all clients
        audio_buffers: WAV buffers to distribute across speakers
        clock: Clock used for audio pacing

    Returns:
        Rooms ready to be handed to the engine
    """
    buffers = list(audio_buffers)
    if not buffers:
        raise ValueError("At least one audio buffer is required")

    rooms: List[Room] = []
    for index in range(config.rooms):
        label = room_label(index)
        translators_from = config.participants_per_room - config.translation_listeners
        participants = []
        for position in range(config.participants_per_room):
            wants_translation = position >= translators_from and position > 0
            language = config.translation_language if wants_translation else config.language
            participants.append(
                create_participant(
                    f"user{label}{position + 1}",
                    language,
                    wants_translation,
                    config,
                    logger,
                    clock,
                )
            )
        rooms.append(
            Room(
                name=label,
                meeting_id=meeting_id(label, config.meeting_prefix),
                participants=participants,
                speaker=participants[0].name,
                audio=buffers[index % len(buffers)],
            )
        )
    return rooms
