from __future__ import annotations

import json
import threading
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from ..audio.transcoder import CHUNK_DURATION_S, AudioTranscoder
from ..logging_utils import RichLogger
from ..timing import Clock, MonotonicClock
from .transport import TRANSPORT_ERRORS, Connection, Connector, Data, websocket_connector

SETTLE_DELAY_S = 1.0


class HandshakeState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHORIZED = "authorized"
    READY = "ready"


class AudioSenderClient:
    """Voice gateway client: connect, authorize, register, then stream audio.

    The handshake advances only on inbound control messages; audio is refused
    until the ``READY`` state is reached.
    """

    def __init__(
        self,
        user_name: str,
        token: str,
        language: str,
        logger: RichLogger,
        connector: Optional[Connector] = None,
        clock: Optional[Clock] = None,
        transcoder: Optional[AudioTranscoder] = None,
        chunk_interval: float = CHUNK_DURATION_S,
        settle_delay: float = SETTLE_DELAY_S,
    ) -> None:
        self.user_name = user_name
        self.token = token
        self.language = language
        self.logger = logger
        self.connector = connector or websocket_connector()
        self.clock = clock or MonotonicClock()
        self.transcoder = transcoder or AudioTranscoder()
        self.chunk_interval = chunk_interval
        self.settle_delay = settle_delay

        self.state = HandshakeState.DISCONNECTED
        self._connection: Optional[Connection] = None
        self._open = False
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None
        self._transitions: Dict[Tuple[HandshakeState, str], Callable[[], None]] = {
            (HandshakeState.CONNECTED, "auth_ok"): self._on_auth_ok,
            (HandshakeState.AUTHORIZED, "register_ok"): self._on_register_ok,
        }

    @property
    def is_open(self) -> bool:
        return self._open

    def connect(self, uri: str) -> bool:
        try:
            connection = self.connector(uri, {})
        except TRANSPORT_ERRORS as error:
            self.logger.log_exception(error, f"AudioSenderClient ({self.user_name}): connect to {uri} failed")
            return False

        with self._lock:
            self._connection = connection
            self._open = True
            self.state = HandshakeState.CONNECTED
        self.logger.log_text(f"AudioSenderClient ({self.user_name}): connected to {uri}")

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"audio-sender-{self.user_name}",
            daemon=True,
        )
        self._reader.start()
        if not self._send_json({"type": "Authorization", "token": self.token}):
            return False
        return True

    def handle_message(self, message: Data) -> None:
        """Dispatch one inbound frame to the next legal handshake transition."""

        if isinstance(message, bytes):
            self.logger.log_debug(f"AudioSenderClient ({self.user_name}): ignoring {len(message)}-byte binary frame")
            return
        self.logger.log_debug(f"AudioSenderClient ({self.user_name}): received {message}")
        try:
            payload = json.loads(message)
        except json.JSONDecodeError as error:
            self.logger.log_warning(
                f"AudioSenderClient ({self.user_name}): failed to parse message, ignoring. Error: {error}"
            )
            return
        if not isinstance(payload, dict):
            self.logger.log_warning(f"AudioSenderClient ({self.user_name}): unexpected payload {message!r}, ignoring")
            return

        message_type = payload.get("type")
        transition = self._transitions.get((self.state, message_type))
        if transition is None:
            self.logger.log_debug(
                f"AudioSenderClient ({self.user_name}): ignoring '{message_type}' in state {self.state.value}"
            )
            return
        transition()

    def is_ready(self, timeout: float) -> bool:
        return self._ready.wait(timeout)

    def send_audio(self, audio: bytes) -> bool:
        """
        Stream ``audio`` as paced float32 frames, then signal end of speech.

        Args:
            audio: WAV-framed 16-bit PCM bytes

        Returns:
            True if every frame and the end-of-speech marker were sent
        """
        if self.state is not HandshakeState.READY or not self._open:
            self.logger.log_warning(
                f"AudioSenderClient ({self.user_name}): not ready (state={self.state.value}), audio not sent"
            )
            return False

        chunk_total = self.transcoder.chunk_count(audio)
        if len(audio) <= self.transcoder.header_size:
            self.logger.log_text(
                f"AudioSenderClient ({self.user_name}): audio data is too short to be a valid WAV file"
            )
            return True

        for index, chunk in enumerate(self.transcoder.iter_chunks(audio)):
            if index:
                self.clock.sleep(self.chunk_interval)
            if not self._send(chunk):
                self.logger.log_warning(
                    f"AudioSenderClient ({self.user_name}): stream aborted after {index}/{chunk_total} chunks"
                )
                return False
        self.logger.log_debug(f"AudioSenderClient ({self.user_name}): finished sending {chunk_total} chunks")

        if not self._send_json({"type": "vad_status", "speaking": False}):
            return False
        self.logger.log_debug(f"AudioSenderClient ({self.user_name}): VAD status message sent")
        self.clock.sleep(self.settle_delay)
        return True

    def close(self) -> None:
        with self._lock:
            connection = self._connection if self._open else None
            self._open = False
        if connection is not None:
            connection.close()
            self.logger.log_debug(f"AudioSenderClient ({self.user_name}): connection closed")

    def _on_auth_ok(self) -> None:
        self.state = HandshakeState.AUTHORIZED
        self._send_json(
            {
                "type": "Register",
                "userName": self.user_name,
                "transcriptionLanguage": self.language,
            }
        )

    def _on_register_ok(self) -> None:
        self.state = HandshakeState.READY
        self.logger.log_text(f"AudioSenderClient ({self.user_name}): registered successfully")
        self._ready.set()

    def _read_loop(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            for message in connection:
                self.handle_message(message)
        except TRANSPORT_ERRORS as error:
            if self._open:
                self.logger.log_exception(error, f"AudioSenderClient ({self.user_name}): connection error")
        finally:
            self._open = False
            self.logger.log_debug(f"AudioSenderClient ({self.user_name}): reader stopped")

    def _send_json(self, payload: dict) -> bool:
        return self._send(json.dumps(payload))

    def _send(self, message: Data) -> bool:
        connection = self._connection
        if connection is None or not self._open:
            return False
        try:
            connection.send(message)
        except TRANSPORT_ERRORS as error:
            self.logger.log_exception(error, f"AudioSenderClient ({self.user_name}): send failed")
            return False
        return True
