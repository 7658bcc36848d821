"""
In-memory stand-ins for the websocket transport, the clock and the service.

Everything here runs without a network: connections are queue-backed,
clients talk to scripted responders, and the fake clock only moves when
someone sleeps on it.
"""

import itertools
import json
import queue
import threading
import time
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from meetload.clients import stomp
from meetload.participants import Participant, Room
from meetload.results import ResultQueue

_CLOSE = object()

Responder = Callable[["FakeConnection", object], Iterable[object]]


class FakeClock:
    """Thread-safe virtual clock; ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def now(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._now += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


class FakeConnection:
    """Queue-backed connection; ``responder`` scripts the server's replies."""

    def __init__(self, uri: str = "", responder: Optional[Responder] = None):
        self.uri = uri
        self.responder = responder
        self.sent: List[object] = []
        self.closed = False
        self.close_calls = 0
        self.fail_sends = False
        self._inbox: "queue.Queue[object]" = queue.Queue()

    def send(self, message) -> None:
        if self.closed or self.fail_sends:
            raise OSError("connection closed")
        self.sent.append(message)
        if self.responder is not None:
            for reply in self.responder(self, message) or ():
                self.push(reply)

    def push(self, message) -> None:
        self._inbox.put(message)

    def __iter__(self):
        while True:
            item = self._inbox.get()
            if item is _CLOSE:
                return
            yield item

    def close(self) -> None:
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self._inbox.put(_CLOSE)

    def sent_json(self) -> List[dict]:
        return [json.loads(m) for m in self.sent if isinstance(m, str)]

    def sent_binary(self) -> List[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def result_message(speaker: str, index: int, final: bool = True, text: str = "hello") -> dict:
    return {"userName": speaker, "utteranceIdx": index, "isFullText": final, "text": text}


def gateway_responder(connection: FakeConnection, message) -> List[str]:
    """Voice gateway that accepts any token and any registration."""

    if not isinstance(message, str):
        return []
    kind = json.loads(message).get("type")
    if kind == "Authorization":
        return [json.dumps({"type": "auth_ok"})]
    if kind == "Register":
        return [json.dumps({"type": "register_ok"})]
    return []


def make_stomp_responder(use_sockjs: bool = False, receipts: bool = True) -> Responder:
    """Text retriever that answers CONNECT and (optionally) SUBSCRIBE receipts."""

    def respond(connection: FakeConnection, message) -> List[str]:
        replies = []
        # client-to-server SockJS frames are bare JSON arrays of messages
        payloads = json.loads(message) if use_sockjs else [message]
        for payload in payloads:
            frame = stomp.decode(payload)
            if frame is None:
                continue
            if frame.command == "CONNECT":
                replies.append(stomp.encode(stomp.Frame("CONNECTED", {"version": "1.2"})))
            elif frame.command == "SUBSCRIBE" and receipts and "receipt" in frame.headers:
                replies.append(stomp.encode(stomp.Frame("RECEIPT", {"receipt-id": frame.headers["receipt"]})))
        if use_sockjs:
            return ["a" + json.dumps([reply]) for reply in replies]
        return replies

    return respond


def message_frame(subscription: str, payload, destination: str = "/topic/x") -> str:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return stomp.encode(stomp.Frame("MESSAGE", {"subscription": subscription, "destination": destination}, body))


class FakeMeetingService:
    """
    Voice gateway and text retriever sharing meeting state.

    When a speaker signals end of speech, every retriever session of that
    meeting receives ``partials_per_final`` partial results followed by a final
    for each of ``finals`` utterances.
    """

    def __init__(self, finals: int = 3, partials_per_final: int = 2, gateway_prefix: str = "ws://gateway/"):
        self.finals = finals
        self.partials_per_final = partials_per_final
        self.gateway_prefix = gateway_prefix
        self.connections: List[FakeConnection] = []
        self._sessions: Dict[str, List[FakeConnection]] = defaultdict(list)
        self._subscriptions: Dict[int, str] = {}
        self._speakers: Dict[int, str] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()

    def connector(self, uri: str, headers) -> FakeConnection:
        if uri.startswith(self.gateway_prefix):
            meeting_id = uri[len(self.gateway_prefix) :]
            connection = FakeConnection(uri, lambda conn, msg: self._gateway(conn, msg, meeting_id))
        else:
            connection = FakeConnection(uri, self._retriever)
        with self._lock:
            self.connections.append(connection)
        return connection

    def _gateway(self, connection: FakeConnection, message, meeting_id: str) -> List[str]:
        if not isinstance(message, str):
            return []
        payload = json.loads(message)
        if payload.get("type") == "Register":
            self._speakers[id(connection)] = payload["userName"]
        if payload.get("type") == "vad_status" and payload.get("speaking") is False:
            self._publish(meeting_id, self._speakers[id(connection)])
            return []
        return gateway_responder(connection, message)

    def _retriever(self, connection: FakeConnection, message) -> List[str]:
        frame = stomp.decode(message)
        if frame is None:
            return []
        if frame.command == "CONNECT":
            with self._lock:
                self._sessions[frame.headers["meetingId"]].append(connection)
            return [stomp.encode(stomp.Frame("CONNECTED", {"version": "1.2"}))]
        if frame.command == "SUBSCRIBE" and frame.headers["destination"].startswith("/topic/transcription."):
            self._subscriptions[id(connection)] = frame.headers["id"]
        return []

    def _publish(self, meeting_id: str, speaker: str) -> None:
        with self._lock:
            sessions = list(self._sessions[meeting_id])
        for index in range(self.finals):
            for _ in range(self.partials_per_final):
                self._broadcast(sessions, result_message(speaker, index, final=False))
            self._broadcast(sessions, result_message(speaker, index, final=True))

    def _broadcast(self, sessions: List[FakeConnection], payload: dict) -> None:
        for session in sessions:
            subscription = self._subscriptions.get(id(session))
            if subscription is not None and not session.closed:
                payload = dict(payload, messageId=next(self._ids))
                session.push(message_frame(subscription, payload))


class FakeSender:
    """Speaker stand-in that writes scripted results straight into room queues."""

    def __init__(self, user_name: str, clock: FakeClock, ready: bool = True):
        self.user_name = user_name
        self.clock = clock
        self.ready = ready
        self.script: List[tuple] = []
        self.targets: List[ResultQueue] = []
        self.connected_uri: Optional[str] = None
        self.sent_audio: Optional[bytes] = None
        self.send_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.close_calls = 0
        self.on_connect: Optional[Callable[[], bool]] = None

    def connect(self, uri: str) -> bool:
        self.connected_uri = uri
        if self.on_connect is not None:
            return self.on_connect()
        return True

    def is_ready(self, timeout: float) -> bool:
        return self.ready

    def send_audio(self, audio: bytes) -> bool:
        self.sent_audio = audio
        if self.send_error is not None:
            raise self.send_error
        for delay, message in self.script:
            self.clock.sleep(delay)
            for target in self.targets:
                target.put(dict(message))
        return True

    def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeReceiver:
    def __init__(self, user_name: str, ready: bool = True):
        self.user_name = user_name
        self.ready = ready
        self.meeting_id: Optional[str] = None
        self.close_calls = 0
        self.ready_timeouts: List[float] = []

    def connect(self, uri: str, meeting_id: str) -> None:
        self.meeting_id = meeting_id

    def is_ready(self, timeout: float) -> bool:
        self.ready_timeouts.append(timeout)
        return self.ready

    def close(self) -> None:
        self.close_calls += 1


def fake_room(name: str, clock: FakeClock, size: int = 2, script: Iterable[tuple] = (), translation: bool = False) -> Room:
    """Build a room of fake clients whose speaker replays ``script`` into every member's queue."""

    participants = []
    for position in range(size):
        user = f"user{name}{position + 1}"
        wants_translation = translation and position == size - 1
        participants.append(
            Participant(
                name=user,
                language="ko",
                sender=FakeSender(user, clock),
                receiver=FakeReceiver(user),
                transcription_queue=ResultQueue(f"{user}/transcription"),
                translation_queue=ResultQueue(f"{user}/translation") if wants_translation else None,
            )
        )
    speaker = participants[0]
    speaker.sender.script = list(script)
    speaker.sender.targets = [p.transcription_queue for p in participants]
    return Room(name=name, meeting_id=f"meeting-{name}", participants=participants, speaker=speaker.name, audio=b"wav")


def console_output(logger) -> str:
    return logger.console.file.getvalue()
