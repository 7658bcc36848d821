from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlsplit

from ..logging_utils import RichLogger
from ..results import ResultQueue
from . import sockjs, stomp
from .transport import TRANSPORT_ERRORS, Connection, Connector, Data, websocket_connector

TRANSCRIPTION_TOPIC = "/topic/transcription.{meeting_id}"
TRANSLATION_QUEUE = "/user/queue/translations"


@dataclass(slots=True)
class Subscription:
    id: str
    kind: str
    destination: str
    queue: ResultQueue
    receipt: Optional[str] = None


class ResultReceiverClient:
    """Text retriever client: STOMP subscriptions feeding per-kind result queues.

    ``connect`` returns immediately; the session is established on a
    background thread and ``is_ready`` reports when every expected
    subscription has been acknowledged.
    """

    def __init__(
        self,
        user_name: str,
        language: str,
        token: str,
        transcription_queue: ResultQueue,
        translation_queue: Optional[ResultQueue],
        logger: RichLogger,
        connector: Optional[Connector] = None,
        use_sockjs: bool = False,
        await_receipts: bool = False,
    ) -> None:
        self.user_name = user_name
        self.language = language
        self.token = token
        self.transcription_queue = transcription_queue
        self.translation_queue = translation_queue
        self.logger = logger
        self.connector = connector or websocket_connector()
        self.use_sockjs = use_sockjs
        self.await_receipts = await_receipts

        self.meeting_id: Optional[str] = None
        self.connected = False
        self._connection: Optional[Connection] = None
        self._subscriptions: Dict[str, Subscription] = {}
        self._pending: set[str] = set()
        self._expected = 1 if translation_queue is None else 2
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._closed = False
        self._thread: Optional[threading.Thread] = None

    @property
    def expected_subscriptions(self) -> int:
        return self._expected

    def connect(self, uri: str, meeting_id: str) -> None:
        self.meeting_id = meeting_id
        self._thread = threading.Thread(
            target=self._run,
            args=(uri, meeting_id),
            name=f"result-receiver-{self.user_name}",
            daemon=True,
        )
        self._thread.start()

    def is_ready(self, timeout: float) -> bool:
        return self._ready.wait(timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            connection = self._connection
            was_connected = self.connected
            self.connected = False
        if connection is None:
            return
        if was_connected:
            try:
                self._send_frame(connection, stomp.disconnect_frame())
            except TRANSPORT_ERRORS as error:
                self.logger.log_debug(f"ResultReceiverClient ({self.user_name}): DISCONNECT not sent: {error}")
        connection.close()
        self.logger.log_debug(f"ResultReceiverClient ({self.user_name}): disconnected")

    def _run(self, uri: str, meeting_id: str) -> None:
        try:
            target = sockjs.transport_url(uri) if self.use_sockjs else uri
        except ValueError as error:
            self.logger.log_exception(error, f"ResultReceiverClient ({self.user_name}): bad endpoint {uri}")
            return
        try:
            connection = self.connector(target, {})
        except TRANSPORT_ERRORS as error:
            self.logger.log_exception(error, f"ResultReceiverClient ({self.user_name}): transport error")
            return

        with self._lock:
            if self._closed:
                connection.close()
                return
            self._connection = connection

        host = urlsplit(uri).hostname or "localhost"
        connect = stomp.connect_frame(
            host,
            {
                "Authorization": f"Bearer {self.token}",
                "userName": self.user_name,
                "language": self.language,
                "meetingId": meeting_id,
            },
        )
        try:
            self._send_frame(connection, connect)
            for message in connection:
                for payload in self._unwrap(message):
                    self.handle_frame(payload)
        except sockjs.SockJSClosed as error:
            self.logger.log_warning(f"ResultReceiverClient ({self.user_name}): {error}")
        except TRANSPORT_ERRORS as error:
            if not self._closed:
                self.logger.log_exception(error, f"ResultReceiverClient ({self.user_name}): transport error")
        finally:
            self.connected = False

    def _unwrap(self, message: Data) -> List[Data]:
        if not self.use_sockjs:
            return [message]
        try:
            return list(sockjs.unwrap(message))
        except (ValueError, UnicodeDecodeError) as error:
            self.logger.log_warning(f"ResultReceiverClient ({self.user_name}): bad SockJS frame dropped: {error}")
            return []

    def handle_frame(self, data: Data) -> None:
        try:
            frame = stomp.decode(data)
        except (stomp.StompError, UnicodeDecodeError) as error:
            self.logger.log_warning(f"ResultReceiverClient ({self.user_name}): undecodable frame dropped: {error}")
            return
        if frame is None:
            return

        if frame.command == "CONNECTED":
            self._on_connected()
        elif frame.command == "MESSAGE":
            self._on_message(frame)
        elif frame.command == "RECEIPT":
            self._on_receipt(frame.headers.get("receipt-id", ""))
        elif frame.command == "ERROR":
            self.logger.log_panel(
                f"ResultReceiverClient ({self.user_name}): {frame.headers.get('message', '')} {frame.text()}".strip(),
                "STOMP ERROR",
                "red",
            )
        else:
            self.logger.log_debug(f"ResultReceiverClient ({self.user_name}): ignoring {frame.command} frame")

    def _on_connected(self) -> None:
        connection = self._connection
        if connection is None or self.connected:
            return
        self.connected = True
        self.logger.log_text(
            f"ResultReceiverClient ({self.user_name}): connected to text retriever, meeting {self.meeting_id}"
        )

        self._subscribe(connection, "transcription", TRANSCRIPTION_TOPIC.format(meeting_id=self.meeting_id),
                        self.transcription_queue)
        if self.translation_queue is not None:
            self._subscribe(connection, "translation", TRANSLATION_QUEUE, self.translation_queue)

    def _subscribe(self, connection: Connection, kind: str, destination: str, queue: ResultQueue) -> None:
        subscription_id = f"sub-{len(self._subscriptions)}"
        receipt = f"{subscription_id}-receipt" if self.await_receipts else None
        subscription = Subscription(subscription_id, kind, destination, queue, receipt)
        self._subscriptions[subscription_id] = subscription
        if receipt:
            self._pending.add(receipt)

        self._send_frame(connection, stomp.subscribe_frame(subscription_id, destination, receipt))
        self.logger.log_debug(f"ResultReceiverClient ({self.user_name}): subscribed to {destination}")
        if not receipt:
            self._acknowledge()

    def _on_receipt(self, receipt_id: str) -> None:
        if receipt_id in self._pending:
            self._pending.discard(receipt_id)
            self._acknowledge()

    def _acknowledge(self) -> None:
        acknowledged = len(self._subscriptions) - len(self._pending)
        if acknowledged >= self._expected and not self._pending:
            self._ready.set()

    def _on_message(self, frame: stomp.Frame) -> None:
        subscription = self._subscriptions.get(frame.headers.get("subscription", ""))
        if subscription is None:
            self.logger.log_debug(
                f"ResultReceiverClient ({self.user_name}): message for unknown subscription "
                f"{frame.headers.get('subscription')!r} dropped"
            )
            return
        try:
            payload = json.loads(frame.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as error:
            self.logger.log_warning(
                f"ResultReceiverClient ({self.user_name}): failed to parse {subscription.kind} payload: {error}"
            )
            return
        if not isinstance(payload, dict):
            self.logger.log_warning(
                f"ResultReceiverClient ({self.user_name}): {subscription.kind} payload is not an object, dropped"
            )
            return
        self.logger.log_debug(f"ResultReceiverClient ({self.user_name}): {subscription.kind} received: {payload}")
        subscription.queue.put(payload)

    def _send_frame(self, connection: Connection, frame: stomp.Frame) -> None:
        encoded = stomp.encode(frame)
        connection.send(sockjs.wrap(encoded) if self.use_sockjs else encoded)
