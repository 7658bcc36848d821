"""SockJS websocket-transport framing, as spoken by Spring ``withSockJS()`` endpoints."""

from __future__ import annotations

import json
import random
import uuid
from typing import List, Union
from urllib.parse import urlsplit, urlunsplit

_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


class SockJSClosed(ConnectionError):
    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"SockJS session closed ({code}): {reason}")


def transport_url(base_uri: str) -> str:
    """Build ``<base>/<server-id>/<session-id>/websocket`` for ``base_uri``."""

    parts = urlsplit(base_uri)
    scheme = _SCHEMES.get(parts.scheme)
    if scheme is None:
        raise ValueError(f"Unsupported scheme for SockJS endpoint: {base_uri}")
    server_id = f"{random.randint(0, 999):03d}"
    session_id = uuid.uuid4().hex
    path = f"{parts.path.rstrip('/')}/{server_id}/{session_id}/websocket"
    return urlunsplit((scheme, parts.netloc, path, parts.query, ""))


def wrap(message: str) -> str:
    return json.dumps([message])


def unwrap(frame: Union[str, bytes]) -> List[str]:
    """
    Return the application messages carried by one SockJS frame.

    Open (``o``) and heart-beat (``h``) frames carry nothing. A close frame
    raises :class:`SockJSClosed`.
    """
    text = frame.decode("utf-8") if isinstance(frame, bytes) else frame
    if not text:
        return []
    kind, payload = text[0], text[1:]
    if kind in ("o", "h"):
        return []
    if kind == "a":
        messages = json.loads(payload)
        if not isinstance(messages, list):
            raise ValueError(f"Malformed SockJS array frame: {text!r}")
        return [str(message) for message in messages]
    if kind == "m":
        return [str(json.loads(payload))]
    if kind == "c":
        code, reason = json.loads(payload)
        raise SockJSClosed(int(code), str(reason))
    raise ValueError(f"Unknown SockJS frame type {kind!r}")
