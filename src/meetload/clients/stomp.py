"""Minimal STOMP 1.2 frame codec for the text retriever subscription socket."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

NULL = "\x00"

_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r", "c": ":"}

# CONNECT/CONNECTED frames must not escape header values (STOMP 1.2, "Value Encoding").
_RAW_HEADER_COMMANDS = {"CONNECT", "CONNECTED"}


class StompError(ValueError):
    """Raised when an inbound frame cannot be decoded."""


@dataclass(slots=True)
class Frame:
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)


def escape(value: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in value)


def unescape(value: str) -> str:
    result: List[str] = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        nxt = next(chars, None)
        if nxt is None or nxt not in _UNESCAPES:
            raise StompError(f"Invalid escape sequence in header value {value!r}")
        result.append(_UNESCAPES[nxt])
    return "".join(result)


def encode(frame: Frame) -> str:
    raw = frame.command in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for name, value in frame.headers.items():
        if raw:
            lines.append(f"{name}:{value}")
        else:
            lines.append(f"{escape(name)}:{escape(str(value))}")
    body = frame.body.decode("utf-8")
    return "\n".join(lines) + "\n\n" + body + NULL


def decode(data: Union[str, bytes]) -> Optional[Frame]:
    """
    Decode a single STOMP frame.

    Returns ``None`` for heart-beats (frames made only of end-of-line bytes).
    """
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    stripped = raw.lstrip(b"\r\n")
    if not stripped.strip(b"\x00"):
        return None

    head, sep, rest = stripped.partition(b"\n\n")
    if not sep:
        head, sep, rest = stripped.partition(b"\r\n\r\n")
    if not sep:
        raise StompError("Frame has no header/body separator")

    lines = head.decode("utf-8").replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise StompError("Frame has no command")

    raw_headers = command in _RAW_HEADER_COMMANDS
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, colon, value = line.partition(":")
        if not colon:
            raise StompError(f"Malformed header line {line!r}")
        if not raw_headers:
            name, value = unescape(name), unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(name, value)

    if "content-length" in headers:
        try:
            length = int(headers["content-length"])
        except ValueError as error:
            raise StompError(f"Invalid content-length {headers['content-length']!r}") from error
        body = rest[:length]
        if len(body) < length:
            raise StompError("Frame body shorter than content-length")
    else:
        body, _, _ = rest.partition(b"\x00")

    return Frame(command=command, headers=headers, body=body)


def connect_frame(host: str, extra_headers: Dict[str, str]) -> Frame:
    headers = {"accept-version": "1.2,1.1", "host": host, "heart-beat": "0,0"}
    headers.update(extra_headers)
    return Frame("CONNECT", headers)


def subscribe_frame(subscription_id: str, destination: str, receipt: Optional[str] = None) -> Frame:
    headers = {"id": subscription_id, "destination": destination, "ack": "auto"}
    if receipt:
        headers["receipt"] = receipt
    return Frame("SUBSCRIBE", headers)


def disconnect_frame() -> Frame:
    return Frame("DISCONNECT")
