from __future__ import annotations

from typing import Callable, Iterator, Mapping, Optional, Protocol, Union

from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.sync.client import connect

Data = Union[str, bytes]

# Errors raised while opening or using a websocket that clients log and absorb.
TRANSPORT_ERRORS = (ConnectionClosed, InvalidHandshake, InvalidURI, OSError, TimeoutError)


class Connection(Protocol):
    def send(self, message: Data) -> None:
        """Send a text or binary frame."""

    def __iter__(self) -> Iterator[Data]:
        """Yield inbound frames until the connection closes."""

    def close(self) -> None:
        """Close the connection."""


Connector = Callable[[str, Mapping[str, str]], Connection]


def open_websocket(
    uri: str,
    headers: Optional[Mapping[str, str]] = None,
    open_timeout: float = 10.0,
) -> Connection:
    """Open a blocking websocket connection (one reader thread per connection)."""

    return connect(
        uri,
        additional_headers=dict(headers or {}),
        open_timeout=open_timeout,
        max_size=None,
    )


def websocket_connector(open_timeout: float = 10.0) -> Connector:
    def _connect(uri: str, headers: Mapping[str, str]) -> Connection:
        return open_websocket(uri, headers, open_timeout=open_timeout)

    return _connect
