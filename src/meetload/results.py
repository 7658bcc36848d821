from __future__ import annotations

import queue
import threading
from typing import Any, Dict, List, Mapping, Optional

ResultMessage = Dict[str, Any]


def is_final(message: Mapping[str, Any]) -> bool:
    return message.get("isFullText") is True


def speaker_of(message: Mapping[str, Any]) -> Optional[str]:
    speaker = message.get("userName")
    return str(speaker) if speaker is not None else None


def utterance_index(message: Mapping[str, Any]) -> Optional[int]:
    value = message.get("utteranceIdx")
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ResultQueue:
    """Unbounded FIFO of result messages with one writer thread and one drainer thread.

    Each role is bound to the first thread that exercises it; a second thread
    taking the same role is a programming error and raises ``RuntimeError``.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._queue: "queue.Queue[ResultMessage]" = queue.Queue()
        self._writer: Optional[int] = None
        self._reader: Optional[int] = None
        self._claim_lock = threading.Lock()

    def put(self, message: ResultMessage) -> None:
        self._bind("_writer")
        self._queue.put(message)

    def drain(self) -> List[ResultMessage]:
        """Remove and return every message currently queued, oldest first."""
        self._bind("_reader")
        drained: List[ResultMessage] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained

    def clear(self) -> int:
        return len(self.drain())

    def empty(self) -> bool:
        return self._queue.empty()

    def __len__(self) -> int:
        return self._queue.qsize()

    def _bind(self, role: str) -> None:
        current = threading.get_ident()
        if getattr(self, role) == current:
            return
        with self._claim_lock:
            bound = getattr(self, role)
            if bound is None:
                setattr(self, role, current)
            elif bound != current:
                raise RuntimeError(f"ResultQueue {self.name!r} already has a{role.replace('_', ' ')} thread")
