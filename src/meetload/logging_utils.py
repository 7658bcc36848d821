from __future__ import annotations

import threading
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text


@dataclass(slots=True)
class RichLogger:
    """Wrapper around Rich console logging with an optional persistent log file.

    Shared by every client thread of a scenario, so file writes are serialised.
    """

    log_file: Optional[Path] = None
    console: Console = field(default_factory=Console)
    verbose: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log_text(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False)
        self._write_line(message)

    def log_debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(message, style="dim", markup=False, highlight=False)
        self._write_line(f"DEBUG: {message}")

    def log_panel(self, message: str, title: str, style: str) -> None:
        panel = Panel(Text(message), border_style=style, title=title)
        self.console.print(panel)
        self._write_line(f"{title}: {message}")

    def log_warning(self, message: str) -> None:
        self.log_panel(message, "WARN", "yellow")

    def log_exception(self, error: BaseException, context: str = "") -> None:
        message = f"{context}: {error}" if context else str(error)
        self.log_panel(message, "ERROR", "red")
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self._write_line(tb.rstrip())

    def _write_line(self, message: str) -> None:
        if self.log_file is None:
            return
        timestamp = datetime.now().isoformat(timespec="milliseconds")
        with self._lock:
            with self.log_file.open("a", encoding="utf-8") as handle:
                handle.write(f"{timestamp} - {message}\n")
