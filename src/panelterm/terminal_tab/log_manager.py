from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict


CATEGORIES = ("events", "errors", "debug", "output", "troubleshooting")


@dataclass
class LogManager:
    """Simple line-buffered log manager by category.

    Categories: events, errors, debug, output, troubleshooting
    """

    max_lines: int = 2000
    buffers: Dict[str, Deque[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in CATEGORIES:
            self.buffers[name] = deque(maxlen=self.max_lines)

    def add(self, category: str, message: str) -> None:
        buf = self.buffers.setdefault(category, deque(maxlen=self.max_lines))
        for line in message.splitlines() or [message]:
            buf.append(line)

    def text(self, category: str) -> str:
        buf = self.buffers.get(category)
        if not buf:
            return ""
        return "\n".join(buf)

    def reset(self, category: str) -> None:
        buf = self.buffers.get(category)
        if buf is not None:
            buf.clear()


class LogManagerHandler(logging.Handler):
    """Routes ``logging`` records into LogManager categories.

    WARNING and above go to ``errors``, INFO to ``events``, the rest to
    ``debug``.
    """

    def __init__(self, log_manager: LogManager, level: int = logging.DEBUG):
        super().__init__(level)
        self.log_manager = log_manager
        self.setFormatter(logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno >= logging.WARNING:
                category = "errors"
            elif record.levelno >= logging.INFO:
                category = "events"
            else:
                category = "debug"
            self.log_manager.add(category, self.format(record))
        except Exception:
            self.handleError(record)
