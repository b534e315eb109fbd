"""Command reconstruction from the raw keystroke stream.

The buffer mirrors what the user has typed since the last Enter so the tab
can keep a command history. It never drives process behaviour: the shell
on the other side of the PTY stays authoritative for what actually runs.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Deque, Iterator, List, Optional, Union


ESC = "\x1b"
BACKSPACES = ("\x7f", "\x08")
LINE_DISCARD = ("\x03", "\x15")  # Ctrl+C, Ctrl+U


class CommandStatus(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class CommandHistoryEntry:
    command: str
    timestamp: str
    status: CommandStatus = CommandStatus.PENDING
    exit_code: Optional[int] = None
    output: str = ""

    def append_output(self, text: str, limit: int) -> None:
        self.output += text
        if len(self.output) > limit:
            self.output = self.output[-limit:] if limit else ""


def _timestamp() -> str:
    return datetime.now().strftime("%d %b %H:%M:%S")


class CommandHistory:
    """Bounded FIFO of executed commands, oldest evicted first."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._entries: Deque[CommandHistoryEntry] = deque(maxlen=limit)

    def append(self, entry: CommandHistoryEntry) -> None:
        self._entries.append(entry)

    def latest_pending(self) -> Optional[CommandHistoryEntry]:
        """Newest entry if it is still awaiting a status."""
        if self._entries and self._entries[-1].status is CommandStatus.PENDING:
            return self._entries[-1]
        return None

    def commands(self) -> List[str]:
        return [entry.command for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CommandHistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> CommandHistoryEntry:
        return self._entries[index]


def _skip_escape(text: str, i: int) -> int:
    """Return the index just past the escape sequence starting at text[i].

    Handles CSI (ESC [ ... final), SS3 (ESC O x), OSC (ESC ] ... BEL or
    ESC \\) and two-character ESC x forms. A trailing lone ESC is consumed.
    """
    n = len(text)
    i += 1
    if i >= n:
        return n
    lead = text[i]
    if lead == "[":
        i += 1
        while i < n and 0x20 <= ord(text[i]) <= 0x3F:
            i += 1
        return min(i + 1, n)
    if lead == "O":
        return min(i + 2, n)
    if lead == "]":
        while i < n:
            if text[i] == "\x07":
                return i + 1
            if text[i] == ESC and i + 1 < n and text[i + 1] == "\\":
                return i + 2
            i += 1
        return n
    return i + 1


class CommandBuffer:
    """Per-session accumulator of the line being typed."""

    def __init__(self) -> None:
        self.text = ""

    def feed(self, data: Union[bytes, str]) -> List[str]:
        """Apply one keystroke event.

        Args:
            data: Raw keystroke chunk exactly as it was sent to the host

        Returns:
            Commands completed by this chunk (trimmed, non-empty), in order
        """
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        completed: List[str] = []
        i = 0
        n = len(data)
        while i < n:
            ch = data[i]
            # Arrow keys, paste brackets and other sequences never reach the line
            if ch == ESC:
                i = _skip_escape(data, i)
                continue
            if ch == "\r":
                command = self.text.strip()
                if command:
                    completed.append(command)
                self.text = ""
            elif ch in BACKSPACES:
                self.text = self.text[:-1]
            elif ch in LINE_DISCARD:
                self.text = ""
            elif ord(ch) >= 32:
                self.text += ch
            i += 1
        return completed

    def reset(self) -> None:
        self.text = ""


def new_entry(command: str) -> CommandHistoryEntry:
    return CommandHistoryEntry(command=command, timestamp=_timestamp())
