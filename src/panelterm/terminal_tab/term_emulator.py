"""VT100 screen model for one console tab, backed by pyte.

DIMENSION ORDERING:
- Our API uses (cols, rows) = (WIDTH, HEIGHT)
- pyte uses columns (width) and lines (height), and
  ``Screen.resize(lines, columns)`` takes them height first
- The multiplexer reports widget size as (rows, cols) because that is
  what the PTY winsize struct wants
"""

from __future__ import annotations

import re
from typing import Callable, Optional, Tuple

import pyte
import wcwidth


_ANSI_ESCAPE_PATTERN = re.compile(
    r'\x1b\[[0-9;?]*[a-zA-Z]'  # CSI
    r'|\x1b\][^\x07]*(?:\x07|\x1b\\)'  # OSC, BEL or ST terminated
    r'|\x1b[PX^_][^\x1b]*\x1b\\'  # DCS/SOS/PM/APC
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences, leaving only printable text."""
    return _ANSI_ESCAPE_PATTERN.sub('', text)


class EmulatedTerminal:
    """pyte screen plus byte stream with a text renderer.

    Args:
        cols: Screen width in cells
        rows: Screen height in cells
        debug_logger: Optional callback for feed/resize traces
    """

    def __init__(
        self,
        cols: int = 120,
        rows: int = 32,
        debug_logger: Optional[Callable[[str], None]] = None
    ) -> None:
        self.cols = cols
        self.rows = rows
        self._debug_logger = debug_logger
        # pyte.Screen(columns, lines) - note the order!
        self._screen = pyte.Screen(columns=cols, lines=rows)
        self._stream = pyte.ByteStream(self._screen)
        self.bytes_fed = 0

    def feed(self, data) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8", errors="replace")
        if not data:
            return
        if self._debug_logger and b'\x1b' in data:
            preview = repr(data[:200])
            self._debug_logger(f"[feed] escape sequences: {preview}")
        self._stream.feed(data)
        self.bytes_fed += len(data)

    def reset(self) -> None:
        """Blank the screen and home the cursor."""
        self._screen.reset()

    def text(self) -> str:
        return "\n".join(self._screen.display)

    @property
    def cursor(self) -> Tuple[int, int]:
        """VT cursor as (x, y)."""
        return self._screen.cursor.x, self._screen.cursor.y

    def _index_from_column(self, line: str, column: int) -> int:
        """Return string index that corresponds to a visual column.

        Uses wcwidth to account for wide/combining characters.
        """
        if column <= 0:
            return 0
        width = 0
        for i, ch in enumerate(line):
            w = max(wcwidth.wcwidth(ch), 0)
            if width + w > column:
                return i
            width += w
        return len(line)

    def text_with_cursor(self, cursor_char: str = "▌", show: bool = True) -> str:
        """Return screen text with a visual caret at the current cursor."""
        if not show:
            return self.text()

        lines = list(self._screen.display)
        cx, cy = self.cursor
        if 0 <= cy < len(lines):
            line = lines[cy]
            idx = self._index_from_column(line, cx)
            if idx >= len(line):
                line = line + " "
                idx = len(line) - 1
            # Replace the cell under the cursor so the line keeps its width
            lines[cy] = line[:idx] + cursor_char + line[idx + 1:]
        return "\n".join(lines)

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the screen. Returns False when the size is unchanged."""
        if cols <= 0 or rows <= 0 or (cols, rows) == (self.cols, self.rows):
            return False
        self.cols = cols
        self.rows = rows
        # CRITICAL: pyte.Screen.resize(lines, columns) not (columns, lines)!
        self._screen.resize(lines=rows, columns=cols)
        if self._debug_logger:
            self._debug_logger(
                f"[Emulator] resize(cols={cols}, rows={rows}) -> pyte screen is now "
                f"{self._screen.columns}x{self._screen.lines}"
            )
        return True

    @property
    def pyte_version(self) -> str:
        return getattr(pyte, "__version__", "unknown")
