"""Minimal PTY process runner used by the local host bridge.

- Forks the shell inside a PTY
- Reads the PTY master on a background thread and streams raw bytes
- Applies window size changes via TIOCSWINSZ and SIGWINCH

Notes:
- Output is delivered as raw bytes; decoding and emulation happen in the
  terminal widget, never here.
- Callbacks run on the reader thread. Callers that live on an event loop
  must marshal them (see LocalPtyBridge).
"""

from __future__ import annotations

import fcntl
import os
import pty
import select
import signal
import struct
import sys
import termios
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional


OutputCallback = Callable[[bytes], None]
ExitCallback = Callable[[int], None]


@dataclass
class PtyRunner:
    name: str
    command: List[str]
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None
    pid: Optional[int] = None
    master_fd: Optional[int] = None
    _reader_thread: Optional[threading.Thread] = None
    _stop_event: threading.Event = field(default_factory=threading.Event)
    _on_output: Optional[OutputCallback] = None
    _on_exit: Optional[ExitCallback] = None
    _first_output: bytearray = field(default_factory=bytearray, init=False, repr=False)
    _exit_code: Optional[int] = field(default=None, init=False, repr=False)

    def on_output(self, cb: OutputCallback) -> None:
        self._on_output = cb

    def on_exit(self, cb: ExitCallback) -> None:
        """Set callback for process exit (receives exit code)."""
        self._on_exit = cb

    def set_winsize(self, rows: int, cols: int) -> None:
        """Set PTY window size and notify child process via SIGWINCH."""
        if self.master_fd is None:
            raise OSError(f"PTY not started: {self.name}")
        winsize = struct.pack("HHHH", rows, cols, 0, 0)
        fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)
        if self.pid:
            try:
                os.kill(self.pid, signal.SIGWINCH)
            except ProcessLookupError:
                pass

    def get_winsize(self) -> Optional[tuple[int, int]]:
        """Return current PTY winsize as (rows, cols) if available."""
        if self.master_fd is None:
            return None
        try:
            data = fcntl.ioctl(self.master_fd, termios.TIOCGWINSZ, struct.pack("HHHH", 0, 0, 0, 0))
            rows, cols, _, _ = struct.unpack("HHHH", data)
            return rows, cols
        except OSError:
            return None

    def first_output_preview(self, limit: int = 512) -> str:
        if not self._first_output:
            return ""
        return self._first_output[:limit].decode("utf-8", errors="replace")

    def start(self) -> bool:
        """Fork process in PTY and begin background read loop.

        Returns:
            False if the child died immediately (exec failure, bad command)
        """
        if self.pid is not None:
            return True

        self._first_output.clear()
        pid, master = pty.fork()
        if pid == 0:
            try:
                if self.cwd:
                    os.chdir(self.cwd)
                env = dict(os.environ, **(self.env or {}))
                env.setdefault("TERM", "xterm-256color")
                os.execvpe(self.command[0], self.command, env)
            except Exception as e:
                print(f"Failed to exec {self.command}: {e}", file=sys.stderr)
                os._exit(1)

        # Parent
        self.pid = pid
        self.master_fd = master

        # Background reader so the event loop never blocks on the PTY
        self._stop_event.clear()
        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

        # Quick sanity: detect immediate child exit
        for _ in range(4):
            if not self.is_alive():
                return False
            time.sleep(0.05)
        return True

    def _reader_loop(self) -> None:
        fd = self.master_fd
        if fd is None:
            return
        while not self._stop_event.is_set():
            try:
                r, _, _ = select.select([fd], [], [], 0.05)
            except (OSError, ValueError):
                break
            if fd not in r:
                continue
            try:
                data = os.read(fd, 4096)
            except OSError:
                break
            if not data:
                break
            if len(self._first_output) < 2048:
                self._first_output.extend(data[: 2048 - len(self._first_output)])
            if self._on_output:
                self._on_output(data)

        if self._on_exit:
            self._on_exit(self._reap())

    def _reap(self) -> int:
        # The slave side closes slightly before the child is reapable
        for _ in range(10):
            if not self.is_alive():
                break
            time.sleep(0.02)
        return self._exit_code if self._exit_code is not None else -1

    def _poll(self) -> bool:
        """Reap the child if it has exited. Returns True while it runs."""
        if self.pid is None or self._exit_code is not None:
            return False
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self._exit_code = -1
            return False
        if pid == 0:
            return True
        self._exit_code = os.WEXITSTATUS(status) if os.WIFEXITED(status) else -1
        return False

    def write(self, data: bytes) -> None:
        """Write raw bytes to the child's stdin (via PTY)."""
        if self.master_fd is None:
            raise OSError(f"PTY not running: {self.name}")
        view = memoryview(data)
        while view:
            written = os.write(self.master_fd, view)
            view = view[written:]

    def close(self) -> None:
        self._stop_event.set()
        if self._reader_thread and self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout=0.5)

        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None

        if self.pid is not None:
            if self._poll():
                try:
                    os.kill(self.pid, signal.SIGKILL)
                    os.waitpid(self.pid, 0)
                except (ProcessLookupError, ChildProcessError):
                    pass
            self.pid = None

    def is_alive(self) -> bool:
        return self._poll()

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code
