"""In-process host bridge backed by local PTYs.

Implements the host bridge contract on top of PtyRunner so the terminal
tab works without a separate host process. Blocking PTY work (fork,
close) runs in the default executor; reader-thread callbacks are marshalled
onto the event loop with ``call_soon_threadsafe`` so subscribers always run
on the loop, in arrival order.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
from typing import Dict, List, Optional

from ..mux.bridge import ExitCallback, OutputCallback, Unsubscribe
from ..mux.errors import CloseError, IoError, ProcessStartError, ResizeError
from .pty_runner import PtyRunner

logger = logging.getLogger(__name__)


def default_shell() -> List[str]:
    return [os.environ.get("SHELL") or "/bin/bash"]


class LocalPtyBridge:
    """Host bridge that spawns shells on this machine.

    Attributes:
        command: argv of the shell started for every session
        runners: Live PTY runners keyed by session id
    """

    def __init__(
        self,
        command: Optional[List[str]] = None,
        cwd: Optional[str] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.command = command or default_shell()
        self.cwd = cwd
        self.runners: Dict[int, PtyRunner] = {}
        self._ids = itertools.count(1)
        self._loop = loop
        self._output_subscribers: List[OutputCallback] = []
        self._exit_subscribers: List[ExitCallback] = []

    # --- Subscriptions ---------------------------------------------------

    def subscribe_output(self, callback: OutputCallback) -> Unsubscribe:
        self._output_subscribers.append(callback)
        return lambda: self._unsubscribe(self._output_subscribers, callback)

    def subscribe_exit(self, callback: ExitCallback) -> Unsubscribe:
        self._exit_subscribers.append(callback)
        return lambda: self._unsubscribe(self._exit_subscribers, callback)

    @staticmethod
    def _unsubscribe(subscribers: list, callback) -> None:
        if callback in subscribers:
            subscribers.remove(callback)

    # --- Bridge operations -----------------------------------------------

    async def start_process(self) -> int:
        loop = self._loop = self._loop or asyncio.get_running_loop()
        session_id = next(self._ids)
        runner = PtyRunner(name=f"session-{session_id}", command=self.command, cwd=self.cwd)
        runner.on_output(lambda data: self._post(self._emit_output, session_id, data))
        runner.on_exit(lambda code: self._post(self._emit_exit, session_id, code))

        logger.info(f"[LocalPtyBridge] starting session {session_id}: {' '.join(self.command)}")
        try:
            started = await loop.run_in_executor(None, runner.start)
        except OSError as exc:
            raise ProcessStartError(f"fork failed: {exc}") from exc
        if not started:
            await loop.run_in_executor(None, runner.close)
            raise ProcessStartError(f"{self.command[0]} exited immediately")

        self.runners[session_id] = runner
        logger.info(f"[LocalPtyBridge] session {session_id} started, pid={runner.pid}")
        return session_id

    async def send_input(self, session_id: int, data: bytes) -> None:
        runner = self.runners.get(session_id)
        if runner is None:
            raise IoError(f"session {session_id} not found")
        try:
            runner.write(data)
        except OSError as exc:
            raise IoError(f"write to session {session_id} failed: {exc}") from exc

    async def resize_pty(self, session_id: int, rows: int, cols: int) -> None:
        runner = self.runners.get(session_id)
        if runner is None:
            raise ResizeError(f"session {session_id} not found")
        try:
            runner.set_winsize(rows=rows, cols=cols)
        except OSError as exc:
            raise ResizeError(f"resize of session {session_id} failed: {exc}") from exc
        logger.debug(f"[LocalPtyBridge] session {session_id} resized to {rows}x{cols}")

    async def close_terminal_process(self, session_id: int) -> None:
        runner = self.runners.pop(session_id, None)
        if runner is None:
            raise CloseError(f"session {session_id} not found")
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, runner.close)
        logger.info(f"[LocalPtyBridge] session {session_id} closed")

    async def close_all(self) -> None:
        for session_id in list(self.runners):
            await self.close_terminal_process(session_id)

    # --- Event marshalling -----------------------------------------------

    def _post(self, fn, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            pass  # Loop shut down between the check and the call

    def _emit_output(self, session_id: int, data: bytes) -> None:
        for callback in list(self._output_subscribers):
            callback(session_id, data)

    def _emit_exit(self, session_id: int, code: int) -> None:
        runner = self.runners.pop(session_id, None)
        if runner is not None and self._loop is not None:
            self._loop.run_in_executor(None, runner.close)
        for callback in list(self._exit_subscribers):
            callback(session_id, code)
