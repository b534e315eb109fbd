"""Process lifecycle state machine for one terminal session.

States::

    ABSENT -> STARTING -> RUNNING -> CLOSED
                 |           |
                 v           v
               FAILED      ABSENT   (process exited on the host side)

CLOSED and FAILED sessions stay addressable and may re-enter STARTING on
an explicit start or restart. The start procedure is timer driven: each
``start_process`` call is raced against a timeout with ``asyncio.wait`` and
the backoff between attempts is an ``asyncio.sleep``, so the UI loop keeps
running throughout.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from .bridge import HostBridge
from .config import MultiplexerConfig
from .errors import LifecycleError, ProcessStartError

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    CLOSED = "closed"
    FAILED = "failed"


_ALLOWED: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.ABSENT: frozenset({LifecycleState.STARTING, LifecycleState.CLOSED}),
    LifecycleState.STARTING: frozenset({
        LifecycleState.RUNNING,
        LifecycleState.FAILED,
        LifecycleState.CLOSED,
    }),
    LifecycleState.RUNNING: frozenset({LifecycleState.ABSENT, LifecycleState.CLOSED}),
    LifecycleState.CLOSED: frozenset({LifecycleState.STARTING}),
    LifecycleState.FAILED: frozenset({LifecycleState.STARTING, LifecycleState.CLOSED}),
}


ProgressReporter = Callable[[str], None]


class SessionLifecycle:
    """Tracks state, attempt count and the pending start task of a session."""

    def __init__(self, config: Optional[MultiplexerConfig] = None, label: str = "session"):
        self.config = config or MultiplexerConfig()
        self.label = label
        self.state = LifecycleState.ABSENT
        self.attempts = 0
        self.last_error: Optional[str] = None
        self.start_task: Optional[asyncio.Task] = None

    # --- State -----------------------------------------------------------

    def can_transition(self, new_state: LifecycleState) -> bool:
        return new_state in _ALLOWED[self.state]

    def transition(self, new_state: LifecycleState) -> None:
        if not self.can_transition(new_state):
            raise LifecycleError(
                f"{self.label}: illegal transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"[SessionLifecycle] {self.label}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def is_running(self) -> bool:
        return self.state is LifecycleState.RUNNING

    @property
    def is_starting(self) -> bool:
        return self.state is LifecycleState.STARTING

    def begin_start(self) -> None:
        """Enter STARTING with a fresh attempt counter."""
        self.transition(LifecycleState.STARTING)
        self.attempts = 0
        self.last_error = None

    def cancel_start(self) -> None:
        """Stop further start attempts. In-flight host calls are not aborted."""
        task = self.start_task
        self.start_task = None
        if task is not None and not task.done():
            task.cancel()

    # --- Start procedure -------------------------------------------------

    async def run_start(self, bridge: HostBridge, report: ProgressReporter) -> Optional[int]:
        """Run bounded start attempts against the host.

        Args:
            bridge: Host bridge to call start_process on
            report: Sink for the per-attempt progress lines

        Returns:
            The new session id, or None once every attempt has failed (the
            lifecycle is then FAILED). The caller performs the transition to
            RUNNING so it can update its registry in the same step.
        """
        total = self.config.start_attempts
        while True:
            self.attempts += 1
            report(f"attempt {self.attempts}/{total}…")
            try:
                return await self._attempt(bridge)
            except ProcessStartError as exc:
                self.last_error = str(exc)
                logger.warning(
                    f"[SessionLifecycle] {self.label}: start attempt "
                    f"{self.attempts}/{total} failed: {exc}"
                )
            if self.attempts >= total:
                self.transition(LifecycleState.FAILED)
                return None
            await asyncio.sleep(self.config.retry_backoff)

    async def _attempt(self, bridge: HostBridge) -> int:
        future = asyncio.ensure_future(bridge.start_process())
        try:
            done, _ = await asyncio.wait({future}, timeout=self.config.start_timeout)
        except asyncio.CancelledError:
            future.add_done_callback(lambda f: _discard_late_start(bridge, f, self.label))
            raise

        if future not in done:
            future.add_done_callback(lambda f: _discard_late_start(bridge, f, self.label))
            raise ProcessStartError(f"start_process timed out after {self.config.start_timeout:g}s")

        if future.cancelled():
            raise ProcessStartError("start_process was cancelled by the host")
        exc = future.exception()
        if exc is None:
            return future.result()
        if isinstance(exc, ProcessStartError):
            raise exc
        raise ProcessStartError(str(exc) or type(exc).__name__) from exc


def _discard_late_start(bridge: HostBridge, future: asyncio.Future, label: str) -> None:
    """Drop the result of a start call that lost its race.

    A late success is never applied to session state; its process is
    closed so it does not linger on the host.
    """
    if future.cancelled():
        return
    if future.exception() is not None:
        logger.debug(f"[SessionLifecycle] {label}: late start failure ignored: {future.exception()}")
        return
    orphan = future.result()
    logger.info(f"[SessionLifecycle] {label}: discarding late session {orphan}")
    asyncio.ensure_future(close_quietly(bridge, orphan))


async def close_quietly(bridge: HostBridge, session_id: int) -> bool:
    """Best-effort close; failures are logged and reported as False."""
    try:
        await bridge.close_terminal_process(session_id)
        return True
    except Exception as exc:
        logger.warning(f"[SessionLifecycle] close_terminal_process({session_id}) failed: {exc}")
        return False
