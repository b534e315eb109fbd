"""Session multiplexer for the terminal tab.

This module owns the mapping between UI tabs and backend PTY sessions:
- Tab lifecycle (create, activate, close) and the per-tab Session registry
- Routing of host output events to the owning tab, with deduplication
- Forwarding of keystrokes and resizes to the host bridge
- Command history reconstruction from the keystroke stream

Architecture:
- One multiplexer per application window, passed explicitly to the UI
- Subscribes to the host output channel exactly once for its lifetime
- Runs on the UI's asyncio loop; thread-backed bridges marshal their
  events onto the loop before calling ``on_host_output``

Thread Safety:
- The TabId and SessionId maps are only mutated under ``self._lock``, and
  the dispatch path reads them under the same lock
- Per-tab mutable state is touched only by that tab's calls; keystrokes
  for one tab are serialised through the Session's ``input_lock``
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .banner import ErrorBanner
from .bridge import EmulationWidget, ExitNotifyingBridge, HostBridge, Unsubscribe
from .classifier import OutputClassifier
from .command_buffer import CommandHistory, CommandHistoryEntry, new_entry
from .config import MultiplexerConfig
from .dedup import OutputDeduplicator
from .lifecycle import LifecycleState, SessionLifecycle, close_quietly
from .session import Session

logger = logging.getLogger(__name__)

WidgetFactory = Callable[[int], EmulationWidget]
ChangeListener = Callable[[int], None]

YELLOW = "33"
GREEN = "32"
RED = "31"


class SessionMultiplexer:
    """Registry and router for the terminal tab's PTY sessions.

    Attributes:
        bridge: Host bridge used for every process operation
        config: Timing and bound settings
        banner: Transient error banner shown above the terminal
    """

    def __init__(
        self,
        bridge: HostBridge,
        widget_factory: WidgetFactory,
        config: Optional[MultiplexerConfig] = None,
        classifier: Optional[OutputClassifier] = None,
        container: Any = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the multiplexer.

        Args:
            bridge: Host bridge for start/input/resize/close and output events
            widget_factory: Builds the emulation widget for a new tab id
            config: Settings; defaults to MultiplexerConfig()
            classifier: Optional command outcome classifier (off by default)
            container: Display target widgets are opened into on activation
            clock: Monotonic clock for the deduplicator
        """
        self.bridge = bridge
        self.config = config or MultiplexerConfig()
        self.classifier = classifier
        self.container = container
        self.banner = ErrorBanner(timeout=self.config.banner_timeout)

        self._widget_factory = widget_factory
        self._dedup = OutputDeduplicator(window=self.config.dedup_window, clock=clock)
        self._lock = threading.RLock()
        self._tabs: Dict[int, Session] = {}
        self._by_session: Dict[int, Session] = {}
        self._closing: Set[int] = set()
        self._active_tab: Optional[int] = None
        self._last_tab_id = 0

        self._unsubscribers: List[Unsubscribe] = []
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[ChangeListener] = []

        logger.info("[SessionMultiplexer] initialized")

    # --- Subscription ----------------------------------------------------

    def start(self) -> None:
        """Subscribe to the host channels. Safe to call more than once."""
        if self._unsubscribers:
            return
        self._unsubscribers.append(self.bridge.subscribe_output(self.on_host_output))
        if isinstance(self.bridge, ExitNotifyingBridge):
            self._unsubscribers.append(self.bridge.subscribe_exit(self.on_host_exit))
        logger.info("[SessionMultiplexer] subscribed to host output channel")

    @property
    def subscribed(self) -> bool:
        return bool(self._unsubscribers)

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback(tab_id) fired on tab or lifecycle changes."""
        self._listeners.append(listener)

    # --- Lookups ---------------------------------------------------------

    @property
    def active_tab_id(self) -> Optional[int]:
        return self._active_tab

    def tab_ids(self) -> List[int]:
        with self._lock:
            return list(self._tabs.keys())

    def get_session(self, tab_id: int) -> Optional[Session]:
        with self._lock:
            return self._tabs.get(tab_id)

    def session_for(self, session_id: int) -> Optional[Session]:
        with self._lock:
            return self._by_session.get(session_id)

    def history(self, tab_id: int) -> List[CommandHistoryEntry]:
        session = self.get_session(tab_id)
        return list(session.history) if session else []

    # --- Tabs ------------------------------------------------------------

    def create_tab(self) -> int:
        """Create a tab with an ABSENT session. No process is started."""
        with self._lock:
            tab_id = max(max(self._tabs, default=0), self._last_tab_id) + 1
            self._last_tab_id = tab_id
            name = f"Console {tab_id}"
            session = Session(
                tab_id=tab_id,
                name=name,
                widget=self._widget_factory(tab_id),
                lifecycle=SessionLifecycle(self.config, label=name),
                history=CommandHistory(self.config.history_limit),
            )
            self._tabs[tab_id] = session
            first = self._active_tab is None
            if first:
                self._active_tab = tab_id

        if first:
            self._display(session)
        logger.info(f"[SessionMultiplexer] created tab {tab_id}")
        self._notify(tab_id)
        return tab_id

    def activate_tab(self, tab_id: int) -> bool:
        """Make a tab active, starting or re-wiring its session as needed."""
        session = self.get_session(tab_id)
        if session is None:
            logger.warning(f"[SessionMultiplexer] activate: unknown tab {tab_id}")
            return False

        with self._lock:
            if tab_id in self._closing:
                logger.info(f"[SessionMultiplexer] activate: tab {tab_id} is closing")
                return False
            self._active_tab = tab_id
        self._display(session)

        if session.state is LifecycleState.ABSENT:
            self.start_tab(tab_id)
        elif session.lifecycle.is_running and not session.input_handler_attached:
            self._attach_input(session)

        self._notify(tab_id)
        return True

    async def close_tab(self, tab_id: int) -> bool:
        """Close a tab, releasing its host process. The last tab is kept."""
        with self._lock:
            session = self._tabs.get(tab_id)
            if session is None or tab_id in self._closing:
                return False
            if len(self._tabs) - len(self._closing) <= 1:
                logger.info(f"[SessionMultiplexer] refusing to close last tab {tab_id}")
                return False
            self._closing.add(tab_id)

        session.lifecycle.cancel_start()
        session.detach_input_handler()
        session_id = session.session_id
        if session_id is not None:
            await close_quietly(self.bridge, session_id)

        with self._lock:
            self._retire(session)
            self._tabs.pop(tab_id, None)
            self._closing.discard(tab_id)
            if session.lifecycle.can_transition(LifecycleState.CLOSED):
                session.lifecycle.transition(LifecycleState.CLOSED)
            was_active = self._active_tab == tab_id
            if was_active:
                self._active_tab = None
            remaining = [t for t in self._tabs if t not in self._closing]

        try:
            session.widget.dispose()
        except Exception as exc:
            logger.warning(f"[SessionMultiplexer] dispose failed for tab {tab_id}: {exc}")
        self._forget_classification(tab_id)
        logger.info(f"[SessionMultiplexer] closed tab {tab_id}")

        if was_active and remaining:
            self.activate_tab(max(remaining))
        self._notify(tab_id)
        return True

    def clear_tab(self, tab_id: int) -> bool:
        session = self.get_session(tab_id)
        if session is None:
            return False
        session.widget.clear()
        return True

    # --- Lifecycle -------------------------------------------------------

    def start_tab(self, tab_id: int) -> Optional[asyncio.Task]:
        """Begin starting the tab's process.

        Returns:
            The start task, or the pending one if a start is in flight;
            None when the tab is unknown or already running
        """
        with self._lock:
            session = self._tabs.get(tab_id)
            if session is None or tab_id in self._closing:
                return None
        if session.lifecycle.is_running:
            return None
        if session.lifecycle.is_starting:
            return session.lifecycle.start_task

        session.lifecycle.begin_start()
        if self.banner.persistent:
            self.banner.clear()
        task = asyncio.get_running_loop().create_task(self._run_start(session))
        session.lifecycle.start_task = task
        self._notify(tab_id)
        return task

    async def restart_tab(self, tab_id: int) -> Optional[asyncio.Task]:
        """Close the tab's current process (if any), then start afresh."""
        session = self.get_session(tab_id)
        if session is None:
            return None

        session.lifecycle.cancel_start()
        old_id = self._release(session, LifecycleState.CLOSED)
        if old_id is not None:
            await close_quietly(self.bridge, old_id)
            await asyncio.sleep(self.config.restart_settle)
        self._forget_classification(tab_id)

        if self.get_session(tab_id) is not session:
            return None
        return self.start_tab(tab_id)

    async def stop_tab(self, tab_id: int) -> bool:
        """Stop the tab's process, keeping the tab. Returns False if idle."""
        session = self.get_session(tab_id)
        if session is None:
            return False

        was_starting = session.lifecycle.is_starting
        session.lifecycle.cancel_start()
        old_id = self._release(session, LifecycleState.CLOSED)
        if old_id is None and not was_starting:
            return False
        if old_id is not None:
            await close_quietly(self.bridge, old_id)
        self._write_notice(session, "Process stopped", YELLOW)
        self._notify(tab_id)
        return True

    async def _run_start(self, session: Session) -> None:
        tab_id = session.tab_id
        report = lambda message: self._write_notice(session, message, YELLOW)
        try:
            session_id = await session.lifecycle.run_start(self.bridge, report)
        except asyncio.CancelledError:
            logger.info(f"[SessionMultiplexer] start cancelled for tab {tab_id}")
            raise

        if session_id is None:
            message = (
                f"Terminal process failed to start after {session.lifecycle.attempts} "
                f"attempts: {session.lifecycle.last_error}"
            )
            logger.error(f"[SessionMultiplexer] tab {tab_id}: {message}")
            self._write_notice(session, message, RED)
            self.banner.show(message, persistent=True)
            self._notify(tab_id)
            return

        with self._lock:
            alive = (
                self._tabs.get(tab_id) is session
                and tab_id not in self._closing
                and session.lifecycle.is_starting
            )
            if alive:
                session.lifecycle.transition(LifecycleState.RUNNING)
                session.session_id = session_id
                self._by_session[session_id] = session
                self._dedup.forget(session_id)

        if not alive:
            logger.info(
                f"[SessionMultiplexer] discarding session {session_id}: tab {tab_id} went away"
            )
            await close_quietly(self.bridge, session_id)
            return

        logger.info(f"[SessionMultiplexer] tab {tab_id} running as session {session_id}")
        self._write_notice(session, "Process started", GREEN)
        await self._push_size(session)
        self._attach_input(session)
        self._notify(tab_id)

    # --- Host events -----------------------------------------------------

    def on_host_output(self, session_id: int, payload: Union[bytes, str]) -> bool:
        """Route one output event from the host channel.

        Returns:
            True if the payload was written to a widget
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        with self._lock:
            session = self._by_session.get(session_id)
            active = self._tabs.get(self._active_tab) if self._active_tab is not None else None

        if session is None:
            if active is None or active.widget.is_disposed:
                logger.warning(
                    f"[SessionMultiplexer] no tab for session {session_id}, dropping "
                    f"{len(payload)} bytes"
                )
                return False
            logger.debug(
                f"[SessionMultiplexer] session {session_id} unknown, routing to active tab "
                f"{active.tab_id}"
            )
            session = active

        if not self._dedup.should_deliver(session_id, payload):
            logger.debug(f"[SessionMultiplexer] suppressed duplicate output for {session_id}")
            return False

        try:
            session.widget.write(payload)
            if session.tab_id == self._active_tab:
                session.widget.focus()
        except Exception as exc:
            logger.warning(f"[SessionMultiplexer] write to tab {session.tab_id} failed: {exc}")
            return False

        self._record_output(session, payload)
        return True

    def on_host_exit(self, session_id: int, exit_code: int) -> None:
        """The host reports a process gone; its session returns to ABSENT."""
        session = self.session_for(session_id)
        if session is None:
            return
        self._release(session, LifecycleState.ABSENT)
        logger.info(f"[SessionMultiplexer] session {session_id} exited with code {exit_code}")
        self._write_notice(session, f"Process exited (code {exit_code})", YELLOW)
        self._notify(session.tab_id)

    def _record_output(self, session: Session, payload: bytes) -> None:
        entry = session.history.latest_pending()
        if entry is None and self.classifier is None:
            return
        text = payload.decode("utf-8", errors="replace")
        if entry is not None:
            entry.append_output(text, self.config.output_tail)
        if self.classifier is None:
            return
        status = self.classifier.classify(session.tab_id, text)
        if status is not None and entry is not None:
            entry.status = status

    # --- UI events -------------------------------------------------------

    async def on_keystroke(self, tab_id: int, data: Union[bytes, str]) -> bool:
        """Forward keystrokes to the host and update the command buffer.

        Returns:
            True if the host accepted the input
        """
        session = self.get_session(tab_id)
        if session is None or not session.lifecycle.is_running:
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")

        async with session.input_lock:
            session_id = session.session_id
            if session_id is None or not session.lifecycle.is_running:
                return False
            try:
                await self.bridge.send_input(session_id, data)
            except Exception as exc:
                message = f"Failed to send input: {exc}"
                logger.warning(f"[SessionMultiplexer] tab {tab_id}: {message}")
                self._write_notice(session, message, RED)
                self.banner.show(message)
                return False

            for command in session.command_buffer.feed(data):
                session.history.append(new_entry(command))
                logger.debug(f"[SessionMultiplexer] tab {tab_id} command: {command!r}")
        return True

    async def on_resize(self, tab_id: int) -> bool:
        session = self.get_session(tab_id)
        if session is None or not session.lifecycle.is_running:
            return False
        return await self._push_size(session)

    async def change_directory(self, tab_id: int, path: str) -> bool:
        """Type a ``cd`` line into the tab's shell."""
        return await self.on_keystroke(tab_id, f"cd {shlex.quote(path)}\r")

    # --- Shutdown --------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel pending starts, close every live process, unsubscribe."""
        with self._lock:
            sessions = list(self._tabs.values())
        for session in sessions:
            session.lifecycle.cancel_start()
            session.detach_input_handler()

        live = [s.session_id for s in sessions if s.session_id is not None]
        if live:
            await asyncio.gather(*(close_quietly(self.bridge, sid) for sid in live))

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for task in list(self._background):
            task.cancel()
        self.banner.clear()
        logger.info(f"[SessionMultiplexer] shut down ({len(live)} sessions closed)")

    # --- Helpers ---------------------------------------------------------

    def _release(self, session: Session, new_state: LifecycleState) -> Optional[int]:
        """Unmap a session from its host id and move it to ``new_state``.

        Returns:
            The host session id that was released, if any
        """
        with self._lock:
            old_id = session.session_id
            self._retire(session)
            if session.state is not new_state and session.lifecycle.can_transition(new_state):
                session.lifecycle.transition(new_state)
        session.detach_input_handler()
        return old_id

    def _retire(self, session: Session) -> None:
        # Caller holds self._lock
        old_id = session.session_id
        if old_id is None:
            return
        if self._by_session.get(old_id) is session:
            del self._by_session[old_id]
        self._dedup.forget(old_id)
        session.session_id = None

    async def _push_size(self, session: Session) -> bool:
        session_id = session.session_id
        if session_id is None:
            return False
        try:
            rows, cols = session.widget.size
            await self.bridge.resize_pty(session_id, rows, cols)
            return True
        except Exception as exc:
            logger.warning(f"[SessionMultiplexer] resize of session {session_id} failed: {exc}")
            return False

    def _attach_input(self, session: Session) -> None:
        tab_id = session.tab_id

        def handler(data: bytes) -> None:
            self._spawn(self.on_keystroke(tab_id, data))

        if session.attach_input_handler(handler):
            logger.debug(f"[SessionMultiplexer] input handler attached for tab {tab_id}")

    def _forget_classification(self, tab_id: int) -> None:
        forget = getattr(self.classifier, "forget", None)
        if forget is not None:
            forget(tab_id)

    def _display(self, session: Session) -> None:
        try:
            if self.container is not None:
                session.widget.open(self.container)
            session.widget.focus()
        except Exception as exc:
            logger.warning(f"[SessionMultiplexer] display of tab {session.tab_id} failed: {exc}")

    def _write_notice(self, session: Session, message: str, color: str) -> None:
        if session.widget.is_disposed:
            return
        try:
            session.widget.write(f"\r\n\x1b[{color}m{message}\x1b[0m\r\n".encode("utf-8"))
        except Exception as exc:
            logger.warning(f"[SessionMultiplexer] notice to tab {session.tab_id} failed: {exc}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _notify(self, tab_id: int) -> None:
        for listener in list(self._listeners):
            try:
                listener(tab_id)
            except Exception as exc:
                logger.warning(f"[SessionMultiplexer] listener failed: {exc}")
