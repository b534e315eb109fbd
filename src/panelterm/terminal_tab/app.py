"""Textual terminal tab: console tabs multiplexed onto host PTY sessions.

Goals:
- Consoles behave like an integrated terminal: each tab owns a shell on
  the host, output keeps flowing into hidden tabs
- Mouse-first navigation tree for consoles, actions, history and logs
- Host failures surface as an error banner and never crash the app
"""

from __future__ import annotations

import asyncio
import logging
from importlib import metadata
from typing import Any, Dict, List, Optional, Set

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Footer, Header, Input, Static, Tree

from ..mux import (
    CommandStatus,
    HostBridge,
    LifecycleState,
    MultiplexerConfig,
    OutputClassifier,
    SessionMultiplexer,
)
from .diagnostics import DiagnosticsManager
from .log_manager import LogManager, LogManagerHandler
from .term_emulator import strip_ansi
from .term_view import TermView
from .widget import TerminalWidget

logger = logging.getLogger(__name__)


STATE_MARKS = {
    LifecycleState.ABSENT: "○",
    LifecycleState.STARTING: "◌",
    LifecycleState.RUNNING: "●",
    LifecycleState.CLOSED: "×",
    LifecycleState.FAILED: "!",
}

STATUS_MARKS = {
    CommandStatus.PENDING: "·",
    CommandStatus.SUCCEEDED: "✓",
    CommandStatus.FAILED: "✗",
    CommandStatus.UNKNOWN: "?",
}

LOG_PAGES = ("events", "errors", "output", "debug", "troubleshooting")


class TerminalTabApp(App):
    CSS = """
    #body { height: 1fr; }
    #sidebar { width: 34; border-right: solid $primary; }
    #brand { padding: 0 1; text-style: bold; }
    #nav-tree { height: 1fr; }
    #hint { color: $accent; padding: 0 1; }
    #title { padding: 0 1; background: $boost; }
    #banner { display: none; padding: 0 1; background: $error; color: $text; }
    #banner.visible { display: block; }
    #terminal-view { height: 1fr; border: round $primary-darken-2; }
    #terminal-view.has-focus { border: round $accent; }
    #control { height: auto; }
    #cd-input { width: 1fr; }
    """

    BINDINGS = [
        Binding("ctrl+t", "new_tab", "New console", priority=True),
        Binding("ctrl+w", "close_tab", "Close console", priority=True),
        Binding("f5", "restart_tab", "Restart"),
        Binding("f6", "stop_tab", "Stop"),
        Binding("f7", "clear_tab", "Clear"),
        Binding("ctrl+q", "quit", "Quit", priority=True),
    ]

    def __init__(
        self,
        bridge: HostBridge,
        config: Optional[MultiplexerConfig] = None,
        classifier: Optional[OutputClassifier] = None,
        log_level: int = logging.INFO,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.bridge = bridge
        self.log_manager = LogManager()
        self._log_handler = LogManagerHandler(self.log_manager)
        self._log_level = log_level

        self.multiplexer = SessionMultiplexer(
            bridge,
            self._make_widget,
            config=config,
            classifier=classifier,
        )

        # Filled in on mount; shared by reference with diagnostics
        self._version_info: Dict[str, str] = {}
        self.diagnostics = DiagnosticsManager(
            multiplexer=self.multiplexer,
            log_manager=self.log_manager,
            version_info=self._version_info,
            get_app_state=self._get_app_state_for_diagnostics,
        )

        self.active_view: str = "terminal"
        self.host_connected = False
        self._tasks: Set[asyncio.Task] = set()
        self._shut_down = False

    def compose(self) -> ComposeResult:
        yield Header(id="header")

        with Horizontal(id="body"):
            with Vertical(id="sidebar"):
                yield Static("panelterm • Consoles", id="brand")
                self.nav_tree = Tree("Navigation", id="nav-tree")
                yield self.nav_tree
                yield Static("^T new • ^W close • F5 restart • F6 stop • F7 clear", id="hint")

            with Vertical(id="detail"):
                self.status_line = Static("Terminal", id="title", markup=False)
                yield self.status_line
                self.banner_view = Static("", id="banner", markup=False)
                yield self.banner_view
                self.terminal_view = TermView(id="terminal-view", expand=True, shrink=False)
                yield self.terminal_view
                with Horizontal(id="control"):
                    self.cd_input = Input(placeholder="Change directory of the active console…", id="cd-input")
                    yield self.cd_input
                    yield Button("cd", id="btn-cd")
                    yield Button("New console", id="btn-new")

        yield Footer(id="footer")

    async def on_mount(self) -> None:
        panel_logger = logging.getLogger("panelterm")
        panel_logger.addHandler(self._log_handler)
        panel_logger.setLevel(self._log_level)

        self._version_info.update(self._gather_version_info())
        self.multiplexer.container = self.terminal_view
        self.terminal_view.set_writer(self._write_to_active)
        self.terminal_view.set_size_listener(self._schedule_size_sync)
        self.terminal_view.set_key_logger(self.diagnostics.record_key_event)
        self.multiplexer.banner.add_listener(self._on_banner)
        self.multiplexer.add_listener(self._on_mux_change)

        self.host_connected = await self._connect_bridge()
        self.multiplexer.start()
        tab_id = self.multiplexer.create_tab()
        if self.host_connected:
            self.multiplexer.activate_tab(tab_id)
        self._rebuild_nav_tree()
        self._update_status_line()
        self._schedule_size_sync()

    async def on_unmount(self) -> None:
        await self._shutdown_sessions()
        logging.getLogger("panelterm").removeHandler(self._log_handler)

    async def action_quit(self) -> None:
        await self._shutdown_sessions()
        self.exit()

    # --- Host connection ------------------------------------------------

    async def _connect_bridge(self) -> bool:
        connect = getattr(self.bridge, "connect", None)
        if connect is None or getattr(self.bridge, "connected", False):
            return True
        try:
            await connect()
        except Exception as exc:
            message = f"Host unreachable: {exc}"
            logger.error(f"[TerminalTab] {message}")
            self.multiplexer.banner.show(message, persistent=True)
            return False
        return True

    async def _shutdown_sessions(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        await self.multiplexer.aclose()
        closer = getattr(self.bridge, "close", None) or getattr(self.bridge, "close_all", None)
        if closer is not None:
            try:
                await closer()
            except Exception as exc:
                logger.warning(f"[TerminalTab] bridge shutdown failed: {exc}")
        for task in list(self._tasks):
            task.cancel()

    # --- Widgets --------------------------------------------------------

    def _make_widget(self, tab_id: int) -> TerminalWidget:
        cols, rows = 120, 32
        view = getattr(self, "terminal_view", None)
        if view is not None and view.is_mounted:
            view_cols, view_rows = view.content_cells()
            if view_cols > 0 and view_rows > 0:
                cols, rows = view_cols, view_rows
        return TerminalWidget(
            tab_id,
            cols=cols,
            rows=rows,
            debug_logger=self._debug_logger,
            on_write=self._on_widget_write,
        )

    def _on_widget_write(self, tab_id: int, data: bytes) -> None:
        text = strip_ansi(data.decode("utf-8", errors="replace")).replace("\r", "")
        if text.strip():
            self.log_manager.add("output", f"[Console {tab_id}] {text.rstrip()}")
        if self.active_view == "log:output":
            self.terminal_view.show_text(self.log_manager.text("output"))

    def _write_to_active(self, data: str) -> None:
        widget = self.terminal_view.current
        if widget is None:
            return
        self._debug_logger(f"KEY→PTY [Console {widget.tab_id}]: {data!r}")
        widget.send_keys(data)
        if "\r" in data:
            # Command history changes once the keystroke task has run
            self.set_timer(0.1, self._rebuild_nav_tree)

    # --- Multiplexer callbacks ------------------------------------------

    def _on_mux_change(self, tab_id: int) -> None:
        self._rebuild_nav_tree()
        self._update_status_line()
        if tab_id == self.multiplexer.active_tab_id:
            self._schedule_size_sync()

    def _on_banner(self, message: Optional[str]) -> None:
        self.banner_view.update(message or "")
        self.banner_view.set_class(bool(message), "visible")

    # --- Sizing ---------------------------------------------------------

    def on_resize(self, event) -> None:  # type: ignore[override]
        self._schedule_size_sync()

    def _schedule_size_sync(self) -> None:
        """Sync now and again after layout settles."""
        self.call_after_refresh(self._sync_active_size)
        self.set_timer(0.2, self._sync_active_size)

    def _sync_active_size(self) -> None:
        tab_id = self.multiplexer.active_tab_id
        session = self.multiplexer.get_session(tab_id) if tab_id is not None else None
        if session is None or self.active_view != "terminal":
            return
        cols, rows = self.terminal_view.content_cells()
        if cols <= 0 or rows <= 0:
            return
        if session.widget.resize(cols, rows):
            self._debug_logger(f"Console {tab_id} resized to {cols}x{rows}")
            self._spawn(self.multiplexer.on_resize(tab_id))

    # --- Actions --------------------------------------------------------

    def action_new_tab(self) -> None:
        tab_id = self.multiplexer.create_tab()
        self._switch_view("terminal")
        self.multiplexer.activate_tab(tab_id)

    def action_close_tab(self) -> None:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is not None:
            self._spawn(self._close_tab(tab_id))

    def action_restart_tab(self) -> None:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is not None:
            self._spawn(self.multiplexer.restart_tab(tab_id))

    def action_stop_tab(self) -> None:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is not None:
            self._spawn(self.multiplexer.stop_tab(tab_id))

    def action_clear_tab(self) -> None:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is not None:
            self.multiplexer.clear_tab(tab_id)

    async def _close_tab(self, tab_id: int) -> None:
        if not await self.multiplexer.close_tab(tab_id):
            self.multiplexer.banner.show("The last console cannot be closed")

    def _change_directory(self, path: str) -> None:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is None or not path:
            return
        self._spawn(self.multiplexer.change_directory(tab_id, path))
        self._log_action(f"cd {path} (Console {tab_id})")

    def on_input_submitted(self, event: Input.Submitted) -> None:  # type: ignore[attr-defined]
        if event.input is self.cd_input:
            self._change_directory(event.value.strip())
            event.input.value = ""
            self._switch_view("terminal")

    def on_button_pressed(self, event: Button.Pressed) -> None:  # type: ignore[attr-defined]
        if event.button.id == "btn-cd":
            self._change_directory(self.cd_input.value.strip())
            self.cd_input.value = ""
            self._switch_view("terminal")
        elif event.button.id == "btn-new":
            self.action_new_tab()

    # --- View switching -------------------------------------------------

    def _switch_view(self, view: str) -> None:
        if view == "terminal":
            self.active_view = "terminal"
            self.terminal_view.set_writer(self._write_to_active)
            tab_id = self.multiplexer.active_tab_id
            session = self.multiplexer.get_session(tab_id) if tab_id is not None else None
            if session is not None:
                session.widget.open(self.terminal_view)
            self.terminal_view.focus()
            self._schedule_size_sync()
            return

        self.terminal_view.set_writer(None)
        self.active_view = f"log:{view}"
        if view == "troubleshooting":
            text = self.diagnostics.update_troubleshooting_log()
        elif view == "history":
            text = self._history_text()
        else:
            text = self.log_manager.text(view)
        self.terminal_view.show_text(text or f"(no {view})")

    def _history_text(self) -> str:
        tab_id = self.multiplexer.active_tab_id
        if tab_id is None:
            return ""
        lines: List[str] = []
        for entry in self.multiplexer.history(tab_id):
            lines.append(f"{entry.timestamp}  {STATUS_MARKS[entry.status]}  {entry.command}")
            if entry.output:
                tail = strip_ansi(entry.output).replace("\r", "").rstrip()
                lines.extend(f"    {line}" for line in tail.splitlines()[-5:])
        return "\n".join(lines)

    # --- Tree nav -------------------------------------------------------

    def _rebuild_nav_tree(self) -> None:
        tree = getattr(self, "nav_tree", None)
        if tree is None or not tree.is_mounted:
            return
        mux = self.multiplexer
        tree.clear()

        consoles = tree.root.add("Consoles")
        consoles.add_leaf("+ New console", data={"type": "new_tab"})
        for tab_id in mux.tab_ids():
            session = mux.get_session(tab_id)
            if session is None:
                continue
            active = " ◂" if tab_id == mux.active_tab_id else ""
            label = f"{STATE_MARKS[session.state]} {session.name} · {session.state.value}{active}"
            consoles.add_leaf(escape(label), data={"type": "tab", "id": tab_id})

        actions = tree.root.add("Actions")
        for label, action_id in (
            ("Restart (F5)", "restart"),
            ("Stop (F6)", "stop"),
            ("Clear (F7)", "clear"),
            ("Close (^W)", "close"),
            ("Export troubleshooting pack", "export"),
        ):
            actions.add_leaf(label, data={"type": "action", "id": action_id})

        history = tree.root.add("History")
        history.add_leaf("Show full history", data={"type": "log", "cat": "history"})
        if mux.active_tab_id is not None:
            for entry in reversed(mux.history(mux.active_tab_id)[-20:]):
                label = f"{STATUS_MARKS[entry.status]} {entry.command}"
                history.add_leaf(escape(label), data={"type": "history", "command": entry.command})

        logs = tree.root.add("Logs")
        for cat in LOG_PAGES:
            title = "Troubleshooting Pack" if cat == "troubleshooting" else cat.capitalize()
            logs.add_leaf(title, data={"type": "log", "cat": cat})

        tree.root.expand()
        for node in (consoles, actions, history, logs):
            node.expand()

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:  # type: ignore[attr-defined]
        data = getattr(event.node, "data", None) or {}
        kind = data.get("type")
        if kind == "new_tab":
            self.action_new_tab()
        elif kind == "tab":
            tab_id = data["id"]
            self.active_view = "terminal"
            self.terminal_view.set_writer(self._write_to_active)
            self.multiplexer.activate_tab(tab_id)
            self._log_action(f"Selected Console {tab_id}")
        elif kind == "action":
            action_id = data.get("id")
            if action_id == "restart":
                self.action_restart_tab()
            elif action_id == "stop":
                self.action_stop_tab()
            elif action_id == "clear":
                self.action_clear_tab()
            elif action_id == "close":
                self.action_close_tab()
            elif action_id == "export":
                self._export_troubleshooting_pack()
        elif kind == "history":
            tab_id = self.multiplexer.active_tab_id
            if tab_id is not None:
                self._switch_view("terminal")
                self._spawn(self.multiplexer.on_keystroke(tab_id, data["command"]))
        elif kind == "log":
            self._switch_view(data.get("cat", "events"))

    # --- Status and logging ---------------------------------------------

    def _update_status_line(self) -> None:
        status = getattr(self, "status_line", None)
        if status is None:
            return
        mux = self.multiplexer
        tab_id = mux.active_tab_id
        session = mux.get_session(tab_id) if tab_id is not None else None
        if session is not None:
            console = f"{session.name}: {session.state.value}"
            if session.session_id is not None:
                console += f" (session {session.session_id})"
        else:
            console = "(no console)"
        host = getattr(self.bridge, "base_url", "local")
        versions = self._version_info
        status.update(
            f"Terminal  |  {console}  |  host {host}  |  "
            f"panelterm {versions.get('panelterm', 'dev')}  |  "
            f"textual {versions.get('textual', 'unknown')}  |  "
            f"pyte {versions.get('pyte', 'unknown')}"
        )

    def _log_action(self, message: str) -> None:
        self.log_manager.add("events", message)
        if self.active_view == "log:events":
            self.terminal_view.show_text(self.log_manager.text("events"))

    def _debug_logger(self, message: str) -> None:
        self.log_manager.add("debug", message)

    def _export_troubleshooting_pack(self) -> None:
        path = self.diagnostics.export_to_file()
        if path:
            self._log_action(f"Troubleshooting pack saved to {path}")
        else:
            self.multiplexer.banner.show("Could not save troubleshooting pack")

    def _get_app_state_for_diagnostics(self) -> Dict[str, Any]:
        return {
            "active_view": self.active_view,
            "host_connected": self.host_connected,
        }

    def _gather_version_info(self) -> Dict[str, str]:
        return {
            "panelterm": self._get_package_version("panelterm", default="dev"),
            "textual": self._get_package_version("textual", default="unknown"),
            "pyte": self._get_package_version("pyte", default="unknown"),
        }

    @staticmethod
    def _get_package_version(name: str, default: str) -> str:
        try:
            return metadata.version(name)
        except metadata.PackageNotFoundError:
            return default

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
