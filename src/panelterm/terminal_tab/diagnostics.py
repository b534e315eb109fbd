"""Diagnostics and troubleshooting snapshot generation.

Collects multiplexer state (tabs, lifecycle, host session ids, emulator
sizes, recent commands), recent logs and version information into a plain
text snapshot that can be shown in the Logs view or saved to a file.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..mux.multiplexer import SessionMultiplexer
    from .log_manager import LogManager

logger = logging.getLogger(__name__)


class DiagnosticsManager:
    """Manages diagnostic snapshot generation and export.

    Responsibilities:
    - Generate troubleshooting snapshots
    - Record recent key events
    - Export snapshots to files
    """

    def __init__(
        self,
        multiplexer: SessionMultiplexer,
        log_manager: LogManager,
        version_info: Dict[str, str],
        get_app_state: Callable[[], Dict[str, Any]]
    ):
        """Initialize diagnostics manager.

        Args:
            multiplexer: SessionMultiplexer whose tabs are reported
            log_manager: LogManager instance for log access
            version_info: Dictionary of version information
            get_app_state: Callback to get current app state (active_view, etc.)
        """
        self.multiplexer = multiplexer
        self.log_manager = log_manager
        self.version_info = version_info
        self.get_app_state = get_app_state
        self.key_events: List[str] = []

    def record_key_event(self, key: str, character: Optional[str], modifiers: set[str]) -> None:
        mods = "+".join(sorted(modifiers)) if modifiers else ""
        char_repr = repr(character) if character else "None"
        self.key_events.append(f"{key} char={char_repr} mods={mods}")
        if len(self.key_events) > 100:
            self.key_events = self.key_events[-100:]

    def generate_snapshot(self) -> str:
        """Generate a complete troubleshooting snapshot.

        Returns:
            Formatted snapshot text
        """
        app_state = self.get_app_state()
        mux = self.multiplexer
        lines: List[str] = []

        lines.append(f"timestamp: {datetime.now(timezone.utc).isoformat()}")
        lines.append("versions:")
        for name in ("panelterm", "textual", "pyte"):
            lines.append(f"  {name}: {self.version_info.get(name, 'unknown')}")

        lines.append(f"active_view: {app_state.get('active_view', 'unknown')}")
        lines.append(f"active_tab: {mux.active_tab_id if mux.active_tab_id is not None else '(none)'}")
        lines.append(f"host_subscribed: {mux.subscribed}")
        lines.append(f"banner: {mux.banner.message or '(none)'}")

        lines.append("tabs:")
        for tab_id in mux.tab_ids():
            session = mux.get_session(tab_id)
            if session is None:
                continue
            lifecycle = session.lifecycle
            rows, cols = session.widget.size
            lines.append(
                f"  - {session.name}: state={session.state.value} "
                f"session_id={session.session_id} attempts={lifecycle.attempts} "
                f"input_attached={session.input_handler_attached} emu={cols}x{rows}"
            )
            if lifecycle.last_error:
                lines.append(f"    last_error: {lifecycle.last_error}")
            commands = session.history.commands()
            if commands:
                lines.append("    recent_commands:")
                for entry in list(session.history)[-5:]:
                    lines.append(f"      • {entry.timestamp} {entry.command} ({entry.status.value})")

        lines.append("---- recent events ----")
        lines.append(self._recent_log_text("events"))
        lines.append("---- recent errors ----")
        lines.append(self._recent_log_text("errors"))
        lines.append("---- recent debug ----")
        lines.append(self._recent_log_text("debug"))

        if self.key_events:
            lines.append("---- recent key events ----")
            lines.extend(self.key_events[-20:])

        return "\n".join(lines)

    def update_troubleshooting_log(self) -> str:
        snapshot = self.generate_snapshot()
        self.log_manager.reset("troubleshooting")
        self.log_manager.add("troubleshooting", snapshot)
        return snapshot

    def export_to_file(self, target_dir: str = "troubleshooting") -> Optional[str]:
        """Export troubleshooting snapshot to file.

        Args:
            target_dir: Directory to save snapshot file

        Returns:
            Path to saved file, or None if export failed
        """
        snapshot = self.update_troubleshooting_log()
        try:
            dir_path = Path(target_dir)
            dir_path.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            target_file = dir_path / f"panelterm_snapshot_{timestamp}.txt"
            target_file.write_text(snapshot, encoding="utf-8")
            return str(target_file)
        except OSError as exc:
            logger.warning(f"[Diagnostics] export failed: {exc}")
            return None

    def _recent_log_text(self, category: str, limit: int = 50) -> str:
        buf = list(self.log_manager.buffers.get(category, []))
        if not buf:
            return f"(no {category})"
        return "\n".join(buf[-limit:])
