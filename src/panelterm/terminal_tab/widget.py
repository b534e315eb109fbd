"""Emulation widget for one console tab.

Each tab owns a TerminalWidget (its own pyte screen and keystroke
listeners); all tabs share one TermView, and ``open`` decides which
widget that view renders.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from textual.widgets import Input

from ..mux.bridge import KeystrokeCallback, Unsubscribe
from .term_emulator import EmulatedTerminal
from .term_view import TermView


class TerminalWidget:
    """pyte-backed widget satisfying the multiplexer's widget contract.

    Attributes:
        tab_id: Tab this widget belongs to
        emulator: Screen model fed with host output
    """

    def __init__(
        self,
        tab_id: int,
        cols: int = 120,
        rows: int = 32,
        debug_logger: Optional[Callable[[str], None]] = None,
        on_write: Optional[Callable[[int, bytes], None]] = None,
    ):
        self.tab_id = tab_id
        self.emulator = EmulatedTerminal(cols=cols, rows=rows, debug_logger=debug_logger)
        self._view: Optional[TermView] = None
        self._keystroke_callbacks: List[KeystrokeCallback] = []
        self._on_write = on_write
        self._disposed = False

    # --- Widget contract -------------------------------------------------

    def write(self, data: bytes) -> None:
        if self._disposed:
            raise RuntimeError(f"widget for tab {self.tab_id} is disposed")
        self.emulator.feed(data)
        if self._on_write:
            self._on_write(self.tab_id, data)
        self._refresh()

    def clear(self) -> None:
        self.emulator.reset()
        self._refresh()

    def dispose(self) -> None:
        self._disposed = True
        self._keystroke_callbacks.clear()
        if self._view is not None:
            self._view.release(self)
            self._view = None

    def focus(self) -> None:
        view = self._view
        if view is None or view.current is not self or not view.is_mounted:
            return
        if not view.showing_terminal or isinstance(view.app.focused, Input):
            return  # User is reading a log page or typing elsewhere
        view.focus()

    def open(self, container: TermView) -> None:
        if self._disposed:
            raise RuntimeError(f"widget for tab {self.tab_id} is disposed")
        self._view = container
        container.show(self)

    @property
    def size(self) -> Tuple[int, int]:
        return self.emulator.rows, self.emulator.cols

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def on_keystroke(self, callback: KeystrokeCallback) -> Unsubscribe:
        self._keystroke_callbacks.append(callback)

        def detach() -> None:
            if callback in self._keystroke_callbacks:
                self._keystroke_callbacks.remove(callback)

        return detach

    # --- View side -------------------------------------------------------

    def send_keys(self, data: str) -> bool:
        """Deliver keystrokes from the view. Returns False with no listener."""
        if self._disposed or not self._keystroke_callbacks:
            return False
        payload = data.encode("utf-8")
        for callback in list(self._keystroke_callbacks):
            callback(payload)
        return True

    def resize(self, cols: int, rows: int) -> bool:
        changed = self.emulator.resize(cols, rows)
        if changed:
            self._refresh()
        return changed

    @property
    def is_displayed(self) -> bool:
        return self._view is not None and self._view.current is self and self._view.showing_terminal

    def _refresh(self) -> None:
        if self._view is not None:
            self._view.render_terminal(self)
