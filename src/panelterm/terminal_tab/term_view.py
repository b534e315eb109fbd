"""Focusable terminal view shared by every console tab.

The view renders whichever TerminalWidget is currently open in it, or a
plain text page (logs, history). Keystrokes are translated to the byte
sequences a VT100 would send and handed to the writer callback.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from textual.events import Key
from textual.widgets import Static

if TYPE_CHECKING:
    from .widget import TerminalWidget


KEY_SEQUENCES = {
    "enter": "\r",
    "return": "\r",
    "backspace": "\x7f",
    "tab": "\t",
    "escape": "\x1b",
    "left": "\x1b[D",
    "right": "\x1b[C",
    "up": "\x1b[A",
    "down": "\x1b[B",
    "home": "\x1b[H",
    "end": "\x1b[F",
    "pageup": "\x1b[5~",
    "pagedown": "\x1b[6~",
    "delete": "\x1b[3~",
    "insert": "\x1b[2~",
}


def key_to_sequence(key: str, character: Optional[str], modifiers: set[str]) -> Optional[str]:
    """Translate a Textual key event into terminal input."""
    k = (key or "").lower()
    if character and len(character) == 1:
        return character
    if k and len(k) == 1 and not modifiers & {"ctrl", "alt", "meta"}:
        return k
    seq = KEY_SEQUENCES.get(k)
    if seq is not None:
        return seq
    # ctrl+c arrives as key "ctrl+c" on current Textual
    if k.startswith("ctrl+") and len(k) == 6:
        return chr(ord(k[-1].upper()) & 0x1F)
    if "ctrl" in modifiers and len(k) == 1:
        return chr(ord(k.upper()) & 0x1F)
    return None


class TermView(Static):
    """Focusable terminal view that forwards keystrokes to a writer."""

    can_focus = True

    def __init__(self, *args, **kwargs) -> None:
        # Shell output is not Rich markup
        kwargs.setdefault("markup", False)
        super().__init__(*args, **kwargs)
        self.current: Optional[TerminalWidget] = None
        self.showing_terminal = False
        self._writer: Optional[Callable[[str], None]] = None
        self._on_focus_callback: Optional[Callable[[], None]] = None
        self._size_listener: Optional[Callable[[], None]] = None
        self._key_logger: Optional[Callable[[str, Optional[str], set[str]], None]] = None

    def set_writer(self, writer: Optional[Callable[[str], None]]) -> None:
        self._writer = writer

    def set_on_focus(self, callback: Callable[[], None]) -> None:
        """Set callback to call when view gains focus."""
        self._on_focus_callback = callback

    def set_size_listener(self, callback: Callable[[], None]) -> None:
        """Set callback invoked when the widget is resized."""
        self._size_listener = callback

    def set_key_logger(self, callback: Callable[[str, Optional[str], set[str]], None]) -> None:
        self._key_logger = callback

    # --- Content --------------------------------------------------------

    def show(self, widget: TerminalWidget) -> None:
        """Make ``widget`` the terminal rendered by this view."""
        self.current = widget
        self.showing_terminal = True
        self.render_terminal(widget)

    def show_text(self, text: str) -> None:
        """Replace the terminal with a plain text page."""
        self.showing_terminal = False
        self.update(text)

    def render_terminal(self, widget: TerminalWidget) -> None:
        if widget is not self.current or not self.showing_terminal:
            return
        self.update(widget.emulator.text_with_cursor(show=self.has_focus))

    def release(self, widget: TerminalWidget) -> None:
        if self.current is widget:
            self.current = None
            if self.showing_terminal:
                self.update("")

    def content_cells(self) -> tuple[int, int]:
        """Usable (cols, rows) of the view."""
        region = getattr(self, "content_region", None)
        if region is not None:
            return region.width, region.height
        return self.content_size.width, self.content_size.height

    # --- Events ---------------------------------------------------------

    def on_focus(self) -> None:
        self.add_class("has-focus")
        if self.current is not None:
            self.render_terminal(self.current)
        if self._on_focus_callback:
            self._on_focus_callback()

    def on_blur(self) -> None:  # type: ignore[override]
        self.remove_class("has-focus")
        if self.current is not None:
            self.render_terminal(self.current)

    def on_resize(self, event) -> None:  # type: ignore[override]
        if self._size_listener:
            try:
                self._size_listener()
            except Exception:
                pass

    def on_key(self, event: Key) -> None:  # type: ignore[override]
        if not self._writer:
            return
        mods = set(getattr(event, "modifiers", []) or [])
        character = getattr(event, "character", None)
        if self._key_logger:
            try:
                self._key_logger(event.key, character, mods)
            except Exception:
                pass

        seq = key_to_sequence(event.key, character, mods)
        if seq is None:
            return
        try:
            self._writer(seq)
        except Exception:
            # A failing writer must never take the app down
            return
        event.stop()
        event.prevent_default()
