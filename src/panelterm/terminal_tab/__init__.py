"""Textual terminal tab for the control panel."""

from .app import TerminalTabApp
from .log_manager import LogManager, LogManagerHandler
from .term_emulator import EmulatedTerminal
from .term_view import TermView
from .widget import TerminalWidget

__all__ = [
    "EmulatedTerminal",
    "LogManager",
    "LogManagerHandler",
    "TermView",
    "TerminalTabApp",
    "TerminalWidget",
]
