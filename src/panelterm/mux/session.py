"""Per-tab session state.

A Session is owned by the SessionMultiplexer; nothing outside it mutates
these fields. The UI keeps a reference to the widget for display only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from .bridge import EmulationWidget, KeystrokeCallback, Unsubscribe
from .command_buffer import CommandBuffer, CommandHistory
from .lifecycle import LifecycleState, SessionLifecycle


@dataclass
class Session:
    """Consolidated state for one terminal tab.

    ``session_id`` is set only while the lifecycle is RUNNING.
    """

    tab_id: int
    widget: EmulationWidget
    lifecycle: SessionLifecycle
    name: str = ""
    session_id: Optional[int] = None
    command_buffer: CommandBuffer = field(default_factory=CommandBuffer)
    history: CommandHistory = field(default_factory=CommandHistory)
    _input_lock: Optional[asyncio.Lock] = field(default=None, repr=False)
    _detach_input: Optional[Unsubscribe] = field(default=None, repr=False)

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def input_lock(self) -> asyncio.Lock:
        """Serialises keystrokes; created on first use inside the running loop."""
        if self._input_lock is None:
            self._input_lock = asyncio.Lock()
        return self._input_lock

    @property
    def input_handler_attached(self) -> bool:
        return self._detach_input is not None

    def attach_input_handler(self, handler: KeystrokeCallback) -> bool:
        """Wire widget keystrokes to ``handler``.

        Returns:
            False if a wiring already exists (nothing changes)
        """
        if self._detach_input is not None:
            return False
        self._detach_input = self.widget.on_keystroke(handler)
        return True

    def detach_input_handler(self) -> bool:
        detach = self._detach_input
        if detach is None:
            return False
        self._detach_input = None
        detach()
        return True

    def reattach_input_handler(self, handler: KeystrokeCallback) -> None:
        self.detach_input_handler()
        self.attach_input_handler(handler)
