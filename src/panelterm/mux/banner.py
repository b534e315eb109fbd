"""User-visible error banner with timed auto-dismiss."""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional


BannerListener = Callable[[Optional[str]], None]


class ErrorBanner:
    """Holds the one error message currently shown above the terminal.

    Transient messages clear themselves after ``timeout`` seconds. A
    persistent message (a session that failed to start) stays until
    ``clear()`` is called or another message replaces it.
    """

    def __init__(self, timeout: float = 3.0):
        self.timeout = timeout
        self.message: Optional[str] = None
        self.persistent = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[BannerListener] = []

    def add_listener(self, listener: BannerListener) -> None:
        self._listeners.append(listener)

    def show(self, message: str, persistent: bool = False) -> None:
        self._cancel_timer()
        self.message = message
        self.persistent = persistent
        if not persistent:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._timer = loop.call_later(self.timeout, self.clear)
        self._notify()

    def clear(self) -> None:
        self._cancel_timer()
        if self.message is None:
            return
        self.message = None
        self.persistent = False
        self._notify()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.message)
