"""Boundary contracts consumed by the multiplexer.

The host bridge owns the PTY processes; the emulation widget owns
rendering and keystroke capture. Both are supplied from outside.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, Tuple, runtime_checkable


OutputCallback = Callable[[int, bytes], None]
ExitCallback = Callable[[int, int], None]
KeystrokeCallback = Callable[[bytes], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class HostBridge(Protocol):
    """Asynchronous RPC surface of the PTY host plus its push channel."""

    async def start_process(self) -> int:
        """Spawn a shell and return its session id.

        Raises:
            ProcessStartError: spawn failed on the host side
        """
        ...

    async def send_input(self, session_id: int, data: bytes) -> None:
        """Write raw input to the session.

        Raises:
            IoError: the session is gone
        """
        ...

    async def resize_pty(self, session_id: int, rows: int, cols: int) -> None:
        ...

    async def close_terminal_process(self, session_id: int) -> None:
        ...

    def subscribe_output(self, callback: OutputCallback) -> Unsubscribe:
        """Register the push-channel consumer; returns an unsubscribe hook."""
        ...


@runtime_checkable
class ExitNotifyingBridge(Protocol):
    """Optional extension: bridges that report process exit."""

    def subscribe_exit(self, callback: ExitCallback) -> Unsubscribe:
        ...


@runtime_checkable
class EmulationWidget(Protocol):
    """Terminal emulation widget for one tab."""

    def write(self, data: bytes) -> None:
        ...

    def clear(self) -> None:
        ...

    def dispose(self) -> None:
        ...

    def focus(self) -> None:
        ...

    def open(self, container: Any) -> None:
        ...

    @property
    def size(self) -> Tuple[int, int]:
        """Current (rows, cols)."""
        ...

    @property
    def is_disposed(self) -> bool:
        ...

    def on_keystroke(self, callback: KeystrokeCallback) -> Unsubscribe:
        """Register a keystroke listener; returns a detach hook."""
        ...
