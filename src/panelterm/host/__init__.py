"""Host side of the terminal tab: PTY runner, local bridge and WebSocket service."""

from .client import WebSocketBridge
from .local import LocalPtyBridge, default_shell
from .pty_runner import PtyRunner
from .service import HostService, create_app

__all__ = [
    "HostService",
    "LocalPtyBridge",
    "PtyRunner",
    "WebSocketBridge",
    "create_app",
    "default_shell",
]
