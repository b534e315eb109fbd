"""Session multiplexer for the control panel's terminal tab.

Maps UI tabs to host PTY sessions, routes and deduplicates host output,
rebuilds command history from keystrokes and drives the start/retry
state machine of each session.

Components:
- SessionMultiplexer: tab registry, event routing, host forwarding
- SessionLifecycle: ABSENT/STARTING/RUNNING/CLOSED/FAILED state machine
- OutputDeduplicator: suppresses re-delivered output chunks
- CommandBuffer / CommandHistory: keystroke-to-command reconstruction
"""

from .banner import ErrorBanner
from .bridge import EmulationWidget, ExitNotifyingBridge, HostBridge
from .classifier import OutputClassifier, PromptClassifier
from .command_buffer import (
    CommandBuffer,
    CommandHistory,
    CommandHistoryEntry,
    CommandStatus,
)
from .config import MultiplexerConfig
from .dedup import OutputDeduplicator
from .errors import (
    CloseError,
    HostBridgeError,
    IoError,
    LifecycleError,
    ProcessStartError,
    ResizeError,
)
from .lifecycle import LifecycleState, SessionLifecycle
from .multiplexer import SessionMultiplexer
from .session import Session

__all__ = [
    "CloseError",
    "CommandBuffer",
    "CommandHistory",
    "CommandHistoryEntry",
    "CommandStatus",
    "EmulationWidget",
    "ErrorBanner",
    "ExitNotifyingBridge",
    "HostBridge",
    "HostBridgeError",
    "IoError",
    "LifecycleError",
    "LifecycleState",
    "MultiplexerConfig",
    "OutputClassifier",
    "OutputDeduplicator",
    "ProcessStartError",
    "PromptClassifier",
    "ResizeError",
    "Session",
    "SessionLifecycle",
    "SessionMultiplexer",
]
