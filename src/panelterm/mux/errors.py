"""Error taxonomy for the host bridge and the session multiplexer.

Bridge implementations raise these; the multiplexer catches them at every
call site and never lets them escape its public operations.
"""


class HostBridgeError(Exception):
    """Base class for failures reported by a host bridge."""


class ProcessStartError(HostBridgeError):
    """start_process failed (spawn error or timeout). Retryable."""


class IoError(HostBridgeError):
    """send_input failed, usually because the session is gone."""


class ResizeError(HostBridgeError):
    """resize_pty failed. Best-effort, logged only."""


class CloseError(HostBridgeError):
    """close_terminal_process failed. Best-effort, logged only."""


class LifecycleError(RuntimeError):
    """Illegal SessionLifecycle transition."""
