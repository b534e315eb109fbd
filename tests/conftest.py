"""Shared fakes for the multiplexer tests.

FakeBridge and FakeWidget record every call so tests can assert on the
exact sequence of host operations and widget writes.
"""

import asyncio
from typing import Dict, List, Tuple

import pytest

from panelterm.mux import MultiplexerConfig, SessionMultiplexer
from panelterm.mux.errors import CloseError, IoError, ProcessStartError


class FakeBridge:
    """In-memory host bridge.

    Knobs:
        start_failures: number of upcoming start_process calls that raise
        start_delay: seconds each start_process call takes
        fail_input / fail_close: make send_input / close raise
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.started: List[int] = []
        self.inputs: List[Tuple[int, bytes]] = []
        self.resizes: List[Tuple[int, int, int]] = []
        self.closed: List[int] = []
        self.start_failures = 0
        self.start_delay = 0.0
        self.fail_input = False
        self.fail_close = False
        self._next_id = 1
        self._output_subscribers = []
        self._exit_subscribers = []

    async def start_process(self) -> int:
        self.calls.append(("start",))
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_failures > 0:
            self.start_failures -= 1
            raise ProcessStartError("spawn failed")
        session_id = self._next_id
        self._next_id += 1
        self.started.append(session_id)
        return session_id

    async def send_input(self, session_id: int, data: bytes) -> None:
        self.calls.append(("input", session_id))
        if self.fail_input:
            raise IoError("pipe closed")
        self.inputs.append((session_id, data))

    async def resize_pty(self, session_id: int, rows: int, cols: int) -> None:
        self.calls.append(("resize", session_id))
        self.resizes.append((session_id, rows, cols))

    async def close_terminal_process(self, session_id: int) -> None:
        self.calls.append(("close", session_id))
        if self.fail_close:
            raise CloseError("already gone")
        self.closed.append(session_id)

    def subscribe_output(self, callback):
        self._output_subscribers.append(callback)
        return lambda: self._output_subscribers.remove(callback)

    def subscribe_exit(self, callback):
        self._exit_subscribers.append(callback)
        return lambda: self._exit_subscribers.remove(callback)

    @property
    def output_subscriber_count(self) -> int:
        return len(self._output_subscribers)

    def emit(self, session_id: int, data: bytes) -> None:
        for callback in list(self._output_subscribers):
            callback(session_id, data)

    def emit_exit(self, session_id: int, code: int) -> None:
        for callback in list(self._exit_subscribers):
            callback(session_id, code)

    def sent_text(self, session_id: int) -> bytes:
        return b"".join(data for sid, data in self.inputs if sid == session_id)


class FakeWidget:
    """Emulation widget that records writes instead of rendering them."""

    def __init__(self, tab_id: int = 0, rows: int = 24, cols: int = 80):
        self.tab_id = tab_id
        self.rows = rows
        self.cols = cols
        self.written: List[bytes] = []
        self.cleared = 0
        self.focused = 0
        self.opened: list = []
        self.fail_writes = False
        self._disposed = False
        self._callbacks = []

    def write(self, data: bytes) -> None:
        if self._disposed:
            raise RuntimeError("disposed")
        if self.fail_writes:
            raise RuntimeError("render failed")
        self.written.append(bytes(data))

    @property
    def text(self) -> str:
        return b"".join(self.written).decode("utf-8", errors="replace")

    def clear(self) -> None:
        self.cleared += 1

    def dispose(self) -> None:
        self._disposed = True

    def focus(self) -> None:
        self.focused += 1

    def open(self, container) -> None:
        self.opened.append(container)

    @property
    def size(self):
        return self.rows, self.cols

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def on_keystroke(self, callback):
        self._callbacks.append(callback)

        def detach():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return detach

    @property
    def listener_count(self) -> int:
        return len(self._callbacks)

    def type(self, data: bytes) -> None:
        for callback in list(self._callbacks):
            callback(data)


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_config():
    """Production semantics with timers shrunk to milliseconds."""
    return MultiplexerConfig(
        start_timeout=0.2,
        retry_backoff=0.01,
        restart_settle=0.0,
        banner_timeout=0.05,
    )


@pytest.fixture
def widgets() -> Dict[int, FakeWidget]:
    return {}


@pytest.fixture
def make_widget():
    return FakeWidget


@pytest.fixture
def mux(bridge, fast_config, widgets, clock):
    def factory(tab_id: int) -> FakeWidget:
        widget = FakeWidget(tab_id)
        widgets[tab_id] = widget
        return widget

    multiplexer = SessionMultiplexer(
        bridge,
        factory,
        config=fast_config,
        container="terminal-view",
        clock=clock,
    )
    multiplexer.start()
    return multiplexer
