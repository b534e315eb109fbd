"""Tests for the WebSocket host bridge client."""

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from panelterm.host.client import WebSocketBridge
from panelterm.mux.errors import CloseError, IoError, ProcessStartError, ResizeError

pytestmark = pytest.mark.anyio


class FakeSocket:
    """Answers each request on the next loop iteration, like a live host."""

    def __init__(self, bridge, replies=None, hold=()):
        self.bridge = bridge
        self.replies = replies or {}
        self.hold = set(hold)
        self.sent = []
        self.closed = False

    async def send(self, text):
        request = json.loads(text)
        self.sent.append(request)
        if request["op"] in self.hold:
            return
        reply = self.replies.get(request["op"], {"ok": True, "result": None})
        asyncio.get_running_loop().call_soon(self.bridge._dispatch, {"id": request["id"], **reply})

    async def close(self):
        self.closed = True


def connected_bridge(**socket_kwargs):
    bridge = WebSocketBridge("http://localhost:8766")
    bridge.websocket = FakeSocket(bridge, **socket_kwargs)
    return bridge


async def test_websocket_url_conversion():
    assert WebSocketBridge("http://localhost:8766").ws_url == "ws://localhost:8766"
    assert WebSocketBridge("https://example.com/").ws_url == "wss://example.com"


async def test_health():
    bridge = WebSocketBridge("http://localhost:8766")

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client_class.return_value.__aenter__.return_value = mock_client

        mock_response = MagicMock()
        mock_response.json.return_value = {"status": "ok", "sessions": 2, "connections": 1}
        mock_client.get.return_value = mock_response

        health = await bridge.health()

        assert health["sessions"] == 2
        mock_client.get.assert_called_once_with("http://localhost:8766/health", timeout=2.0)
        mock_response.raise_for_status.assert_called_once()


@pytest.mark.parametrize(
    "call, error_cls",
    [
        (lambda b: b.start_process(), ProcessStartError),
        (lambda b: b.send_input(1, b"x"), IoError),
        (lambda b: b.resize_pty(1, 24, 80), ResizeError),
        (lambda b: b.close_terminal_process(1), CloseError),
    ],
)
async def test_operations_require_connection(call, error_cls):
    bridge = WebSocketBridge()
    with pytest.raises(error_cls, match="WebSocket not connected"):
        await call(bridge)


async def test_start_process_returns_session_id():
    bridge = connected_bridge(replies={"start_process": {"ok": True, "result": 3}})
    assert await bridge.start_process() == 3
    assert bridge.websocket.sent == [{"id": 1, "op": "start_process"}]


async def test_send_input_is_base64_encoded():
    bridge = connected_bridge()
    await bridge.send_input(4, b"\x1b[A\r")
    request = bridge.websocket.sent[0]
    assert request["op"] == "send_input"
    assert request["session_id"] == 4
    assert base64.b64decode(request["data"]) == b"\x1b[A\r"


async def test_resize_sends_rows_and_cols():
    bridge = connected_bridge()
    await bridge.resize_pty(2, rows=40, cols=120)
    assert bridge.websocket.sent[0] == {
        "id": 1,
        "op": "resize_pty",
        "session_id": 2,
        "rows": 40,
        "cols": 120,
    }


async def test_error_reply_maps_to_operation_error():
    bridge = connected_bridge(replies={"send_input": {"ok": False, "error": "session 1 not found"}})
    with pytest.raises(IoError, match="session 1 not found"):
        await bridge.send_input(1, b"x")


async def test_lost_connection_fails_pending_request():
    bridge = connected_bridge(hold={"send_input"})
    task = asyncio.create_task(bridge.send_input(1, b"x"))
    await asyncio.sleep(0)
    bridge._fail_pending("host connection lost")
    with pytest.raises(IoError, match="host connection lost"):
        await task


async def test_output_and_exit_pushes_reach_subscribers():
    bridge = WebSocketBridge()
    output, exits = [], []
    bridge.subscribe_output(lambda sid, data: output.append((sid, data)))
    unsubscribe = bridge.subscribe_exit(lambda sid, code: exits.append((sid, code)))

    bridge._dispatch({"event": "output", "session_id": 1, "data": base64.b64encode(b"hi").decode()})
    bridge._dispatch({"event": "exit", "session_id": 1, "code": 130})
    unsubscribe()
    bridge._dispatch({"event": "exit", "session_id": 2, "code": 0})

    assert output == [(1, b"hi")]
    assert exits == [(1, 130)]


async def test_cancelled_start_closes_late_session():
    bridge = connected_bridge(hold={"start_process"})
    task = asyncio.create_task(bridge.start_process())
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    # The host finishes the start after we gave up on it
    bridge._dispatch({"id": 1, "ok": True, "result": 5})
    await asyncio.sleep(0.01)

    assert bridge.websocket.sent[-1] == {"id": 2, "op": "close_terminal_process", "session_id": 5}


async def test_unknown_reply_is_ignored():
    bridge = WebSocketBridge()
    bridge._dispatch({"id": 42, "ok": True, "result": None})


async def test_close_drops_socket():
    bridge = connected_bridge()
    socket = bridge.websocket
    await bridge.close()
    assert socket.closed
    assert not bridge.connected
