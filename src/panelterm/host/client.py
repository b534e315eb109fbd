"""WebSocket client for a remote host service.

WebSocketBridge speaks the host service wire protocol and implements the
host bridge contract, so the multiplexer can drive shells on another
machine exactly as it drives local ones.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
from typing import Any, Dict, List, Optional, Set, Type

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from ..mux.bridge import ExitCallback, OutputCallback, Unsubscribe
from ..mux.errors import CloseError, HostBridgeError, IoError, ProcessStartError, ResizeError

logger = logging.getLogger(__name__)


class WebSocketBridge:
    """Host bridge backed by a host service connection."""

    def __init__(self, base_url: str = "http://localhost:8766"):
        self.base_url = base_url.rstrip("/")
        self.ws_url = self.base_url.replace("http://", "ws://").replace("https://", "wss://")
        self.websocket: Optional[Any] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._abandoned_starts: Set[int] = set()
        self._listener: Optional[asyncio.Task] = None
        self._output_subscribers: List[OutputCallback] = []
        self._exit_subscribers: List[ExitCallback] = []

    async def health(self) -> dict:
        """Query the host service health endpoint."""
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{self.base_url}/health", timeout=2.0)
            response.raise_for_status()
            return response.json()

    async def connect(self) -> None:
        """Open the WebSocket and start dispatching replies and pushes."""
        self.websocket = await websockets.connect(f"{self.ws_url}/ws")
        self._listener = asyncio.create_task(self._listen())
        logger.info(f"[WebSocketBridge] connected to {self.ws_url}/ws")

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._listener:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self.websocket:
            await self.websocket.close()
            self.websocket = None
        self._fail_pending("connection closed")

    @property
    def connected(self) -> bool:
        return self.websocket is not None

    # --- Subscriptions ---------------------------------------------------

    def subscribe_output(self, callback: OutputCallback) -> Unsubscribe:
        self._output_subscribers.append(callback)
        return lambda: self._unsubscribe(self._output_subscribers, callback)

    def subscribe_exit(self, callback: ExitCallback) -> Unsubscribe:
        self._exit_subscribers.append(callback)
        return lambda: self._unsubscribe(self._exit_subscribers, callback)

    @staticmethod
    def _unsubscribe(subscribers: list, callback) -> None:
        if callback in subscribers:
            subscribers.remove(callback)

    # --- Bridge operations -----------------------------------------------

    async def start_process(self) -> int:
        return int(await self._call(ProcessStartError, "start_process"))

    async def send_input(self, session_id: int, data: bytes) -> None:
        await self._call(
            IoError,
            "send_input",
            session_id=session_id,
            data=base64.b64encode(data).decode("ascii"),
        )

    async def resize_pty(self, session_id: int, rows: int, cols: int) -> None:
        await self._call(ResizeError, "resize_pty", session_id=session_id, rows=rows, cols=cols)

    async def close_terminal_process(self, session_id: int) -> None:
        await self._call(CloseError, "close_terminal_process", session_id=session_id)

    # --- Protocol --------------------------------------------------------

    async def _call(self, error_cls: Type[HostBridgeError], op: str, **fields) -> Any:
        if not self.websocket:
            raise error_cls("WebSocket not connected")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.websocket.send(json.dumps({"id": request_id, "op": op, **fields}))
            reply = await future
        except asyncio.CancelledError:
            if op == "start_process":
                self._abandoned_starts.add(request_id)
            raise
        except (ConnectionClosed, ConnectionError, OSError) as exc:
            raise error_cls(f"{op} failed: {exc}") from exc
        finally:
            self._pending.pop(request_id, None)

        if not reply.get("ok"):
            raise error_cls(reply.get("error") or f"{op} failed")
        return reply.get("result")

    async def _listen(self) -> None:
        try:
            async for message in self.websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"[WebSocketBridge] dropping malformed frame: {message[:80]!r}")
                    continue
                self._dispatch(data)
        except ConnectionClosed as exc:
            logger.warning(f"[WebSocketBridge] connection lost: {exc}")
        finally:
            self._fail_pending("host connection lost")

    def _dispatch(self, data: dict) -> None:
        event = data.get("event")
        if event == "output":
            payload = base64.b64decode(data.get("data") or "")
            for callback in list(self._output_subscribers):
                callback(data["session_id"], payload)
            return
        if event == "exit":
            for callback in list(self._exit_subscribers):
                callback(data["session_id"], data.get("code", -1))
            return

        request_id = data.get("id")
        if request_id in self._abandoned_starts:
            self._abandoned_starts.discard(request_id)
            if data.get("ok") and data.get("result") is not None:
                asyncio.create_task(self._close_abandoned(int(data["result"])))
            return

        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.debug(f"[WebSocketBridge] reply for unknown request {request_id}")
            return
        future.set_result(data)

    async def _close_abandoned(self, session_id: int) -> None:
        try:
            await self.close_terminal_process(session_id)
        except HostBridgeError as exc:
            logger.warning(f"[WebSocketBridge] could not close abandoned session {session_id}: {exc}")

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        self._pending.clear()
