"""Host service - exposes a PTY host bridge over WebSocket.

Each WebSocket connection gets its own bridge, so a control panel window
owns exactly the sessions it started; they are closed when it disconnects.

Wire format (JSON text frames):

    request  {"id": 1, "op": "start_process"}
             {"id": 2, "op": "send_input", "session_id": 1, "data": "<base64>"}
             {"id": 3, "op": "resize_pty", "session_id": 1, "rows": 24, "cols": 80}
             {"id": 4, "op": "close_terminal_process", "session_id": 1}
    reply    {"id": 1, "ok": true, "result": 1}
             {"id": 2, "ok": false, "error": "session 1 not found"}
    push     {"event": "output", "session_id": 1, "data": "<base64>"}
             {"event": "exit", "session_id": 1, "code": 0}
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Callable, Literal, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from .local import LocalPtyBridge

logger = logging.getLogger(__name__)

BridgeFactory = Callable[[], LocalPtyBridge]


class BridgeRequest(BaseModel):
    id: int
    op: Literal["start_process", "send_input", "resize_pty", "close_terminal_process"]
    session_id: Optional[int] = None
    data: Optional[str] = None
    rows: Optional[int] = None
    cols: Optional[int] = None


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(data: Optional[str]) -> bytes:
    return base64.b64decode(data or "")


class HostService:
    """FastAPI application serving host bridges to remote panels."""

    def __init__(self, bridge_factory: Optional[BridgeFactory] = None):
        self.bridge_factory = bridge_factory or LocalPtyBridge
        self.connections = 0
        self.app = FastAPI(
            title="panelterm host",
            description="PTY host bridge over WebSocket",
            version="0.1.0",
        )
        self._bridges: set = set()
        self._register_routes()

    def _register_routes(self) -> None:
        @self.app.get("/health")
        async def health():
            sessions = sum(len(bridge.runners) for bridge in self._bridges)
            return {"status": "ok", "sessions": sessions, "connections": self.connections}

        @self.app.websocket("/ws")
        async def bridge_endpoint(websocket: WebSocket):
            await websocket.accept()
            await self._serve(websocket)

    async def _serve(self, websocket: WebSocket) -> None:
        bridge = self.bridge_factory()
        outbox: asyncio.Queue = asyncio.Queue()
        self._bridges.add(bridge)
        self.connections += 1

        bridge.subscribe_output(
            lambda sid, data: outbox.put_nowait(
                {"event": "output", "session_id": sid, "data": encode_bytes(data)}
            )
        )
        bridge.subscribe_exit(
            lambda sid, code: outbox.put_nowait({"event": "exit", "session_id": sid, "code": code})
        )

        # Single writer keeps pushes and replies in the order they were queued
        async def writer() -> None:
            while True:
                message = await outbox.get()
                await websocket.send_json(message)

        writer_task = asyncio.create_task(writer())
        logger.info(f"[HostService] client connected ({self.connections} open)")
        try:
            while True:
                text = await websocket.receive_text()
                outbox.put_nowait(await self._handle(bridge, text))
        except WebSocketDisconnect:
            logger.info("[HostService] client disconnected")
        finally:
            writer_task.cancel()
            try:
                await writer_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug(f"[HostService] writer stopped: {exc}")
            await bridge.close_all()
            self._bridges.discard(bridge)
            self.connections -= 1

    async def _handle(self, bridge: LocalPtyBridge, text: str) -> dict:
        try:
            req = BridgeRequest.model_validate_json(text)
        except ValidationError as exc:
            return {"id": None, "ok": False, "error": f"invalid request: {exc.errors()[0]['msg']}"}

        try:
            if req.op == "start_process":
                result = await bridge.start_process()
            elif req.session_id is None:
                raise ValueError(f"{req.op} requires session_id")
            elif req.op == "send_input":
                result = await bridge.send_input(req.session_id, decode_bytes(req.data))
            elif req.op == "resize_pty":
                result = await bridge.resize_pty(req.session_id, req.rows or 24, req.cols or 80)
            else:
                result = await bridge.close_terminal_process(req.session_id)
        except Exception as exc:
            logger.warning(f"[HostService] {req.op} failed: {exc}")
            return {"id": req.id, "ok": False, "error": str(exc)}
        return {"id": req.id, "ok": True, "result": result}


def create_app(bridge_factory: Optional[BridgeFactory] = None) -> FastAPI:
    return HostService(bridge_factory).app
