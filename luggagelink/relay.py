"""
WebSocket relay: every frame received on ``/ws`` is forwarded verbatim to all
other open connections. Connections opened with a session are also indexed by
user id so new messages can be pushed to their recipient.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Optional

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from luggagelink.config import SESSION_USER_KEY

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionHub:
    """Tracks open sockets; no rooms, no envelopes, no persistence."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: set[WebSocket] = set()
        self._by_user: dict[int, set[WebSocket]] = {}
        self._owners: dict[WebSocket, int] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, websocket: WebSocket, user_id: Optional[int] = None) -> None:
        with self._lock:
            self._connections.add(websocket)
            if user_id is not None:
                self._by_user.setdefault(user_id, set()).add(websocket)
                self._owners[websocket] = user_id
        logger.debug("Socket connected (user=%s, open=%d)", user_id, len(self))

    def unregister(self, websocket: WebSocket) -> None:
        with self._lock:
            self._connections.discard(websocket)
            user_id = self._owners.pop(websocket, None)
            if user_id is not None:
                sockets = self._by_user.get(user_id, set())
                sockets.discard(websocket)
                if not sockets:
                    self._by_user.pop(user_id, None)
        logger.debug("Socket disconnected (open=%d)", len(self))

    async def broadcast(
        self,
        sender: Optional[WebSocket],
        *,
        text: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> int:
        """Forward a frame to every open socket except ``sender``."""
        with self._lock:
            targets = [ws for ws in self._connections if ws is not sender]
        delivered = 0
        for websocket in targets:
            if await self._send(websocket, text=text, data=data):
                delivered += 1
        return delivered

    async def send_to_user(self, user_id: int, payload: dict) -> int:
        with self._lock:
            targets = list(self._by_user.get(user_id, ()))
        text = json.dumps(payload, default=str)
        delivered = 0
        for websocket in targets:
            if await self._send(websocket, text=text):
                delivered += 1
        return delivered

    async def _send(
        self,
        websocket: WebSocket,
        *,
        text: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> bool:
        if (
            websocket.client_state != WebSocketState.CONNECTED
            or websocket.application_state != WebSocketState.CONNECTED
        ):
            self.unregister(websocket)
            return False
        try:
            if data is not None:
                await websocket.send_bytes(data)
            else:
                await websocket.send_text(text or "")
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Dropping socket after failed send: %s", exc)
            self.unregister(websocket)
            return False
        return True


@router.websocket("/ws")
async def relay(websocket: WebSocket):
    hub: ConnectionHub = websocket.app.state.hub
    await websocket.accept()
    user_id = None
    if "session" in websocket.scope:
        user_id = websocket.session.get(SESSION_USER_KEY)
    hub.register(websocket, user_id)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            await hub.broadcast(
                websocket, text=message.get("text"), data=message.get("bytes")
            )
    finally:
        hub.unregister(websocket)
