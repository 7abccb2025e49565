"""Real-time fan-out to dashboard observers over WebSocket.

Delivery is fire-and-forget and at-most-once: observers reconcile by fetching
state, so a failed send only drops the socket.
"""

import asyncio
from enum import Enum
from typing import Any, Protocol

from fastapi import WebSocket

from switchboard.logging_config import get_logger

logger = get_logger("broadcast_service")


class Topic(str, Enum):
    NEW_MESSAGE = "new_message"
    OPERATOR_NEEDED = "operator_needed"
    CONVERSATION_CLOSED = "conversation_closed"
    TRANSPORT_STATUS = "transport_status"


class Broadcaster(Protocol):
    def publish(self, topic: Topic, payload: dict[str, Any]) -> None: ...


class WebSocketHub:
    def __init__(self):
        self._connections: set[WebSocket] = set()
        self._pending: set[asyncio.Task] = set()

    async def attach(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("Observer connected", extra={"context": {"observers": len(self._connections)}})

    def detach(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.discard(websocket)
            logger.info("Observer disconnected", extra={"context": {"observers": len(self._connections)}})

    @property
    def observer_count(self) -> int:
        return len(self._connections)

    def publish(self, topic: Topic, payload: dict[str, Any]) -> None:
        if not self._connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Dropping {topic.value} event: no running event loop")
            return

        envelope = {"type": topic.value, "payload": payload}
        for websocket in list(self._connections):
            task = loop.create_task(self._send(websocket, envelope))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def send_to(self, websocket: WebSocket, topic: Topic, payload: dict[str, Any]) -> None:
        await websocket.send_json({"type": topic.value, "payload": payload})

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._connections.clear()

    async def _send(self, websocket: WebSocket, envelope: dict[str, Any]) -> None:
        try:
            await websocket.send_json(envelope)
        except Exception as e:
            logger.warning(f"Observer send failed, dropping socket: {e}")
            self.detach(websocket)
