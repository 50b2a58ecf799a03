"""
WebSocket connection hub.

Tracks connected clients by id, routes named inbound events to registered
handlers and pushes named outbound events to one client or to everyone.
Frames on the wire are JSON objects ``{"event": <name>, "data": <payload>}``.
"""

import inspect
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from common.constants import ERROR_EVENT

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Any], Awaitable[None]]
DisconnectHandler = Callable[[str], Any]


class ConnectionHub:
    """Publish/subscribe transport over WebSocket connections."""

    def __init__(self, event_counter=None) -> None:
        # connection_id -> object exposing ``async send_json(data)``
        self._connections: Dict[str, Any] = {}
        self._handlers: Dict[str, EventHandler] = {}
        self._disconnect_handlers: List[DisconnectHandler] = []
        self._event_counter = event_counter

    # ---- registration -------------------------------------------------

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Register the handler for an inbound event (one per name)."""
        self._handlers[event_name] = handler

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def handles(self, event_name: str) -> bool:
        return event_name in self._handlers

    # ---- lifecycle ----------------------------------------------------

    async def connect(self, connection: Any, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or uuid.uuid4().hex
        self._connections[connection_id] = connection
        logger.info(f"Client connected: {connection_id} (total: {len(self._connections)})")
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is None:
            return
        logger.info(f"Client disconnected: {connection_id} (total: {len(self._connections)})")
        for handler in self._disconnect_handlers:
            result = handler(connection_id)
            if inspect.isawaitable(result):
                await result

    def connection_ids(self) -> List[str]:
        return list(self._connections)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    # ---- outbound -----------------------------------------------------

    async def send_to(self, connection_id: str, event_name: str, payload: Any) -> bool:
        """
        Send one event to one client.

        Returns:
            True if the frame was written; False for unknown ids or failed sends
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        frame = {"event": event_name, "data": jsonable_encoder(payload)}
        try:
            await connection.send_json(frame)
            return True
        except Exception as e:
            logger.warning(f"Dropped '{event_name}' for {connection_id}: {e!r}")
            return False

    async def broadcast(self, event_name: str, payload: Any) -> int:
        """Send one event to every connected client; returns the delivered count."""
        delivered = 0
        for connection_id in list(self._connections):
            if await self.send_to(connection_id, event_name, payload):
                delivered += 1
        return delivered

    # ---- inbound ------------------------------------------------------

    async def dispatch(self, connection_id: str, event_name: str, payload: Any = None) -> None:
        """Run the handler for an inbound event; failures become ``error`` events."""
        handler = self._handlers.get(event_name)
        if self._event_counter is not None:
            self._event_counter.labels(event=event_name if handler else "unknown").inc()
        if handler is None:
            await self.send_to(connection_id, ERROR_EVENT, {"message": f"Unknown event: {event_name}"})
            return
        try:
            await handler(connection_id, payload)
        except Exception as e:
            logger.exception(f"Unhandled error in '{event_name}' for {connection_id}: {e}")
            await self.send_to(connection_id, ERROR_EVENT, {"message": "Internal error"})

    async def dispatch_text(self, connection_id: str, raw: Union[str, bytes, None]) -> None:
        """Decode one raw frame (text, or UTF-8 bytes) and dispatch it."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            await self.send_to(connection_id, ERROR_EVENT, {"message": "Malformed frame"})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.send_to(connection_id, ERROR_EVENT, {"message": "Malformed frame"})
            return
        await self.dispatch(connection_id, frame["event"], frame.get("data"))

    async def serve(self, websocket: WebSocket) -> None:
        """Accept a WebSocket and process its frames in arrival order until it closes."""
        await websocket.accept()
        connection_id = await self.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await self.dispatch_text(connection_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(connection_id)
