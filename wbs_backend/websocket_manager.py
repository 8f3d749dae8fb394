"""
WebSocket Manager - Handles real-time connections and broadcasts.

Connected render surfaces receive a diagram_updated event after every
engine change and then fetch GET /api/diagram.
"""
import asyncio
import json
import logging
from typing import Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Tracks open sockets and broadcasts JSON messages to all of them."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("WebSocket connected (%d open)", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("WebSocket disconnected (%d open)", len(self._connections))

    async def broadcast(self, message: dict):
        """
        Send a message to every client.

        Clients whose send fails are dropped.
        """
        if not self._connections:
            return

        message_text = json.dumps(message)
        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception as e:
                    logger.debug("Dropping WebSocket after send failure: %s", e)
                    failed.add(websocket)

            self._connections -= failed

    async def notify_diagram_updated(self, title: str | None = None, can_undo: bool = False,
                                     can_redo: bool = False):
        await self.broadcast({
            "type": "diagram_updated",
            "title": title,
            "can_undo": can_undo,
            "can_redo": can_redo
        })

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Global instance
ws_manager = WebSocketManager()
