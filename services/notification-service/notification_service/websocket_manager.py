# notification_service/websocket_manager.py
import asyncio
import logging
from typing import Any, List, Set, Union

import orjson
from fastapi import WebSocket

log = logging.getLogger("notification.ws")


class WebSocketManager:
    def __init__(self) -> None:
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        log.info("WebSocket connected; total=%d", len(self._clients))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)
        log.info("WebSocket disconnected; total=%d", len(self._clients))

    async def broadcast(self, message: Union[str, Any]) -> int:
        """Send to every client; returns how many received it. Failing sockets are dropped."""
        text = message if isinstance(message, str) else orjson.dumps(message).decode("utf-8")

        async with self._lock:
            clients = list(self._clients)

        if not clients:
            return 0

        stale: List[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_text(text)
            except Exception as e:
                log.debug("WebSocket send failed: %s", e)
                stale.append(ws)

        if stale:
            async with self._lock:
                for ws in stale:
                    self._clients.discard(ws)
            log.info("Pruned %d stale WebSocket(s); total=%d", len(stale), len(self._clients))
        return len(clients) - len(stale)


websocket_manager = WebSocketManager()
__all__ = ["WebSocketManager", "websocket_manager"]
