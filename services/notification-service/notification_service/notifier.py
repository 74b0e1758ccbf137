from __future__ import annotations

import logging
from typing import Any, Dict

from .dal.notification_dal import NotificationDAL
from .models.notification import Notification, NotificationType
from .websocket_manager import WebSocketManager

log = logging.getLogger("notification.sender")


class Notifier:
    """Persist a user-facing notification, then push it to connected clients."""

    def __init__(self, dal: NotificationDAL, ws: WebSocketManager) -> None:
        self.dal = dal
        self.ws = ws

    async def send(
        self,
        type: NotificationType,
        *,
        event_key: str,
        order_id: str,
        title: str,
        message: str,
        data: Dict[str, Any],
        trace_id: str,
    ) -> Notification:
        notification = await self.dal.insert(
            event_key=event_key,
            order_id=order_id,
            type=type,
            title=title,
            message=message,
            data=data,
            trace_id=trace_id,
        )
        delivered = await self.ws.broadcast(notification.model_dump(by_alias=True, mode="json"))
        log.info("[notification] %s order_id=%s clients=%d", type.value, order_id, delivered)
        return notification
