from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from ..models.notification import Notification, NotificationType
from ..settings import settings


class NotificationDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_NOTIFICATIONS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("order_id", ASCENDING), ("created_at", DESCENDING)])

    async def insert(
        self,
        *,
        event_key: str,
        order_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Dict[str, Any],
        trace_id: str,
    ) -> Notification:
        """Insert once per (type, event_key); a repeat returns the stored notification."""
        res = await self.col.find_one_and_update(
            {"_id": f"{type.value}:{event_key}"},
            {
                "$setOnInsert": {
                    "event_key": event_key,
                    "order_id": order_id,
                    "type": type.value,
                    "title": title,
                    "message": message,
                    "data": data,
                    "trace_id": trace_id,
                    "created_at": datetime.now(timezone.utc),
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return Notification.model_validate(res)

    async def list_by_order(self, order_id: str, limit: int = 100) -> List[Notification]:
        cursor = self.col.find({"order_id": order_id}, sort=[("created_at", ASCENDING)], limit=limit)
        return [Notification.model_validate(d) async for d in cursor]
