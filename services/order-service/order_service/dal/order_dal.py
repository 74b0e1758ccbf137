# order_service/dal/order_dal.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from ..models.order import Order, OrderCreate, OrderStatus
from ..settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_ORDERS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("status", ASCENDING)])
        await self.col.create_index([("restaurant_id", ASCENDING), ("created_at", ASCENDING)])

    async def create(self, data: OrderCreate, *, order_id: Optional[str] = None) -> Order:
        now = _now()
        doc: Dict[str, Any] = {
            "_id": order_id or str(uuid.uuid4()),
            "restaurant_id": data.restaurant_id,
            "items": [i.model_dump() for i in data.items],
            "total": data.total,
            "status": OrderStatus.CREATED.value,
            "created_at": now,
            "updated_at": now,
        }
        await self.col.insert_one(doc)
        return Order.model_validate(doc)

    async def get(self, order_id: str) -> Optional[Order]:
        doc = await self.col.find_one({"_id": order_id})
        return Order.model_validate(doc) if doc else None

    async def mark_cancelled(
        self,
        order_id: str,
        *,
        reason: str,
        refund_amount: Optional[float],
        cancelled_at: datetime,
    ) -> Optional[Order]:
        """
        `* -> CANCELLED`, only if not already cancelled.
        Returns None when nothing changed (missing or already terminal).
        """
        res = await self.col.find_one_and_update(
            {"_id": order_id, "status": {"$ne": OrderStatus.CANCELLED.value}},
            {
                "$set": {
                    "status": OrderStatus.CANCELLED.value,
                    "cancel_reason": reason,
                    "refund_amount": refund_amount,
                    "cancelled_at": cancelled_at,
                    "updated_at": _now(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return Order.model_validate(res) if res else None

    async def mark_delivery_assigned(self, order_id: str, driver_id: str) -> Optional[Order]:
        # CREATED -> DELIVERY_ASSIGNED only; a cancelled order stays cancelled
        res = await self.col.find_one_and_update(
            {"_id": order_id, "status": OrderStatus.CREATED.value},
            {"$set": {"status": OrderStatus.DELIVERY_ASSIGNED.value, "driver_id": driver_id, "updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return Order.model_validate(res) if res else None
