from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from food_common.schemas import OrderCreatedV1

from ..decision import KitchenDecision
from ..models.kitchen_order import KitchenOrder, KitchenOrderStatus
from ..settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


class KitchenOrderDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_KITCHEN_ORDERS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("order_id", ASCENDING)], unique=True)

    async def record(self, order: OrderCreatedV1, decision: KitchenDecision) -> KitchenOrder:
        """
        Insert the kitchen order once. A redelivered order.created returns the
        stored document unchanged.
        """
        now = _now()
        res = await self.col.find_one_and_update(
            {"_id": order.order_id},
            {
                "$setOnInsert": {
                    "order_id": order.order_id,
                    "restaurant_id": order.restaurant_id,
                    "items": [i.model_dump() for i in order.items],
                    "total": order.total,
                    "status": decision.status.value,
                    "rejection_reason": decision.reason,
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return KitchenOrder.model_validate(res)

    async def get_by_order(self, order_id: str) -> Optional[KitchenOrder]:
        doc = await self.col.find_one({"order_id": order_id})
        return KitchenOrder.model_validate(doc) if doc else None

    async def mark_cancelled(self, order_id: str, *, reason: str, cancelled_at: datetime) -> Optional[KitchenOrder]:
        res = await self.col.find_one_and_update(
            {"order_id": order_id, "status": {"$ne": KitchenOrderStatus.CANCELLED.value}},
            {
                "$set": {
                    "status": KitchenOrderStatus.CANCELLED.value,
                    "cancel_reason": reason,
                    "cancelled_at": cancelled_at,
                    "updated_at": _now(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return KitchenOrder.model_validate(res) if res else None
