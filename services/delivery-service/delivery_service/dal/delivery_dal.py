from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from ..models.delivery import CancelPath, Delivery, DeliveryStatus
from ..settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_DELIVERIES]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("order_id", ASCENDING)], unique=True)
        await self.col.create_index([("driver_id", ASCENDING), ("status", ASCENDING)])

    async def assign(self, order_id: str, driver_id: str) -> Delivery:
        now = _now()
        res = await self.col.find_one_and_update(
            {"_id": order_id},
            {
                "$setOnInsert": {
                    "order_id": order_id,
                    "driver_id": driver_id,
                    "status": DeliveryStatus.ASSIGNED.value,
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return Delivery.model_validate(res)

    async def get_by_order(self, order_id: str) -> Optional[Delivery]:
        doc = await self.col.find_one({"order_id": order_id})
        return Delivery.model_validate(doc) if doc else None

    async def release(
        self,
        order_id: str,
        *,
        reason: str,
        cancelled_at: datetime,
        via: CancelPath,
    ) -> Optional[Delivery]:
        """
        Cancel the delivery and free its driver. Only the first caller wins;
        `cancelled_via` records which path did it. Returns None if the delivery
        was already cancelled.
        """
        current = await self.col.find_one({"order_id": order_id})
        if current is None:
            return None
        res = await self.col.find_one_and_update(
            {"order_id": order_id, "status": {"$ne": DeliveryStatus.CANCELLED.value}},
            {
                "$set": {
                    "status": DeliveryStatus.CANCELLED.value,
                    "released_driver_id": current["driver_id"],
                    "cancel_reason": reason,
                    "cancelled_at": cancelled_at,
                    "cancelled_via": via.value,
                    "updated_at": _now(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return Delivery.model_validate(res) if res else None
