from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument

from ..gateway import ChargeResult
from ..models.payment import Payment, PaymentStatus
from ..settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def payment_id_for(order_id: str) -> str:
    return f"pay-{order_id}"


class PaymentDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_PAYMENTS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("order_id", ASCENDING)], unique=True)
        await self.col.create_index([("status", ASCENDING)])

    async def record_charge(self, order_id: str, amount: float, result: ChargeResult) -> Payment:
        """One payment per order; a second charge for the same order returns the first."""
        now = _now()
        res = await self.col.find_one_and_update(
            {"_id": payment_id_for(order_id)},
            {
                "$setOnInsert": {
                    "order_id": order_id,
                    "amount": amount,
                    "status": result.status.value,
                    "failure_reason": result.reason,
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return Payment.model_validate(res)

    async def get_by_order(self, order_id: str) -> Optional[Payment]:
        doc = await self.col.find_one({"order_id": order_id})
        return Payment.model_validate(doc) if doc else None

    async def mark_refunded(self, order_id: str, *, reason: str) -> Optional[Payment]:
        # SUCCEEDED -> REFUNDED only
        now = _now()
        res = await self.col.find_one_and_update(
            {"order_id": order_id, "status": PaymentStatus.SUCCEEDED.value},
            {"$set": {"status": PaymentStatus.REFUNDED.value, "refund_reason": reason, "refunded_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return Payment.model_validate(res) if res else None
