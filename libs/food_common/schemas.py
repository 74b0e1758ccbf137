"""v1 payload contracts carried in ``EventEnvelope.data``.

Field names are snake_case in Python and camelCase on the wire.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CancelReason(str, Enum):
    customer_requested = "customer_requested"
    payment_failed = "payment_failed"
    kitchen_rejected = "kitchen_rejected"
    delivery_unavailable = "delivery_unavailable"


class CompensationReason(str, Enum):
    """Reasons carried by kitchen/delivery compensation events."""
    customer_requested = "customer_requested"
    payment_failed = "payment_failed"
    kitchen_rejected = "kitchen_rejected"
    delivery_unavailable = "delivery_unavailable"
    system_error = "system_error"


class RefundReason(str, Enum):
    customer_cancellation = "customer_cancellation"
    kitchen_rejected = "kitchen_rejected"
    delivery_failed = "delivery_failed"
    system_error = "system_error"


REFUND_REASONS: Dict[CancelReason, RefundReason] = {
    CancelReason.customer_requested: RefundReason.customer_cancellation,
    CancelReason.kitchen_rejected: RefundReason.kitchen_rejected,
    CancelReason.delivery_unavailable: RefundReason.delivery_failed,
    CancelReason.payment_failed: RefundReason.system_error,
}


class EventData(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class OrderItem(EventData):
    menu_item_id: str
    qty: int = Field(gt=0)


class OrderCreatedV1(EventData):
    order_id: str
    restaurant_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total: float = Field(gt=0)


class OrderCancelledV1(EventData):
    order_id: str
    reason: CancelReason
    cancelled_at: datetime
    refund_amount: Optional[float] = Field(default=None, gt=0)


class KitchenAcceptedV1(EventData):
    order_id: str
    total: float = Field(gt=0)


class KitchenRejectedV1(EventData):
    order_id: str
    reason: str


class KitchenOrderCancelledV1(EventData):
    order_id: str
    reason: CompensationReason
    cancelled_at: datetime


class PaymentSucceededV1(EventData):
    order_id: str
    amount: float = Field(gt=0)


class PaymentFailedV1(EventData):
    order_id: str
    reason: str


class PaymentRefundV1(EventData):
    payment_id: str
    order_id: str
    amount: float = Field(gt=0)
    reason: RefundReason
    initiated_at: datetime


class DeliveryAssignedV1(EventData):
    order_id: str
    driver_id: str


class DeliveryCancelledV1(EventData):
    order_id: str
    driver_id: str
    reason: CompensationReason
    cancelled_at: datetime


__all__ = [
    "CancelReason",
    "CompensationReason",
    "RefundReason",
    "REFUND_REASONS",
    "EventData",
    "OrderItem",
    "OrderCreatedV1",
    "OrderCancelledV1",
    "KitchenAcceptedV1",
    "KitchenRejectedV1",
    "KitchenOrderCancelledV1",
    "PaymentSucceededV1",
    "PaymentFailedV1",
    "PaymentRefundV1",
    "DeliveryAssignedV1",
    "DeliveryCancelledV1",
]
