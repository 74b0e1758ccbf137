# order_service/models/order.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from food_common.schemas import OrderItem


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"                  # terminal
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    DELIVERED = "DELIVERED"


class OrderCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    restaurant_id: str = Field(min_length=1)
    items: List[OrderItem] = Field(default_factory=list)
    total: float = Field(gt=0)


class CancelRequest(BaseModel):
    # Any JSON value; the cancellation service checks it against CancelReason so bad values map to 400
    reason: Any = None


class Order(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., alias="_id")
    restaurant_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total: float
    status: OrderStatus = OrderStatus.CREATED

    # Cancellation projection
    cancel_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    cancelled_at: Optional[datetime] = None

    driver_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_cancelled(self) -> bool:
        return self.status is OrderStatus.CANCELLED
