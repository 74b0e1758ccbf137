from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from food_common.schemas import OrderItem


class KitchenOrderStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class KitchenOrder(BaseModel):
    """Kitchen's own projection of an order. Keyed by order_id."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., alias="_id")
    order_id: str
    restaurant_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total: float
    status: KitchenOrderStatus
    rejection_reason: Optional[str] = None

    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime
