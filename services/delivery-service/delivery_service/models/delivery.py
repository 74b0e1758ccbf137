from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeliveryStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    CANCELLED = "CANCELLED"
    DELIVERED = "DELIVERED"


class CancelPath(str, Enum):
    """Which consumer released the driver."""
    KITCHEN = "kitchen"
    DIRECT = "direct"


class Delivery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., alias="_id")
    order_id: str
    driver_id: str
    status: DeliveryStatus

    released_driver_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_via: Optional[CancelPath] = None

    created_at: datetime
    updated_at: datetime
