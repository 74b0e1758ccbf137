from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NotificationType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    KITCHEN_ACCEPTED = "KITCHEN_ACCEPTED"
    KITCHEN_REJECTED = "KITCHEN_REJECTED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_REFUND = "PAYMENT_REFUND"
    DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
    DELIVERY_CANCELLED = "DELIVERY_CANCELLED"


class Notification(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., alias="_id")
    event_key: str
    order_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    trace_id: str
    created_at: datetime
