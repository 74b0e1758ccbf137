from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PaymentStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"     # terminal


class Payment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., alias="_id")
    order_id: str
    amount: float
    status: PaymentStatus
    failure_reason: Optional[str] = None

    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime
