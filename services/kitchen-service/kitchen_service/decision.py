from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from food_common.schemas import OrderCreatedV1

from .models.kitchen_order import KitchenOrderStatus


@dataclass(frozen=True)
class KitchenDecision:
    status: KitchenOrderStatus
    reason: Optional[str] = None


def decide_kitchen(order: OrderCreatedV1) -> KitchenDecision:
    if not order.items:
        return KitchenDecision(KitchenOrderStatus.REJECTED, "No items in order")
    return KitchenDecision(KitchenOrderStatus.ACCEPTED)
