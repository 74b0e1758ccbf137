"""
Trigger of the cancellation saga.

Validates the reason, flips the order to CANCELLED (a no-op if it already is) and
publishes `order.cancelled`. Kitchen, payment, delivery and notification react to
that event on their own; nothing here waits for them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from food_common.errors import NotFoundError, ValidationError
from food_common.events import RoutingKey
from food_common.schemas import CancelReason, OrderCancelledV1

from ..dal.order_dal import OrderDAL

log = logging.getLogger("order.cancellation")

VALID_REASONS = [r.value for r in CancelReason]


@dataclass(frozen=True)
class CancelResult:
    order_id: str
    message: str
    published: bool

    def body(self) -> Dict[str, Any]:
        return {"success": True, "message": self.message, "orderId": self.order_id}


def cancelled_event_id(order_id: str) -> str:
    return f"cancel-{order_id}"


class OrderCancellation:
    def __init__(self, dal: OrderDAL, bus) -> None:
        self.dal = dal
        self.bus = bus

    async def cancel(
        self,
        order_id: str,
        reason: Any,
        *,
        trace_id: Optional[str] = None,
        republish: bool = False,
    ) -> CancelResult:
        """
        Cancel `order_id` and publish `order.cancelled`.

        With `republish`, an order that is already cancelled has its `order.cancelled`
        published again from the stored cancellation, under the same event id. Event
        consumers use this so a crash between the update and the publish heals on
        redelivery; downstream dedupe absorbs the repeat.
        """
        if reason not in VALID_REASONS:
            raise ValidationError(f"Invalid reason. Must be one of: {', '.join(VALID_REASONS)}")

        order = await self.dal.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")

        if order.is_cancelled:
            log.warning("Order already cancelled order_id=%s", order_id)
            if republish:
                await self._publish(
                    order_id,
                    order.cancel_reason or reason,
                    cancelled_at=order.cancelled_at or order.updated_at,
                    refund_amount=order.refund_amount,
                    trace_id=trace_id,
                )
                return CancelResult(order_id=order_id, message="Order already cancelled", published=True)
            return CancelResult(order_id=order_id, message="Order already cancelled", published=False)

        cancelled_at = datetime.now(timezone.utc)
        refund_amount = order.total if order.total > 0 else None
        updated = await self.dal.mark_cancelled(
            order_id,
            reason=reason,
            refund_amount=refund_amount,
            cancelled_at=cancelled_at,
        )
        if updated is None:
            # Lost a race with a concurrent cancel; that one publishes
            log.warning("Order cancelled concurrently order_id=%s", order_id)
            return CancelResult(order_id=order_id, message="Order already cancelled", published=False)

        await self._publish(order_id, reason, cancelled_at=cancelled_at, refund_amount=refund_amount, trace_id=trace_id)
        log.info("Order cancellation initiated order_id=%s reason=%s", order_id, reason)
        return CancelResult(order_id=order_id, message="Order cancellation initiated", published=True)

    async def _publish(
        self,
        order_id: str,
        reason: str,
        *,
        cancelled_at: datetime,
        refund_amount: Optional[float],
        trace_id: Optional[str],
    ) -> None:
        await self.bus.emit(
            RoutingKey.ORDER_CANCELLED,
            OrderCancelledV1(
                order_id=order_id,
                reason=CancelReason(reason),
                cancelled_at=cancelled_at,
                refund_amount=refund_amount,
            ),
            trace_id=trace_id,
            event_id=cancelled_event_id(order_id),
        )
