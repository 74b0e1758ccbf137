from __future__ import annotations

import logging
from typing import List

from food_common.bus import Subscription
from food_common.envelope import EventEnvelope
from food_common.errors import NotFoundError
from food_common.events import RoutingKey, Service, queue_name
from food_common.idempotency import IdempotencyGuard
from food_common.schemas import (
    CancelReason,
    DeliveryAssignedV1,
    KitchenRejectedV1,
    PaymentFailedV1,
)

from ..dal.order_dal import OrderDAL
from ..services.cancellation import OrderCancellation

log = logging.getLogger("order.events")

Q_KITCHEN_REJECTED = queue_name(Service.ORDER, RoutingKey.KITCHEN_REJECTED)
Q_PAYMENT_FAILED = queue_name(Service.ORDER, RoutingKey.PAYMENT_FAILED)
Q_DELIVERY_ASSIGNED = queue_name(Service.ORDER, RoutingKey.DELIVERY_ASSIGNED)


class OrderConsumers:
    """Upstream failure events cancel the order; delivery.assigned advances it."""

    def __init__(self, dal: OrderDAL, guard: IdempotencyGuard, cancellation: OrderCancellation) -> None:
        self.dal = dal
        self.guard = guard
        self.cancellation = cancellation

    def subscriptions(self) -> List[Subscription]:
        return [
            Subscription(Q_KITCHEN_REJECTED, RoutingKey.KITCHEN_REJECTED.value, KitchenRejectedV1, self.on_kitchen_rejected),
            Subscription(Q_PAYMENT_FAILED, RoutingKey.PAYMENT_FAILED.value, PaymentFailedV1, self.on_payment_failed),
            Subscription(Q_DELIVERY_ASSIGNED, RoutingKey.DELIVERY_ASSIGNED.value, DeliveryAssignedV1, self.on_delivery_assigned),
        ]

    async def on_kitchen_rejected(self, data: KitchenRejectedV1, envelope: EventEnvelope) -> None:
        await self._cancel_from_upstream(
            Q_KITCHEN_REJECTED, f"kitchen-rejected-{data.order_id}", data.order_id,
            CancelReason.kitchen_rejected, envelope,
        )

    async def on_payment_failed(self, data: PaymentFailedV1, envelope: EventEnvelope) -> None:
        await self._cancel_from_upstream(
            Q_PAYMENT_FAILED, f"payment-failed-{data.order_id}", data.order_id,
            CancelReason.payment_failed, envelope,
        )

    async def _cancel_from_upstream(
        self,
        namespace: str,
        key: str,
        order_id: str,
        reason: CancelReason,
        envelope: EventEnvelope,
    ) -> None:
        if await self.guard.seen(namespace, key):
            log.info("%s already processed order_id=%s", envelope.event_type, order_id)
            return
        try:
            await self.cancellation.cancel(order_id, reason.value, trace_id=envelope.trace_id, republish=True)
        except NotFoundError:
            log.warning("Order not found for %s, nothing to cancel order_id=%s", envelope.event_type, order_id)
        await self.guard.mark_seen(namespace, key)

    async def on_delivery_assigned(self, data: DeliveryAssignedV1, envelope: EventEnvelope) -> None:
        key = f"delivery-assigned-{data.order_id}"
        if await self.guard.seen(Q_DELIVERY_ASSIGNED, key):
            log.info("delivery.assigned already processed order_id=%s", data.order_id)
            return
        order = await self.dal.mark_delivery_assigned(data.order_id, data.driver_id)
        if order is None:
            log.warning("Order not in CREATED, ignoring driver assignment order_id=%s", data.order_id)
        else:
            log.info("Order delivery assigned order_id=%s driver_id=%s", data.order_id, data.driver_id)
        await self.guard.mark_seen(Q_DELIVERY_ASSIGNED, key)
