from __future__ import annotations

import logging
from datetime import datetime
from typing import List

from food_common.bus import Subscription
from food_common.envelope import EventEnvelope
from food_common.events import RoutingKey, Service, queue_name
from food_common.idempotency import IdempotencyGuard
from food_common.schemas import (
    CompensationReason,
    DeliveryAssignedV1,
    DeliveryCancelledV1,
    KitchenOrderCancelledV1,
    OrderCancelledV1,
    PaymentSucceededV1,
)

from ..assign import assign_driver
from ..dal.delivery_dal import DeliveryDAL
from ..models.delivery import CancelPath, DeliveryStatus

log = logging.getLogger("delivery.events")

Q_PAYMENT_SUCCEEDED = queue_name(Service.DELIVERY, RoutingKey.PAYMENT_SUCCEEDED)
Q_KITCHEN_ORDER_CANCELLED = queue_name(Service.DELIVERY, RoutingKey.KITCHEN_ORDER_CANCELLED)
# Fallback path when kitchen never saw the order
Q_ORDER_CANCELLED_DIRECT = queue_name(Service.DELIVERY, RoutingKey.ORDER_CANCELLED, "direct")


def kitchen_cancel_key(order_id: str) -> str:
    return f"delivery-cancel-{order_id}"


def direct_cancel_key(order_id: str) -> str:
    return f"delivery-direct-cancel-{order_id}"


class DeliveryConsumers:
    def __init__(self, dal: DeliveryDAL, guard: IdempotencyGuard, bus, driver_pool: List[str]) -> None:
        self.dal = dal
        self.guard = guard
        self.bus = bus
        self.driver_pool = driver_pool

    def subscriptions(self) -> List[Subscription]:
        return [
            Subscription(Q_PAYMENT_SUCCEEDED, RoutingKey.PAYMENT_SUCCEEDED.value, PaymentSucceededV1, self.on_payment_succeeded),
            Subscription(
                Q_KITCHEN_ORDER_CANCELLED,
                RoutingKey.KITCHEN_ORDER_CANCELLED.value,
                KitchenOrderCancelledV1,
                self.on_kitchen_order_cancelled,
            ),
            Subscription(Q_ORDER_CANCELLED_DIRECT, RoutingKey.ORDER_CANCELLED.value, OrderCancelledV1, self.on_order_cancelled),
        ]

    async def on_payment_succeeded(self, data: PaymentSucceededV1, envelope: EventEnvelope) -> None:
        key = f"assign-{data.order_id}"
        if await self.guard.seen(Q_PAYMENT_SUCCEEDED, key):
            log.info("payment.succeeded already processed order_id=%s", data.order_id)
            return

        if await self._cancelled(data.order_id):
            # A cancellation overtook payment.succeeded; no driver for a cancelled order
            log.warning("Order already cancelled, skipping assignment order_id=%s", data.order_id)
            await self.guard.mark_seen(Q_PAYMENT_SUCCEEDED, key)
            return

        delivery = await self.dal.assign(data.order_id, assign_driver(data.order_id, self.driver_pool))
        if delivery.status is DeliveryStatus.ASSIGNED:
            await self.bus.emit(
                RoutingKey.DELIVERY_ASSIGNED,
                DeliveryAssignedV1(order_id=data.order_id, driver_id=delivery.driver_id),
                trace_id=envelope.trace_id,
                event_id=f"delivery-assigned-{data.order_id}",
            )
            log.info("Driver assigned order_id=%s driver_id=%s", data.order_id, delivery.driver_id)
        else:
            log.info("Delivery already %s order_id=%s", delivery.status.value, data.order_id)

        await self.guard.mark_seen(Q_PAYMENT_SUCCEEDED, key)

    async def _cancelled(self, order_id: str) -> bool:
        if await self.guard.seen(Q_KITCHEN_ORDER_CANCELLED, kitchen_cancel_key(order_id)):
            return True
        return await self.guard.seen(Q_ORDER_CANCELLED_DIRECT, direct_cancel_key(order_id))

    async def on_kitchen_order_cancelled(self, data: KitchenOrderCancelledV1, envelope: EventEnvelope) -> None:
        await self._release(
            Q_KITCHEN_ORDER_CANCELLED,
            kitchen_cancel_key(data.order_id),
            order_id=data.order_id,
            reason=data.reason,
            cancelled_at=data.cancelled_at,
            via=CancelPath.KITCHEN,
            trace_id=envelope.trace_id,
        )

    async def on_order_cancelled(self, data: OrderCancelledV1, envelope: EventEnvelope) -> None:
        await self._release(
            Q_ORDER_CANCELLED_DIRECT,
            direct_cancel_key(data.order_id),
            order_id=data.order_id,
            reason=CompensationReason(data.reason.value),
            cancelled_at=data.cancelled_at,
            via=CancelPath.DIRECT,
            trace_id=envelope.trace_id,
        )

    async def _release(
        self,
        queue: str,
        key: str,
        *,
        order_id: str,
        reason: CompensationReason,
        cancelled_at: datetime,
        via: CancelPath,
        trace_id: str,
    ) -> None:
        if await self.guard.seen(queue, key):
            log.info("cancellation already processed order_id=%s via=%s", order_id, via.value)
            return

        delivery = await self.dal.get_by_order(order_id)
        if delivery is None:
            log.warning("Delivery not found for cancellation order_id=%s via=%s", order_id, via.value)
            await self.guard.mark_seen(queue, key)
            return

        released = await self.dal.release(order_id, reason=reason.value, cancelled_at=cancelled_at, via=via)
        if released is None:
            released = await self.dal.get_by_order(order_id) or delivery

        # The path that released the driver owns the delivery.cancelled event
        if released.status is DeliveryStatus.CANCELLED and released.cancelled_via is via:
            await self.bus.emit(
                RoutingKey.DELIVERY_CANCELLED,
                DeliveryCancelledV1(
                    order_id=order_id,
                    driver_id=released.released_driver_id or released.driver_id,
                    reason=reason,
                    cancelled_at=cancelled_at,
                ),
                trace_id=trace_id,
                event_id=f"delivery-cancelled-{order_id}",
            )
            log.info("Delivery cancelled order_id=%s driver_id=%s via=%s", order_id, released.driver_id, via.value)
        else:
            log.info("Delivery already released order_id=%s via=%s", order_id, released.cancelled_via)

        await self.guard.mark_seen(queue, key)
