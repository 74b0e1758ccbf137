from __future__ import annotations

import logging
from typing import List

from food_common.bus import Subscription
from food_common.envelope import EventEnvelope
from food_common.events import RoutingKey, Service, queue_name
from food_common.idempotency import IdempotencyGuard
from food_common.schemas import (
    CompensationReason,
    KitchenAcceptedV1,
    KitchenOrderCancelledV1,
    KitchenRejectedV1,
    OrderCancelledV1,
    OrderCreatedV1,
)

from ..dal.kitchen_order_dal import KitchenOrderDAL
from ..decision import decide_kitchen
from ..models.kitchen_order import KitchenOrderStatus

log = logging.getLogger("kitchen.events")

Q_ORDER_CREATED = queue_name(Service.KITCHEN, RoutingKey.ORDER_CREATED)
Q_ORDER_CANCELLED = queue_name(Service.KITCHEN, RoutingKey.ORDER_CANCELLED)


def cancelled_key(order_id: str) -> str:
    return f"cancelled-{order_id}"


class KitchenConsumers:
    def __init__(self, dal: KitchenOrderDAL, guard: IdempotencyGuard, bus) -> None:
        self.dal = dal
        self.guard = guard
        self.bus = bus

    def subscriptions(self) -> List[Subscription]:
        return [
            Subscription(Q_ORDER_CREATED, RoutingKey.ORDER_CREATED.value, OrderCreatedV1, self.on_order_created),
            Subscription(Q_ORDER_CANCELLED, RoutingKey.ORDER_CANCELLED.value, OrderCancelledV1, self.on_order_cancelled),
        ]

    async def on_order_created(self, data: OrderCreatedV1, envelope: EventEnvelope) -> None:
        key = f"created-{data.order_id}"
        if await self.guard.seen(Q_ORDER_CREATED, key):
            log.info("order.created already processed order_id=%s", data.order_id)
            return

        if await self.guard.seen(Q_ORDER_CANCELLED, cancelled_key(data.order_id)):
            # order.cancelled overtook order.created; never start cooking a cancelled order
            log.warning("Order already cancelled, skipping kitchen decision order_id=%s", data.order_id)
            await self.guard.mark_seen(Q_ORDER_CREATED, key)
            return

        kitchen_order = await self.dal.record(data, decide_kitchen(data))

        if kitchen_order.status is KitchenOrderStatus.ACCEPTED:
            await self.bus.emit(
                RoutingKey.KITCHEN_ACCEPTED,
                KitchenAcceptedV1(order_id=data.order_id, total=kitchen_order.total),
                trace_id=envelope.trace_id,
                event_id=f"kitchen-accepted-{data.order_id}",
            )
        elif kitchen_order.status is KitchenOrderStatus.REJECTED:
            await self.bus.emit(
                RoutingKey.KITCHEN_REJECTED,
                KitchenRejectedV1(order_id=data.order_id, reason=kitchen_order.rejection_reason or "rejected"),
                trace_id=envelope.trace_id,
                event_id=f"kitchen-rejected-{data.order_id}",
            )
        log.info("Kitchen decided order_id=%s status=%s", data.order_id, kitchen_order.status.value)

        await self.guard.mark_seen(Q_ORDER_CREATED, key)

    async def on_order_cancelled(self, data: OrderCancelledV1, envelope: EventEnvelope) -> None:
        key = cancelled_key(data.order_id)
        if await self.guard.seen(Q_ORDER_CANCELLED, key):
            log.info("order.cancelled already processed order_id=%s", data.order_id)
            return

        kitchen_order = await self.dal.get_by_order(data.order_id)
        if kitchen_order is None:
            log.warning("Kitchen order not found for cancellation order_id=%s", data.order_id)
            # Nothing to compensate; still mark so redeliveries stay no-ops
            await self.guard.mark_seen(Q_ORDER_CANCELLED, key)
            return

        updated = await self.dal.mark_cancelled(
            data.order_id,
            reason=data.reason.value,
            cancelled_at=data.cancelled_at,
        )
        if updated is None:
            # Cancelled on an earlier delivery that crashed before marking; republish
            log.info("Kitchen order already cancelled order_id=%s", data.order_id)
        else:
            log.info("Kitchen order marked as cancelled order_id=%s", data.order_id)

        await self.bus.emit(
            RoutingKey.KITCHEN_ORDER_CANCELLED,
            KitchenOrderCancelledV1(
                order_id=data.order_id,
                reason=CompensationReason(data.reason.value),
                cancelled_at=data.cancelled_at,
            ),
            trace_id=envelope.trace_id,
            event_id=f"kitchen-cancelled-{data.order_id}",
        )
        await self.guard.mark_seen(Q_ORDER_CANCELLED, key)
