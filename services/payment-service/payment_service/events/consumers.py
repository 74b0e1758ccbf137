from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from food_common.bus import Subscription
from food_common.envelope import EventEnvelope
from food_common.errors import ValidationError
from food_common.events import RoutingKey, Service, queue_name
from food_common.idempotency import IdempotencyGuard
from food_common.schemas import (
    REFUND_REASONS,
    KitchenAcceptedV1,
    OrderCancelledV1,
    PaymentFailedV1,
    PaymentRefundV1,
    PaymentSucceededV1,
)

from ..dal.payment_dal import PaymentDAL
from ..gateway import ChargeResult
from ..models.payment import Payment, PaymentStatus

log = logging.getLogger("payment.events")

Q_KITCHEN_ACCEPTED = queue_name(Service.PAYMENT, RoutingKey.KITCHEN_ACCEPTED)
Q_ORDER_CANCELLED = queue_name(Service.PAYMENT, RoutingKey.ORDER_CANCELLED)


def refund_key(order_id: str) -> str:
    return f"refund-{order_id}"


class PaymentConsumers:
    def __init__(self, dal: PaymentDAL, guard: IdempotencyGuard, bus, gateway) -> None:
        self.dal = dal
        self.guard = guard
        self.bus = bus
        self.gateway = gateway

    def subscriptions(self) -> List[Subscription]:
        return [
            Subscription(Q_KITCHEN_ACCEPTED, RoutingKey.KITCHEN_ACCEPTED.value, KitchenAcceptedV1, self.on_kitchen_accepted),
            Subscription(Q_ORDER_CANCELLED, RoutingKey.ORDER_CANCELLED.value, OrderCancelledV1, self.on_order_cancelled),
        ]

    async def _charge(self, data: KitchenAcceptedV1) -> Payment:
        existing = await self.dal.get_by_order(data.order_id)
        if existing is not None:
            # Charged on an earlier delivery that crashed before marking
            return existing
        try:
            result = await self.gateway.charge(data.order_id, data.total)
        except ValidationError as e:
            result = ChargeResult(PaymentStatus.FAILED, e.message)
        return await self.dal.record_charge(data.order_id, data.total, result)

    async def on_kitchen_accepted(self, data: KitchenAcceptedV1, envelope: EventEnvelope) -> None:
        key = f"charge-{data.order_id}"
        if await self.guard.seen(Q_KITCHEN_ACCEPTED, key):
            log.info("kitchen.accepted already processed order_id=%s", data.order_id)
            return

        if await self.guard.seen(Q_ORDER_CANCELLED, refund_key(data.order_id)):
            # order.cancelled overtook kitchen.accepted; never charge a cancelled order
            log.warning("Order already cancelled, skipping charge order_id=%s", data.order_id)
            await self.guard.mark_seen(Q_KITCHEN_ACCEPTED, key)
            return

        payment = await self._charge(data)

        if payment.status is PaymentStatus.FAILED:
            await self.bus.emit(
                RoutingKey.PAYMENT_FAILED,
                PaymentFailedV1(order_id=data.order_id, reason=payment.failure_reason or "Payment declined"),
                trace_id=envelope.trace_id,
                event_id=f"payment-failed-{data.order_id}",
            )
            log.warning("Payment failed order_id=%s reason=%s", data.order_id, payment.failure_reason)
        elif payment.status is PaymentStatus.SUCCEEDED:
            await self.bus.emit(
                RoutingKey.PAYMENT_SUCCEEDED,
                PaymentSucceededV1(order_id=data.order_id, amount=payment.amount),
                trace_id=envelope.trace_id,
                event_id=f"payment-succeeded-{data.order_id}",
            )
            log.info("Payment succeeded order_id=%s amount=%s", data.order_id, payment.amount)
        else:
            log.info("Payment already %s order_id=%s", payment.status.value, data.order_id)

        await self.guard.mark_seen(Q_KITCHEN_ACCEPTED, key)

    async def on_order_cancelled(self, data: OrderCancelledV1, envelope: EventEnvelope) -> None:
        key = refund_key(data.order_id)
        if await self.guard.seen(Q_ORDER_CANCELLED, key):
            log.info("order.cancelled already processed order_id=%s", data.order_id)
            return

        payment = await self.dal.get_by_order(data.order_id)
        if payment is None:
            log.info("No payment found for cancelled order order_id=%s", data.order_id)
            await self.guard.mark_seen(Q_ORDER_CANCELLED, key)
            return

        refund_reason = REFUND_REASONS[data.reason]
        if payment.status is PaymentStatus.SUCCEEDED:
            refunded = await self.dal.mark_refunded(data.order_id, reason=refund_reason.value)
            if refunded is None:
                # Lost a race with a concurrent refund; reread
                refunded = await self.dal.get_by_order(data.order_id)
            payment = refunded or payment

        if payment.status is not PaymentStatus.REFUNDED:
            log.info("Payment not refundable order_id=%s status=%s", data.order_id, payment.status.value)
            await self.guard.mark_seen(Q_ORDER_CANCELLED, key)
            return

        await self.bus.emit(
            RoutingKey.PAYMENT_REFUND,
            PaymentRefundV1(
                payment_id=payment.id,
                order_id=data.order_id,
                amount=payment.amount,
                reason=refund_reason,
                initiated_at=payment.refunded_at or datetime.now(timezone.utc),
            ),
            trace_id=envelope.trace_id,
            event_id=f"refund-{payment.id}",
        )
        log.info("Refund initiated order_id=%s payment_id=%s amount=%s", data.order_id, payment.id, payment.amount)
        await self.guard.mark_seen(Q_ORDER_CANCELLED, key)
