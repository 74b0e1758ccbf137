"""
Which events become notifications, and how each one reads.

Every rule carries its own dedupe key so one consumer can never suppress
another's notification for the same order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Tuple, Type

from food_common.events import RoutingKey
from food_common.schemas import (
    DeliveryAssignedV1,
    DeliveryCancelledV1,
    EventData,
    KitchenAcceptedV1,
    KitchenRejectedV1,
    OrderCancelledV1,
    OrderCreatedV1,
    PaymentFailedV1,
    PaymentRefundV1,
    PaymentSucceededV1,
)

from ..models.notification import NotificationType


def _money(amount: float) -> str:
    return f"${amount:.2f}"


def _words(value: Any) -> str:
    return str(getattr(value, "value", value)).replace("_", " ")


def _order_cancelled(d: OrderCancelledV1) -> Tuple[str, str]:
    message = f"Reason: {_words(d.reason)}."
    if d.refund_amount:
        message += f" Amount refunded: {_money(d.refund_amount)}"
    return f"Order {d.order_id} has been cancelled", message


@dataclass(frozen=True)
class NotificationRule:
    routing_key: RoutingKey
    schema: Type[EventData]
    type: NotificationType
    dedupe_key: Callable[[Any], str]
    render: Callable[[Any], Tuple[str, str]]


RULES: List[NotificationRule] = [
    NotificationRule(
        RoutingKey.ORDER_CREATED,
        OrderCreatedV1,
        NotificationType.ORDER_CREATED,
        lambda d: f"order_created_{d.order_id}",
        lambda d: (f"Order {d.order_id} placed", f"Total: {_money(d.total)}"),
    ),
    NotificationRule(
        RoutingKey.ORDER_CANCELLED,
        OrderCancelledV1,
        NotificationType.ORDER_CANCELLED,
        lambda d: f"cancelled-{d.order_id}",
        _order_cancelled,
    ),
    NotificationRule(
        RoutingKey.KITCHEN_ACCEPTED,
        KitchenAcceptedV1,
        NotificationType.KITCHEN_ACCEPTED,
        lambda d: f"kitchen_accepted_{d.order_id}",
        lambda d: (f"Order {d.order_id} accepted", "The restaurant is preparing your order."),
    ),
    NotificationRule(
        RoutingKey.KITCHEN_REJECTED,
        KitchenRejectedV1,
        NotificationType.KITCHEN_REJECTED,
        lambda d: f"kitchen_rejected_{d.order_id}",
        lambda d: (f"Order {d.order_id} rejected by the restaurant", f"Reason: {d.reason}"),
    ),
    NotificationRule(
        RoutingKey.PAYMENT_SUCCEEDED,
        PaymentSucceededV1,
        NotificationType.PAYMENT_SUCCEEDED,
        lambda d: f"payment_succeeded_{d.order_id}",
        lambda d: (f"Payment received for Order {d.order_id}", f"{_money(d.amount)} charged."),
    ),
    NotificationRule(
        RoutingKey.PAYMENT_FAILED,
        PaymentFailedV1,
        NotificationType.PAYMENT_FAILED,
        lambda d: f"payment_failed_{d.order_id}",
        lambda d: (f"Payment failed for Order {d.order_id}", f"Reason: {d.reason}"),
    ),
    NotificationRule(
        RoutingKey.PAYMENT_REFUND,
        PaymentRefundV1,
        NotificationType.PAYMENT_REFUND,
        lambda d: f"refund-{d.payment_id}",
        lambda d: (
            f"Payment Refund for Order {d.order_id}",
            f"{_money(d.amount)} has been refunded to your original payment method. "
            f"Reason: {_words(d.reason)}",
        ),
    ),
    NotificationRule(
        RoutingKey.DELIVERY_ASSIGNED,
        DeliveryAssignedV1,
        NotificationType.DELIVERY_ASSIGNED,
        lambda d: f"delivery_assigned_{d.order_id}",
        lambda d: (f"Driver assigned for Order {d.order_id}", f"Driver {d.driver_id} is on the way."),
    ),
    NotificationRule(
        RoutingKey.DELIVERY_CANCELLED,
        DeliveryCancelledV1,
        NotificationType.DELIVERY_CANCELLED,
        lambda d: f"delivery-cancel-{d.order_id}",
        lambda d: (
            f"Delivery Cancelled for Order {d.order_id}",
            f"Your delivery has been cancelled. Reason: {_words(d.reason)}",
        ),
    ),
]
