# libs/food_common/events.py
from __future__ import annotations
from enum import Enum

# Canonical topic exchange shared by every food service
EXCHANGE = "events"

class Service(str, Enum):
    ORDER = "order"
    KITCHEN = "kitchen"
    PAYMENT = "payment"
    DELIVERY = "delivery"
    NOTIFICATION = "notification"
    GATEWAY = "gateway"

class RoutingKey(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_CANCELLED = "order.cancelled"
    KITCHEN_ACCEPTED = "kitchen.accepted"
    KITCHEN_REJECTED = "kitchen.rejected"
    KITCHEN_ORDER_CANCELLED = "kitchen.order.cancelled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUND = "payment.refund"
    DELIVERY_ASSIGNED = "delivery.assigned"
    DELIVERY_CANCELLED = "delivery.cancelled"


def _value(v: Service | RoutingKey | str) -> str:
    return v.value if isinstance(v, Enum) else str(v)


def producer_name(service: Service | str) -> str:
    """ "order" -> "order-service" """
    return f"{_value(service)}-service"


def queue_name(service: Service | str, routing_key: RoutingKey | str, suffix: str | None = None) -> str:
    """
    Build the durable queue a service owns for one binding:
        <service>_service.<event_name>[_<suffix>]

    Examples:
        queue_name("kitchen", "order.cancelled") -> "kitchen_service.order_cancelled"
        queue_name("delivery", "order.cancelled", "direct") -> "delivery_service.order_cancelled_direct"
    """
    event_name = _value(routing_key).replace(".", "_")
    if suffix:
        event_name = f"{event_name}_{suffix}"
    return f"{_value(service)}_service.{event_name}"


def dlq_name(service: Service | str) -> str:
    return f"dlq.{_value(service)}"
