"""
All five services wired through one in-memory broker: the forward flow runs
to driver assignment, then a cancellation fans out to every compensation.
"""
import pytest

from food_common.events import RoutingKey
from food_common.resilience import CircuitBreaker, RetryPolicy
from food_common.schemas import OrderCreatedV1
from delivery_service.dal.delivery_dal import DeliveryDAL
from delivery_service.events.consumers import DeliveryConsumers
from delivery_service.models.delivery import DeliveryStatus
from kitchen_service.dal.kitchen_order_dal import KitchenOrderDAL
from kitchen_service.events.consumers import KitchenConsumers
from kitchen_service.models.kitchen_order import KitchenOrderStatus
from notification_service.dal.notification_dal import NotificationDAL
from notification_service.events.consumers import NotificationConsumers
from notification_service.models.notification import NotificationType
from notification_service.notifier import Notifier
from notification_service.websocket_manager import WebSocketManager
from order_service.dal.order_dal import OrderDAL
from order_service.events.consumers import OrderConsumers
from order_service.models.order import OrderCreate, OrderStatus
from order_service.services.cancellation import OrderCancellation
from payment_service.dal.payment_dal import PaymentDAL
from payment_service.events.consumers import PaymentConsumers
from payment_service.gateway import GuardedGateway, SimulatedPaymentGateway
from payment_service.models.payment import PaymentStatus


class Saga:
    def __init__(self, db, guard, broker):
        self.broker = broker
        self.buses = {name: broker.bus(name) for name in ("order", "kitchen", "payment", "delivery")}

        self.orders = OrderDAL(db)
        self.cancellation = OrderCancellation(self.orders, self.buses["order"])
        self.kitchen = KitchenOrderDAL(db)
        self.payments = PaymentDAL(db)
        self.deliveries = DeliveryDAL(db)
        self.notifications = NotificationDAL(db)

        gateway = GuardedGateway(
            SimulatedPaymentGateway(max_amount=100),
            breaker=CircuitBreaker("psp"),
            retry_policy=RetryPolicy(max_retries=0),
            timeout=1,
        )
        broker.subscribe(OrderConsumers(self.orders, guard, self.cancellation).subscriptions())
        broker.subscribe(KitchenConsumers(self.kitchen, guard, self.buses["kitchen"]).subscriptions())
        broker.subscribe(PaymentConsumers(self.payments, guard, self.buses["payment"], gateway).subscriptions())
        broker.subscribe(DeliveryConsumers(self.deliveries, guard, self.buses["delivery"], ["driver-a"]).subscriptions())
        broker.subscribe(NotificationConsumers(Notifier(self.notifications, WebSocketManager()), guard).subscriptions())

    async def place(self, order_id: str, total: float, items=None):
        items = [{"menuItemId": "m-1", "qty": 1}] if items is None else items
        order = await self.orders.create(OrderCreate(restaurant_id="r-1", items=items, total=total), order_id=order_id)
        await self.buses["order"].emit(
            RoutingKey.ORDER_CREATED,
            OrderCreatedV1(order_id=order.id, restaurant_id=order.restaurant_id, items=order.items, total=order.total),
            trace_id="t-saga",
            event_id=f"created-{order.id}",
        )
        return order

    def events(self, rk: RoutingKey):
        return [env for bus in self.buses.values() for env in bus.events(rk)]


@pytest.fixture
def saga(db, guard, broker):
    return Saga(db, guard, broker)


async def test_forward_flow_reaches_delivery_assigned(saga):
    await saga.place("o-1", 50)
    await saga.broker.drain()

    assert (await saga.orders.get("o-1")).status is OrderStatus.DELIVERY_ASSIGNED
    assert (await saga.payments.get_by_order("o-1")).status is PaymentStatus.SUCCEEDED
    assert (await saga.deliveries.get_by_order("o-1")).driver_id == "driver-a"
    types = [n.type for n in await saga.notifications.list_by_order("o-1")]
    assert set(types) == {
        NotificationType.ORDER_CREATED,
        NotificationType.KITCHEN_ACCEPTED,
        NotificationType.PAYMENT_SUCCEEDED,
        NotificationType.DELIVERY_ASSIGNED,
    }


@pytest.mark.parametrize("redeliver", [False, True])
async def test_cancellation_fans_out_exactly_once(saga, redeliver):
    await saga.place("o-1", 50)
    await saga.broker.drain()

    result = await saga.cancellation.cancel("o-1", "customer_requested", trace_id="t-cancel")
    assert result.message == "Order cancellation initiated"
    await saga.broker.drain(redeliver=redeliver)

    [kitchen_cancelled] = saga.events(RoutingKey.KITCHEN_ORDER_CANCELLED)
    [refund] = saga.events(RoutingKey.PAYMENT_REFUND)
    [delivery_cancelled] = saga.events(RoutingKey.DELIVERY_CANCELLED)

    assert refund.data["amount"] == 50
    assert refund.data["reason"] == "customer_cancellation"
    assert delivery_cancelled.data["driverId"] == "driver-a"
    # One trace across the whole compensation
    assert {kitchen_cancelled.trace_id, refund.trace_id, delivery_cancelled.trace_id} == {"t-cancel"}

    assert (await saga.orders.get("o-1")).status is OrderStatus.CANCELLED
    assert (await saga.kitchen.get_by_order("o-1")).status is KitchenOrderStatus.CANCELLED
    assert (await saga.payments.get_by_order("o-1")).status is PaymentStatus.REFUNDED
    assert (await saga.deliveries.get_by_order("o-1")).status is DeliveryStatus.CANCELLED

    notes = [n.type for n in await saga.notifications.list_by_order("o-1")]
    assert notes.count(NotificationType.ORDER_CANCELLED) == 1
    assert notes.count(NotificationType.PAYMENT_REFUND) == 1
    assert notes.count(NotificationType.DELIVERY_CANCELLED) == 1


async def test_second_cancel_publishes_nothing_new(saga):
    await saga.place("o-1", 50)
    await saga.broker.drain()
    await saga.cancellation.cancel("o-1", "customer_requested")
    await saga.broker.drain()

    again = await saga.cancellation.cancel("o-1", "customer_requested")
    assert again.message == "Order already cancelled"
    assert not saga.broker.pending
    assert len(saga.events(RoutingKey.ORDER_CANCELLED)) == 1


async def test_cancel_before_anything_downstream_only_notifies(saga):
    await saga.orders.create(OrderCreate(restaurant_id="r-1", items=[], total=30), order_id="o-quiet")
    await saga.cancellation.cancel("o-quiet", "customer_requested")
    await saga.broker.drain()

    assert saga.events(RoutingKey.KITCHEN_ORDER_CANCELLED) == []
    assert saga.events(RoutingKey.PAYMENT_REFUND) == []
    assert saga.events(RoutingKey.DELIVERY_CANCELLED) == []
    [note] = await saga.notifications.list_by_order("o-quiet")
    assert note.type is NotificationType.ORDER_CANCELLED


async def test_kitchen_rejection_cancels_order_without_refund(saga):
    await saga.place("o-empty", 20, items=[])
    await saga.broker.drain()

    order = await saga.orders.get("o-empty")
    assert order.status is OrderStatus.CANCELLED
    assert order.cancel_reason == "kitchen_rejected"
    assert saga.events(RoutingKey.PAYMENT_REFUND) == []
    [kc] = saga.events(RoutingKey.KITCHEN_ORDER_CANCELLED)
    assert kc.data["reason"] == "kitchen_rejected"


async def test_declined_payment_cancels_order(saga):
    await saga.place("o-big", 500)
    await saga.broker.drain()

    order = await saga.orders.get("o-big")
    assert order.status is OrderStatus.CANCELLED
    assert order.cancel_reason == "payment_failed"
    assert saga.events(RoutingKey.PAYMENT_REFUND) == []
    assert saga.events(RoutingKey.DELIVERY_CANCELLED) == []


async def test_cancel_racing_the_forward_flow_charges_nothing(saga):
    await saga.place("o-race", 50)
    # Cancelled while order.created is still queued; both drain together
    await saga.cancellation.cancel("o-race", "customer_requested")
    await saga.broker.drain()

    assert await saga.payments.get_by_order("o-race") is None
    assert await saga.deliveries.get_by_order("o-race") is None
    assert saga.events(RoutingKey.PAYMENT_SUCCEEDED) == []
    assert saga.events(RoutingKey.DELIVERY_ASSIGNED) == []
    assert (await saga.orders.get("o-race")).status is OrderStatus.CANCELLED
