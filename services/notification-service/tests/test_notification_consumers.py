from datetime import datetime, timezone

import orjson
import pytest
from httpx import ASGITransport, AsyncClient

from food_common.envelope import new_envelope
from food_common.events import RoutingKey
from food_common.schemas import (
    DeliveryCancelledV1,
    OrderCancelledV1,
    OrderCreatedV1,
    PaymentRefundV1,
)
from notification_service.dal.notification_dal import NotificationDAL
from notification_service.events.consumers import NotificationConsumers
from notification_service.events.rules import RULES
from notification_service.main import app
from notification_service.models.notification import NotificationType
from notification_service.notifier import Notifier
from notification_service.websocket_manager import WebSocketManager

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeSocket:
    def __init__(self, broken=False):
        self.sent = []
        self.broken = broken

    async def accept(self):
        return None

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(orjson.loads(text))


@pytest.fixture
async def dal(db):
    d = NotificationDAL(db)
    await d.ensure_indexes()
    return d


@pytest.fixture
def ws():
    return WebSocketManager()


@pytest.fixture
def consumers(dal, ws, guard):
    return NotificationConsumers(Notifier(dal, ws), guard)


def _handler(consumers, rk: RoutingKey):
    return next(s.handler for s in consumers.subscriptions() if s.routing_key == rk.value)


async def _deliver(consumers, rk, data):
    await _handler(consumers, rk)(data, new_envelope(rk.value, data, producer="x-service", trace_id="t-n"))


def test_rules_cover_user_facing_events():
    assert {r.routing_key for r in RULES} == set(RoutingKey) - {RoutingKey.KITCHEN_ORDER_CANCELLED}


def test_each_rule_has_its_own_queue(consumers):
    queues = [s.queue for s in consumers.subscriptions()]
    assert len(queues) == len(set(queues)) == 9
    assert "notification_service.order_cancelled" in queues


async def test_order_cancelled_notification(consumers, dal):
    data = OrderCancelledV1(order_id="o-1", reason="customer_requested", cancelled_at=NOW, refund_amount=50)
    await _deliver(consumers, RoutingKey.ORDER_CANCELLED, data)

    [n] = await dal.list_by_order("o-1")
    assert n.type is NotificationType.ORDER_CANCELLED
    assert n.title == "Order o-1 has been cancelled"
    assert n.message == "Reason: customer requested. Amount refunded: $50.00"
    assert n.event_key == "cancelled-o-1"
    assert n.trace_id == "t-n"


async def test_refund_notification_is_deduped_by_payment(consumers, dal):
    data = PaymentRefundV1(
        payment_id="pay-o-1", order_id="o-1", amount=50, reason="customer_cancellation", initiated_at=NOW
    )
    await _deliver(consumers, RoutingKey.PAYMENT_REFUND, data)
    await _deliver(consumers, RoutingKey.PAYMENT_REFUND, data)

    [n] = await dal.list_by_order("o-1")
    assert n.event_key == "refund-pay-o-1"
    assert n.message.startswith("$50.00 has been refunded")


async def test_dedupe_keys_do_not_collide_across_event_types(consumers, dal):
    await _deliver(consumers, RoutingKey.ORDER_CANCELLED, OrderCancelledV1(order_id="o-1", reason="kitchen_rejected", cancelled_at=NOW))
    await _deliver(
        consumers,
        RoutingKey.DELIVERY_CANCELLED,
        DeliveryCancelledV1(order_id="o-1", driver_id="driver-a", reason="kitchen_rejected", cancelled_at=NOW),
    )
    types = {n.type for n in await dal.list_by_order("o-1")}
    assert types == {NotificationType.ORDER_CANCELLED, NotificationType.DELIVERY_CANCELLED}


async def test_notifications_are_pushed_to_websockets(consumers, ws):
    good, broken = FakeSocket(), FakeSocket(broken=True)
    await ws.connect(good)
    await ws.connect(broken)

    data = OrderCreatedV1(order_id="o-2", restaurant_id="r-1", items=[], total=12.5)
    await _deliver(consumers, RoutingKey.ORDER_CREATED, data)

    [pushed] = good.sent
    assert pushed["type"] == "ORDER_CREATED"
    assert pushed["orderId"] == "o-2"
    assert pushed["message"] == "Total: $12.50"
    assert len(ws) == 1


async def test_list_notifications_route(consumers, dal):
    data = OrderCreatedV1(order_id="o-3", restaurant_id="r-1", items=[], total=10)
    await _deliver(consumers, RoutingKey.ORDER_CREATED, data)
    app.state.notification_dal = dal
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        res = await ac.get("/notifications", params={"orderId": "o-3"})
        bad = await ac.get("/notifications")
    assert res.status_code == 200
    assert [n["type"] for n in res.json()] == ["ORDER_CREATED"]
    assert bad.status_code == 422
