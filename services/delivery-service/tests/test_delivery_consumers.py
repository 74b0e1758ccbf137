from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from food_common.envelope import new_envelope
from food_common.events import RoutingKey
from food_common.schemas import KitchenOrderCancelledV1, OrderCancelledV1, PaymentSucceededV1
from delivery_service.assign import assign_driver
from delivery_service.dal.delivery_dal import DeliveryDAL
from delivery_service.events.consumers import Q_ORDER_CANCELLED_DIRECT, DeliveryConsumers
from delivery_service.main import app
from delivery_service.models.delivery import CancelPath, DeliveryStatus

POOL = ["driver-a", "driver-b", "driver-c"]
CANCELLED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _env(data, rk, producer="payment-service"):
    return new_envelope(rk.value, data, producer=producer, trace_id="t-d")


@pytest.fixture
async def dal(db):
    d = DeliveryDAL(db)
    await d.ensure_indexes()
    return d


@pytest.fixture
def consumers(dal, guard, bus):
    return DeliveryConsumers(dal, guard, bus, POOL)


async def _assign(consumers, order_id="o-1"):
    data = PaymentSucceededV1(order_id=order_id, amount=50)
    await consumers.on_payment_succeeded(data, _env(data, RoutingKey.PAYMENT_SUCCEEDED))


async def _kitchen_cancel(consumers, order_id="o-1"):
    data = KitchenOrderCancelledV1(order_id=order_id, reason="customer_requested", cancelled_at=CANCELLED_AT)
    await consumers.on_kitchen_order_cancelled(data, _env(data, RoutingKey.KITCHEN_ORDER_CANCELLED, "kitchen-service"))


async def _direct_cancel(consumers, order_id="o-1"):
    data = OrderCancelledV1(order_id=order_id, reason="customer_requested", cancelled_at=CANCELLED_AT)
    await consumers.on_order_cancelled(data, _env(data, RoutingKey.ORDER_CANCELLED, "order-service"))


def test_assign_driver_is_stable():
    assert assign_driver("o-1", POOL) == assign_driver("o-1", POOL)
    assert assign_driver("o-1", POOL) in POOL
    with pytest.raises(ValueError):
        assign_driver("o-1", [])


async def test_payment_succeeded_assigns_driver(consumers, dal, bus):
    await _assign(consumers)
    delivery = await dal.get_by_order("o-1")
    assert delivery.status is DeliveryStatus.ASSIGNED
    assert delivery.driver_id == assign_driver("o-1", POOL)
    [env] = bus.events(RoutingKey.DELIVERY_ASSIGNED)
    assert env.data == {"orderId": "o-1", "driverId": delivery.driver_id}


async def test_redelivered_payment_succeeded_assigns_once(consumers, bus):
    await _assign(consumers)
    await _assign(consumers)
    assert len(bus.events(RoutingKey.DELIVERY_ASSIGNED)) == 1


async def test_kitchen_path_releases_driver(consumers, dal, bus):
    await _assign(consumers)
    await _kitchen_cancel(consumers)

    delivery = await dal.get_by_order("o-1")
    assert delivery.status is DeliveryStatus.CANCELLED
    assert delivery.released_driver_id == delivery.driver_id
    assert delivery.cancelled_via is CancelPath.KITCHEN
    [env] = bus.events(RoutingKey.DELIVERY_CANCELLED)
    assert env.event_id == "delivery-cancelled-o-1"
    assert env.data["driverId"] == delivery.driver_id
    assert env.data["reason"] == "customer_requested"


@pytest.mark.parametrize("first, second", [(_kitchen_cancel, _direct_cancel), (_direct_cancel, _kitchen_cancel)])
async def test_both_paths_produce_one_delivery_cancelled(consumers, dal, bus, first, second):
    await _assign(consumers)
    await first(consumers)
    await second(consumers)
    assert len(bus.events(RoutingKey.DELIVERY_CANCELLED)) == 1
    assert (await dal.get_by_order("o-1")).status is DeliveryStatus.CANCELLED


async def test_redelivered_direct_cancel_is_ignored(consumers, bus):
    await _assign(consumers)
    await _direct_cancel(consumers)
    await _direct_cancel(consumers)
    assert len(bus.events(RoutingKey.DELIVERY_CANCELLED)) == 1


async def test_cancel_without_delivery_publishes_nothing(consumers, guard, bus):
    await _direct_cancel(consumers, order_id="o-unassigned")
    await _kitchen_cancel(consumers, order_id="o-unassigned")
    assert bus.published == []
    assert await guard.seen(Q_ORDER_CANCELLED_DIRECT, "delivery-direct-cancel-o-unassigned")


async def test_path_that_crashed_after_release_republishes(consumers, dal, bus):
    await _assign(consumers)
    # Released but the process died before publishing or marking
    await dal.release("o-1", reason="customer_requested", cancelled_at=CANCELLED_AT, via=CancelPath.KITCHEN)
    await _kitchen_cancel(consumers)
    assert len(bus.events(RoutingKey.DELIVERY_CANCELLED)) == 1


async def test_get_delivery_route(consumers, dal):
    await _assign(consumers)
    app.state.delivery_dal = dal
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        found = await ac.get("/deliveries/o-1")
        missing = await ac.get("/deliveries/o-2")
    assert found.json()["status"] == "ASSIGNED"
    assert missing.status_code == 404


@pytest.mark.parametrize("cancel", [_kitchen_cancel, _direct_cancel])
async def test_cancel_before_payment_succeeded_assigns_no_driver(consumers, dal, bus, cancel):
    await cancel(consumers)
    await _assign(consumers)

    assert await dal.get_by_order("o-1") is None
    assert bus.events(RoutingKey.DELIVERY_ASSIGNED) == []
