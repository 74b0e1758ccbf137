import orjson
import pytest

from food_common.envelope import (
    PLACEHOLDER_TRACE_PREFIX,
    decode_envelope,
    encode_envelope,
    new_envelope,
    peek_trace_id,
)
from food_common.errors import PoisonMessage
from food_common.schemas import OrderCancelledV1


def _raw(**overrides):
    raw = {
        "eventId": "cancel-o1",
        "eventType": "order.cancelled",
        "eventVersion": 1,
        "occurredAt": "2024-01-01T00:00:00Z",
        "producer": "order-service",
        "traceId": "t-1",
        "data": {"orderId": "o1", "reason": "customer_requested", "cancelledAt": "2024-01-01T00:00:00Z"},
    }
    raw.update(overrides)
    return raw


def test_encode_uses_camel_case_wire_names():
    env = new_envelope(
        "order.cancelled",
        OrderCancelledV1(order_id="o1", reason="customer_requested", cancelled_at="2024-01-01T00:00:00Z", refund_amount=50),
        producer="order-service",
        trace_id="t-1",
        event_id="cancel-o1",
    )
    wire = orjson.loads(encode_envelope(env))
    assert set(wire) == {"eventId", "eventType", "eventVersion", "occurredAt", "producer", "traceId", "data"}
    assert wire["data"]["orderId"] == "o1"
    assert wire["data"]["refundAmount"] == 50
    assert wire["eventVersion"] == 1


def test_optional_fields_are_omitted_on_the_wire():
    env = new_envelope(
        "order.cancelled",
        OrderCancelledV1(order_id="o1", reason="customer_requested", cancelled_at="2024-01-01T00:00:00Z"),
        producer="order-service",
    )
    assert "refundAmount" not in orjson.loads(encode_envelope(env))["data"]


def test_new_envelope_mints_ids_when_missing():
    env = new_envelope("order.created", {"orderId": "o1"}, producer="order-service")
    assert env.event_id
    assert env.trace_id
    assert env.occurred_at.tzinfo is not None


def test_decode_keeps_body_trace_id():
    env = decode_envelope(orjson.dumps(_raw()), {"traceId": "from-header"})
    assert env.trace_id == "t-1"
    assert env.event_id == "cancel-o1"


def test_decode_falls_back_to_header_trace_id():
    raw = _raw()
    del raw["traceId"]
    env = decode_envelope(orjson.dumps(raw), {"traceId": b"from-header"})
    assert env.trace_id == "from-header"


def test_decode_generates_placeholder_trace_id():
    env = decode_envelope(orjson.dumps(_raw(traceId="")), None)
    assert env.trace_id.startswith(PLACEHOLDER_TRACE_PREFIX)


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2, 3]",
        orjson.dumps(_raw(eventVersion=0)),
        orjson.dumps({k: v for k, v in _raw().items() if k != "eventId"}),
    ],
)
def test_decode_rejects_malformed_bodies(body):
    with pytest.raises(PoisonMessage):
        decode_envelope(body)


def test_peek_trace_id_prefers_body_then_header():
    assert peek_trace_id(orjson.dumps({"traceId": "t-body"}), {"traceId": "t-header"}) == "t-body"
    assert peek_trace_id(b"{broken", {"traceId": "t-header"}) == "t-header"
    assert peek_trace_id(b"[1, 2]") is None
