"""
Shared fixtures: an in-process Mongo (mongomock-motor), a recording event bus,
and a tiny in-memory broker that delivers published envelopes through the real
`dispatch` path (wire encode -> decode -> schema validation -> handler).
"""
from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import pytest
from mongomock_motor import AsyncMongoMockClient

from food_common.bus import Subscription, build_message, dispatch
from food_common.envelope import EventEnvelope, new_envelope
from food_common.events import RoutingKey, producer_name
from food_common.idempotency import IdempotencyGuard
from food_common.schemas import EventData


class RecordingBus:
    """Stands in for EventBus.emit/publish; keeps every envelope it was handed."""

    def __init__(self, service: str = "test", broker: Optional["InMemoryBroker"] = None) -> None:
        self.service = service
        self.producer = producer_name(service)
        self.broker = broker
        self.published: List[Tuple[str, EventEnvelope]] = []

    async def publish(self, routing_key, envelope: EventEnvelope) -> None:
        rk = routing_key.value if isinstance(routing_key, RoutingKey) else routing_key
        self.published.append((rk, envelope))
        if self.broker is not None:
            self.broker.enqueue(rk, envelope)

    async def emit(
        self,
        routing_key: RoutingKey,
        data: EventData,
        *,
        trace_id: Optional[str],
        event_id: str,
        event_version: int = 1,
    ) -> EventEnvelope:
        envelope = new_envelope(
            routing_key.value,
            data,
            producer=self.producer,
            trace_id=trace_id,
            event_id=event_id,
            event_version=event_version,
        )
        await self.publish(routing_key, envelope)
        return envelope

    def events(self, routing_key: RoutingKey) -> List[EventEnvelope]:
        return [env for rk, env in self.published if rk == routing_key.value]


class InMemoryBroker:
    """Exact-match routing key fan-out to every subscribed queue, drained on demand."""

    def __init__(self) -> None:
        self.subscriptions: List[Subscription] = []
        self.pending: Deque[Tuple[str, EventEnvelope]] = deque()
        self.delivered: Dict[str, int] = {}

    def bus(self, service: str) -> RecordingBus:
        return RecordingBus(service, broker=self)

    def subscribe(self, subs) -> None:
        self.subscriptions.extend(subs)

    def enqueue(self, routing_key: str, envelope: EventEnvelope) -> None:
        self.pending.append((routing_key, envelope))

    async def drain(self, *, redeliver: bool = False) -> int:
        """Deliver until quiet. With `redeliver`, every message reaches each queue twice."""
        count = 0
        while self.pending:
            rk, envelope = self.pending.popleft()
            message = build_message(envelope)
            for sub in self.subscriptions:
                if sub.routing_key != rk:
                    continue
                for _ in range(2 if redeliver else 1):
                    await dispatch(message.body, message.headers, sub.schema, sub.handler)
                    self.delivered[sub.queue] = self.delivered.get(sub.queue, 0) + 1
                    count += 1
        return count


class FakeIncomingMessage:
    """Enough of aio_pika's IncomingMessage for ack/nack bookkeeping."""

    def __init__(self, body: bytes, headers: Optional[Dict[str, Any]] = None, routing_key: str = "") -> None:
        self.body = body
        self.headers = headers or {}
        self.routing_key = routing_key
        self.acked = False
        self.nacked = False
        self.requeue: Optional[bool] = None

    async def ack(self) -> None:
        self.acked = True

    async def nack(self, requeue: bool = True) -> None:
        self.nacked = True
        self.requeue = requeue


@pytest.fixture
def db():
    return AsyncMongoMockClient()["food_test"]


@pytest.fixture
async def guard(db):
    g = IdempotencyGuard(db["processedEvents"])
    await g.ensure_indexes()
    return g


@pytest.fixture
def bus():
    return RecordingBus("test")


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def make_message():
    def _make(body: bytes, headers: Optional[Dict[str, Any]] = None, routing_key: str = "") -> FakeIncomingMessage:
        return FakeIncomingMessage(body, headers, routing_key)

    return _make
