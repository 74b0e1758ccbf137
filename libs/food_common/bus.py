# libs/food_common/bus.py
"""
Event bus client on top of a RabbitMQ topic exchange (aio-pika).

publish:  envelope -> JSON, persistent, fire-and-forget (no publisher confirms).
consume:  manual ack; decode -> validate `data` -> handler(data, envelope);
          success -> ack, any failure -> nack(requeue=False) -> broker dead-letters
          the message to `dlq.<service>`. No retry happens in the consume loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractRobustConnection,
)
from aio_pika.exceptions import AMQPError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .envelope import TRACE_HEADER, EventEnvelope, decode_envelope, encode_envelope, new_envelope, peek_trace_id
from .errors import PoisonMessage, TransientBrokerError
from .events import EXCHANGE, RoutingKey, dlq_name, producer_name
from .logging_conf import trace_id_var
from .resilience import CircuitBreaker, RetryPolicy, retry_with_backoff
from .schemas import EventData

log = logging.getLogger("food_common.bus")

Handler = Callable[[Any, EventEnvelope], Awaitable[None]]
RawHandler = Callable[[AbstractIncomingMessage], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """One durable queue bound to one routing key, with the handler that drains it."""
    queue: str
    routing_key: str
    schema: Type[BaseModel]
    handler: Handler


async def handle_envelope(envelope: EventEnvelope, schema: Type[BaseModel], handler: Handler) -> None:
    """Validate `envelope.data` against `schema` and run the handler under the envelope's trace id."""
    try:
        data = schema.model_validate(envelope.data)
    except PydanticValidationError as e:
        raise PoisonMessage(
            f"{envelope.event_type} data failed {schema.__name__} validation: "
            f"{e.errors(include_url=False)}"
        ) from e

    token = trace_id_var.set(envelope.trace_id)
    try:
        await handler(data, envelope)
    finally:
        trace_id_var.reset(token)


async def dispatch(
    body: bytes,
    headers: Optional[Mapping[str, Any]],
    schema: Type[BaseModel],
    handler: Handler,
) -> EventEnvelope:
    """Decode, validate and run a handler. Raises PoisonMessage for bad payloads."""
    envelope = decode_envelope(body, headers)
    await handle_envelope(envelope, schema, handler)
    return envelope


def build_message(envelope: EventEnvelope) -> Message:
    return Message(
        encode_envelope(envelope),
        content_type="application/json",
        delivery_mode=DeliveryMode.PERSISTENT,
        message_id=envelope.event_id,
        type=envelope.event_type,
        app_id=envelope.producer,
        headers={
            TRACE_HEADER: envelope.trace_id,
            "contentType": "application/json",
            "persistent": True,
        },
    )


class EventBus:
    """
    One broker connection and channel per service process.

    Every service queue is declared with broker-level dead-lettering into
    `dlq.<service>` through the default exchange.
    """

    def __init__(
        self,
        url: str,
        service: str,
        *,
        exchange: str = EXCHANGE,
        prefetch: int = 32,
        retry_policy: Optional[RetryPolicy] = None,
        connect_policy: Optional[RetryPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.url = url
        self.service = service
        self.producer = producer_name(service)
        self.exchange_name = exchange
        self.prefetch = prefetch
        self.retry_policy = retry_policy or RetryPolicy()
        self.connect_policy = connect_policy or RetryPolicy(max_retries=10, initial_delay=1.0, max_delay=15.0)
        self.breaker = breaker

        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None
        self._queues: Dict[str, AbstractQueue] = {}
        self._consumer_tags: List[str] = []

    @property
    def dlq(self) -> str:
        return dlq_name(self.service)

    async def connect(self) -> None:
        """Connect and declare the exchange and DLQ, retrying while the broker is unreachable."""
        if self._exchange:
            return
        await retry_with_backoff(
            self._connect_once,
            self.connect_policy,
            retry_on=(AMQPError, ConnectionError, OSError, asyncio.TimeoutError),
            label=f"connect rabbitmq service={self.service}",
        )

    async def _connect_once(self) -> None:
        log.info("Connecting to RabbitMQ service=%s exchange=%s", self.service, self.exchange_name)
        connection = await aio_pika.connect_robust(
            self.url,
            timeout=15,
            client_properties={"connection_name": self.producer},
        )
        try:
            # No publisher confirms: publish never waits on the broker
            channel = await connection.channel(publisher_confirms=False)
            await channel.set_qos(prefetch_count=self.prefetch)
            exchange = await channel.declare_exchange(
                self.exchange_name,
                ExchangeType.TOPIC,
                durable=True,
            )
            dlq = await channel.declare_queue(self.dlq, durable=True)
        except Exception:
            # Half-open: drop the connection so the next attempt starts clean
            await connection.close()
            raise
        self._connection = connection
        self._channel = channel
        self._exchange = exchange
        self._queues[self.dlq] = dlq
        log.info("RabbitMQ connection ready (dlq=%s)", self.dlq)

    def _require_channel(self) -> AbstractChannel:
        if self._channel is None:
            raise TransientBrokerError("RabbitMQ channel not initialized")
        return self._channel

    # ----------------- publish -----------------

    async def publish(self, routing_key: RoutingKey | str, envelope: EventEnvelope) -> None:
        rk = routing_key.value if isinstance(routing_key, RoutingKey) else routing_key
        message = build_message(envelope)

        async def _send() -> None:
            if self._exchange is None:
                raise TransientBrokerError("RabbitMQ exchange not declared")
            try:
                await self._exchange.publish(message, routing_key=rk)
            except (AMQPError, ConnectionError, asyncio.TimeoutError) as e:
                raise TransientBrokerError(f"publish {rk} failed: {e}") from e

        async def _guarded() -> None:
            if self.breaker is None:
                await _send()
            else:
                await self.breaker.call(_send)

        await retry_with_backoff(
            _guarded,
            self.retry_policy,
            retry_on=(TransientBrokerError,),
            label=f"publish {rk}",
        )
        log.info("published %s event_id=%s", rk, envelope.event_id)

    async def emit(
        self,
        routing_key: RoutingKey,
        data: EventData,
        *,
        trace_id: Optional[str],
        event_id: str,
        event_version: int = 1,
    ) -> EventEnvelope:
        """Wrap `data` in an envelope produced by this service and publish it."""
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

    # ----------------- consume -----------------

    async def declare_queue(self, name: str, routing_key: str) -> AbstractQueue:
        channel = self._require_channel()
        queue = await channel.declare_queue(
            name,
            durable=True,
            arguments={
                "x-dead-letter-exchange": "",
                "x-dead-letter-routing-key": self.dlq,
            },
        )
        await queue.bind(self._exchange, routing_key=routing_key)
        self._queues[name] = queue
        log.info("Bound queue '%s' to '%s' with '%s'", name, self.exchange_name, routing_key)
        return queue

    async def subscribe(self, sub: Subscription) -> None:
        queue = await self.declare_queue(sub.queue, sub.routing_key)

        async def _on_message(message: AbstractIncomingMessage) -> None:
            await self.handle_message(message, sub)

        self._consumer_tags.append(await queue.consume(_on_message, no_ack=False))
        log.info("Consuming '%s' (%s)", sub.queue, sub.schema.__name__)

    async def handle_message(self, message: AbstractIncomingMessage, sub: Subscription) -> None:
        """Process one delivery. Never raises: a failure is isolated to its own message."""
        envelope: Optional[EventEnvelope] = None
        try:
            envelope = decode_envelope(message.body, message.headers)
            await handle_envelope(envelope, sub.schema, sub.handler)
        except Exception as e:
            log.error(
                "handler failed, dead-lettering queue=%s routing_key=%s trace_id=%s error=%s payload=%s",
                sub.queue,
                message.routing_key,
                envelope.trace_id if envelope else peek_trace_id(message.body, message.headers),
                e,
                message.body.decode("utf-8", errors="replace"),
                exc_info=not isinstance(e, PoisonMessage),
            )
            await message.nack(requeue=False)
            return
        await message.ack()
        log.debug("acked %s event_id=%s", sub.queue, envelope.event_id)

    async def consume_raw(self, queue_name: str, callback: RawHandler) -> None:
        """Consume an already-declared queue with a callback that acks on its own."""
        queue = self._queues.get(queue_name)
        if queue is None:
            queue = await self._require_channel().declare_queue(queue_name, durable=True)
            self._queues[queue_name] = queue
        self._consumer_tags.append(await queue.consume(callback, no_ack=False))

    async def queue_depth(self, queue_name: str) -> int:
        queue = await self._require_channel().declare_queue(queue_name, passive=True)
        return int(queue.declaration_result.message_count or 0)

    async def close(self) -> None:
        try:
            if self._channel and not self._channel.is_closed:
                await self._channel.close()
        except Exception as e:
            log.warning("Error closing channel: %s", e)
        try:
            if self._connection and not self._connection.is_closed:
                await self._connection.close()
        except Exception as e:
            log.warning("Error closing connection: %s", e)
        self._connection = None
        self._channel = None
        self._exchange = None
        self._queues.clear()
        self._consumer_tags.clear()
        log.info("Event bus closed service=%s", self.service)


__all__ = ["Handler", "Subscription", "handle_envelope", "dispatch", "build_message", "EventBus"]
