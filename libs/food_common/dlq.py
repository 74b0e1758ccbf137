"""
Dead-letter handling for one service.

The broker routes nacked (requeue=False) messages into `dlq.<service>`. The relay
drains that queue: it logs each poison message with its original headers for
manual triage, then acks it. The monitor polls the queue depth and warns while
anything is waiting.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

from aio_pika.abc import AbstractIncomingMessage

from .events import dlq_name

log = logging.getLogger("food_common.dlq")


class DeadLetterSource(Protocol):
    async def consume_raw(self, queue_name: str, callback) -> None: ...

    async def queue_depth(self, queue_name: str) -> int: ...


def _original_route(headers: Dict[str, Any]) -> Dict[str, Any]:
    # RabbitMQ stamps x-death on dead-lettered messages: [{queue, reason, routing-keys, count, ...}]
    deaths = headers.get("x-death") or []
    if not deaths:
        return {}
    first = deaths[0] if isinstance(deaths, list) else {}
    return {
        "queue": first.get("queue"),
        "reason": first.get("reason"),
        "routing_keys": first.get("routing-keys"),
        "count": first.get("count"),
    }


class DeadLetterRelay:
    def __init__(self, bus: DeadLetterSource, service: str) -> None:
        self.bus = bus
        self.service = service
        self.queue = dlq_name(service)
        self.relayed = 0

    async def start(self) -> None:
        await self.bus.consume_raw(self.queue, self.handle)
        log.info("Set up DLQ consumer for %s", self.queue)

    async def handle(self, message: AbstractIncomingMessage) -> None:
        headers = dict(message.headers or {})
        log.error(
            "Message reached DLQ service=%s origin=%s headers=%s body=%s",
            self.service,
            _original_route(headers),
            headers,
            message.body.decode("utf-8", errors="replace"),
        )
        await message.ack()
        self.relayed += 1


class DeadLetterMonitor:
    def __init__(self, bus: DeadLetterSource, service: str, *, interval: float = 60.0) -> None:
        self.bus = bus
        self.service = service
        self.queue = dlq_name(service)
        self.interval = interval
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def check_once(self) -> Optional[int]:
        try:
            depth = await self.bus.queue_depth(self.queue)
        except Exception as e:
            log.error("Error checking DLQ depth queue=%s: %s", self.queue, e)
            return None
        if depth > 0:
            log.warning("DLQ %s has %d messages waiting for manual intervention", self.queue, depth)
        return depth

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.check_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None


__all__ = ["DeadLetterRelay", "DeadLetterMonitor"]
