from __future__ import annotations

import logging
from typing import Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .bus import EventBus, Subscription
from .dlq import DeadLetterMonitor, DeadLetterRelay
from .idempotency import IdempotencyGuard
from .settings import ServiceSettings

log = logging.getLogger("food_common.runtime")


class ServiceRuntime:
    """
    Process-level wiring for one service: Mongo client, event bus, idempotency
    guard and the dead-letter relay/monitor. Consumers get these handed in.
    """

    def __init__(self, settings: ServiceSettings) -> None:
        self.settings = settings
        self.mongo_client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None
        self.bus: Optional[EventBus] = None
        self.guard: Optional[IdempotencyGuard] = None
        self.dlq_relay: Optional[DeadLetterRelay] = None
        self.dlq_monitor: Optional[DeadLetterMonitor] = None

    async def start(self) -> "ServiceRuntime":
        s = self.settings
        log.info("startup begin service=%s mongo_db=%s", s.SERVICE_NAME, s.MONGO_DB)

        self.mongo_client = AsyncIOMotorClient(s.MONGO_URI)
        self.db = self.mongo_client[s.MONGO_DB]
        self.guard = IdempotencyGuard(self.db[s.PROCESSED_EVENTS_COLLECTION])
        await self.guard.ensure_indexes()

        self.bus = EventBus(
            s.RABBITMQ_URL,
            s.SERVICE_NAME,
            exchange=s.RABBITMQ_EXCHANGE,
            prefetch=s.RABBITMQ_PREFETCH,
            retry_policy=s.retry_policy(),
            connect_policy=s.connect_policy(),
            breaker=s.circuit_breaker("rabbitmq"),
        )
        await self.bus.connect()

        self.dlq_relay = DeadLetterRelay(self.bus, s.SERVICE_NAME)
        await self.dlq_relay.start()
        self.dlq_monitor = DeadLetterMonitor(self.bus, s.SERVICE_NAME, interval=s.DLQ_MONITOR_INTERVAL_SECONDS)
        self.dlq_monitor.start()
        return self

    async def subscribe(self, subscriptions: Iterable[Subscription]) -> None:
        assert self.bus is not None
        for sub in subscriptions:
            await self.bus.subscribe(sub)

    async def stop(self) -> None:
        if self.dlq_monitor:
            await self.dlq_monitor.stop()
        if self.bus:
            await self.bus.close()
        if self.mongo_client:
            self.mongo_client.close()
            self.mongo_client = None
        log.info("shutdown complete service=%s", self.settings.SERVICE_NAME)
