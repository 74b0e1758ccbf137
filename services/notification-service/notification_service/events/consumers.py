from __future__ import annotations

import logging
from typing import List

from food_common.bus import Handler, Subscription
from food_common.envelope import EventEnvelope
from food_common.events import Service, queue_name
from food_common.idempotency import IdempotencyGuard

from ..notifier import Notifier
from .rules import RULES, NotificationRule

log = logging.getLogger("notification.events")


class NotificationConsumers:
    def __init__(self, notifier: Notifier, guard: IdempotencyGuard, rules: List[NotificationRule] = RULES) -> None:
        self.notifier = notifier
        self.guard = guard
        self.rules = rules

    def subscriptions(self) -> List[Subscription]:
        subs = []
        for rule in self.rules:
            queue = queue_name(Service.NOTIFICATION, rule.routing_key)
            subs.append(Subscription(queue, rule.routing_key.value, rule.schema, self._handler(queue, rule)))
        return subs

    def _handler(self, queue: str, rule: NotificationRule) -> Handler:
        async def handle(data, envelope: EventEnvelope) -> None:
            await self.notify(queue, rule, data, envelope)

        return handle

    async def notify(self, queue: str, rule: NotificationRule, data, envelope: EventEnvelope) -> None:
        key = rule.dedupe_key(data)
        if await self.guard.seen(queue, key):
            log.info("%s notification already sent key=%s", rule.routing_key.value, key)
            return

        title, message = rule.render(data)
        await self.notifier.send(
            rule.type,
            event_key=key,
            order_id=data.order_id,
            title=title,
            message=message,
            data=data.to_wire(),
            trace_id=envelope.trace_id,
        )
        await self.guard.mark_seen(queue, key)
