from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from food_common.errors import ValidationError
from food_common.resilience import CircuitBreaker, RetryPolicy, retry_with_backoff, with_timeout

from .models.payment import PaymentStatus

log = logging.getLogger("payment.gateway")


@dataclass(frozen=True)
class ChargeResult:
    status: PaymentStatus
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is PaymentStatus.SUCCEEDED


class PaymentGateway(Protocol):
    async def charge(self, order_id: str, amount: float) -> ChargeResult: ...


class SimulatedPaymentGateway:
    """Deterministic in-process gateway: declines bad or oversized amounts."""

    def __init__(self, max_amount: float = 10_000.0) -> None:
        self.max_amount = max_amount

    async def charge(self, order_id: str, amount: float) -> ChargeResult:
        if amount <= 0:
            return ChargeResult(PaymentStatus.FAILED, "Invalid amount")
        if amount > self.max_amount:
            return ChargeResult(PaymentStatus.FAILED, "Amount exceeds limit")
        return ChargeResult(PaymentStatus.SUCCEEDED)


class HttpPaymentGateway:
    """
    Remote PSP over HTTP. A 2xx body of {"status": "SUCCEEDED"|"FAILED", "reason"?}
    is a decision; 4xx is a terminal ValidationError; 5xx/network errors raise
    and count against the circuit breaker.
    """

    def __init__(self, charge_url: str, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.charge_url = charge_url
        self._client = client

    async def charge(self, order_id: str, amount: float) -> ChargeResult:
        payload = {"orderId": order_id, "amount": amount}
        if self._client is not None:
            resp = await self._client.post(self.charge_url, json=payload)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.charge_url, json=payload)

        if 400 <= resp.status_code < 500:
            raise ValidationError(f"gateway rejected charge order_id={order_id}: {resp.status_code} {resp.text}")
        resp.raise_for_status()
        data = resp.json()
        status = PaymentStatus.SUCCEEDED if data.get("status") == PaymentStatus.SUCCEEDED.value else PaymentStatus.FAILED
        log.info("gateway charged order_id=%s amount=%s status=%s", order_id, amount, status.value)
        return ChargeResult(status, data.get("reason"))


class GuardedGateway:
    """Breaker outside, timeout inside, the whole attempt retried with backoff."""

    def __init__(
        self,
        gateway: PaymentGateway,
        *,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        timeout: float,
    ) -> None:
        self.gateway = gateway
        self.breaker = breaker
        self.retry_policy = retry_policy
        self.timeout = timeout

    async def _charge_once(self, order_id: str, amount: float) -> ChargeResult:
        return await with_timeout(
            self.gateway.charge(order_id, amount),
            self.timeout,
            label=f"payment gateway charge order_id={order_id}",
        )

    async def charge(self, order_id: str, amount: float) -> ChargeResult:
        return await retry_with_backoff(
            lambda: self.breaker.call(self._charge_once, order_id, amount),
            self.retry_policy,
            label=f"charge order_id={order_id}",
        )


def build_gateway(settings) -> GuardedGateway:
    url = settings.gateway_charge_url
    inner: PaymentGateway = HttpPaymentGateway(url) if url else SimulatedPaymentGateway(settings.MAX_AMOUNT)
    return GuardedGateway(
        inner,
        breaker=settings.circuit_breaker("payment-gateway"),
        retry_policy=settings.retry_policy(),
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
