"""
Call-guarding primitives for remote or brittle operations:

- CircuitBreaker: CLOSED -> OPEN -> HALF_OPEN -> CLOSED, process-local, never persisted
- retry_with_backoff: bounded attempts, exponential delay with jitter, non-blocking sleep
- with_timeout: race an operation against a deadline without cancelling it
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from .errors import (
    DownstreamUnavailable,
    NotFoundError,
    OperationTimeout,
    PoisonMessage,
    ValidationError,
)

log = logging.getLogger("food_common.resilience")

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    One instance per guarded dependency, created at process start.

    OPEN -> HALF_OPEN happens lazily when `state` is read after `timeout` seconds,
    not on a timer. Errors listed in `ignore` pass through without counting.
    """

    def __init__(
        self,
        name: str = "dependency",
        *,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        half_open_max_calls: Optional[int] = None,
        ignore: Tuple[Type[BaseException], ...] = (ValidationError, NotFoundError),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls or success_threshold
        self.ignore = ignore
        self._clock = clock

        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self._trials_in_flight = 0

    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self.last_failure_time is not None
            and self._clock() - self.last_failure_time > self.timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self.success_count = 0
            self._trials_in_flight = 0
            log.info("circuit %s OPEN -> HALF_OPEN", self.name)
        return self._state

    def retry_after(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return max(0.0, self.timeout - (self._clock() - self.last_failure_time))

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        state = self.state
        if state is CircuitState.OPEN:
            raise DownstreamUnavailable(self.name, retry_after=self.retry_after())
        if state is CircuitState.HALF_OPEN:
            if self._trials_in_flight >= self.half_open_max_calls:
                raise DownstreamUnavailable(self.name, retry_after=0.0)
            self._trials_in_flight += 1

        try:
            result = await fn(*args, **kwargs)
        except self.ignore:
            raise
        except Exception:
            self._on_failure(state)
            raise
        else:
            self._on_success(state)
            return result
        finally:
            if state is CircuitState.HALF_OPEN:
                self._trials_in_flight = max(0, self._trials_in_flight - 1)

    def _on_success(self, state: CircuitState) -> None:
        if state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                log.info("circuit %s HALF_OPEN -> CLOSED", self.name)
                self.reset()
        else:
            self.failure_count = 0

    def _on_failure(self, state: CircuitState) -> None:
        self.last_failure_time = self._clock()
        if state is CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            self.success_count = 0
            log.warning("circuit %s trial call failed, HALF_OPEN -> OPEN", self.name)
            return
        self.failure_count += 1
        if self._state is CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            log.warning("circuit %s CLOSED -> OPEN after %d failures", self.name, self.failure_count)

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None
        self._trials_in_flight = 0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastFailureTime": self.last_failure_time,
        }


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 0.1      # seconds
    max_delay: float = 10.0         # seconds
    multiplier: float = 2.0
    jitter: float = 0.1             # 0-1, fraction of the delay to randomize

    def base_delay(self, attempt: int) -> float:
        return min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        base = self.base_delay(attempt)
        return base + base * self.jitter * rand()


# Terminal errors: retrying cannot change the outcome
NEVER_RETRY: Tuple[Type[BaseException], ...] = (
    ValidationError,
    NotFoundError,
    PoisonMessage,
    DownstreamUnavailable,
)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = NEVER_RETRY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run `fn` up to `policy.max_retries + 1` times. Re-raises the last error once
    attempts are exhausted; errors in `give_up_on` are re-raised immediately.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await fn()
        except give_up_on:
            raise
        except retry_on as e:
            if attempt >= policy.max_retries:
                log.warning("%s failed after %d attempts: %s", label, attempt + 1, e)
                raise
            delay = policy.delay_for(attempt)
            log.info(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs ...",
                label, attempt + 1, policy.max_retries + 1, e, delay,
            )
            attempt += 1
            await sleep(delay)


def _drain(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.debug("abandoned operation finished with %r", exc)


async def with_timeout(aw: Awaitable[T], timeout: float, *, label: str = "operation") -> T:
    """
    Whichever settles first wins. On timeout the operation keeps running in the
    background and its side effects are not rolled back.
    """
    task = asyncio.ensure_future(aw)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError as e:
        task.add_done_callback(_drain)
        raise OperationTimeout(label, timeout) from e


__all__ = [
    "CircuitState",
    "CircuitBreaker",
    "RetryPolicy",
    "NEVER_RETRY",
    "retry_with_backoff",
    "with_timeout",
]
