from __future__ import annotations

from typing import Optional


class FoodServiceError(Exception):
    """Base class for errors the services raise on purpose."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FoodServiceError):
    """Bad input. Terminal: returned to the caller, never retried."""

    status_code = 400


class NotFoundError(FoodServiceError):
    status_code = 404


class DownstreamUnavailable(FoodServiceError):
    """A circuit breaker is OPEN (or out of trial slots) for the named dependency."""

    status_code = 503

    def __init__(self, dependency: str, retry_after: Optional[float] = None) -> None:
        msg = f"Circuit breaker for '{dependency}' is OPEN. Service unavailable."
        if retry_after is not None:
            msg += f" Retry after {retry_after:.1f}s"
        super().__init__(msg)
        self.dependency = dependency
        self.retry_after = retry_after


class TransientBrokerError(FoodServiceError):
    """Network/broker hiccup. Retried with backoff."""

    status_code = 503


class OperationTimeout(FoodServiceError):
    status_code = 504

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout:.3f}s")
        self.operation = operation
        self.timeout = timeout


class PoisonMessage(FoodServiceError):
    """Payload cannot be processed (bad JSON, bad envelope, bad data).

    Routed to the dead-letter queue, never requeued.
    """

    status_code = 422


__all__ = [
    "FoodServiceError",
    "ValidationError",
    "NotFoundError",
    "DownstreamUnavailable",
    "TransientBrokerError",
    "OperationTimeout",
    "PoisonMessage",
]
