"""Error mapping and retry policy around payment provider calls."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import ProviderError
from .interfaces import PaymentProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)


class ProviderGateway:
    """Wraps a :class:`PaymentProvider` for the domain services.

    Every failure surfaces as :class:`ProviderError` with the original
    exception chained. Only calls marked ``retry=True`` are retried: reads,
    and side effects that carry an idempotency key.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self._max_attempts = max(1, max_attempts)
        self._backoff = max(0.0, backoff_seconds)
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.provider.name

    def call(self, operation: str, func: Callable[..., T], *args: object, retry: bool = False, **kwargs: object) -> T:
        attempts = self._max_attempts if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                error = self._to_provider_error(operation, exc)
                logger.exception(
                    "Payment provider call failed",
                    extra={
                        "provider": self.name,
                        "provider_operation": operation,
                        "provider_attempt": attempt,
                        "provider_attempts": attempts,
                    },
                )
                if not error.retryable or attempt >= attempts:
                    if error is exc:
                        raise
                    raise error from exc
                if self._backoff > 0:
                    self._sleep(self._backoff * attempt)
        raise AssertionError("unreachable")  # pragma: no cover

    def read(self, operation: str, func: Callable[..., T], *args: object, **kwargs: object) -> T:
        return self.call(operation, func, *args, retry=True, **kwargs)

    def idempotent(
        self,
        operation: str,
        func: Callable[..., T],
        *args: object,
        idempotency_key: Optional[str],
        **kwargs: object,
    ) -> T:
        """Side effect that is only retried when it carries an idempotency key."""

        return self.call(
            operation,
            func,
            *args,
            retry=bool(idempotency_key),
            idempotency_key=idempotency_key,
            **kwargs,
        )

    def _to_provider_error(self, operation: str, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        return ProviderError(
            f"{self.name} {operation} failed: {exc}",
            provider=self.name,
            operation=operation,
            retryable=isinstance(exc, TRANSIENT_ERRORS),
        )


__all__ = ["ProviderGateway", "TRANSIENT_ERRORS"]
