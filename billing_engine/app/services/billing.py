"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ...config import BillingConfig, load_billing_config
from ..billing.service import BillingService
from ..events.bus import EventBus
from ..events.models import BillingEvent
from ..providers.interfaces import PaymentProvider
from ..providers.sandbox import SandboxPaymentProvider
from ..storage.interfaces import BillingStorage, LimitRepository
from ..storage.memory import InMemoryStorage
from ..storage.postgres import PostgresLimitRepository


logger = logging.getLogger("billing")


def _log_event(event: BillingEvent) -> None:
    logger.info(
        "Billing event %s id=%s livemode=%s",
        event.type.value,
        event.id,
        event.livemode,
    )


def register_event_logging(bus: EventBus) -> None:
    """Forward every billing event to the application logger."""

    bus.on_any(_log_event)


def create_billing_service(
    config: Optional[BillingConfig] = None,
    storage: Optional[BillingStorage] = None,
    provider: Optional[PaymentProvider] = None,
) -> BillingService:
    config = config or load_billing_config()
    storage = storage or InMemoryStorage()

    if provider is None and not config.livemode:
        provider = SandboxPaymentProvider(webhook_secret=config.webhook_secret or "whsec_sandbox")
    elif provider is None:
        logger.warning("Livemode enabled without a payment provider; charges are disabled")

    limits: Optional[LimitRepository] = None
    if config.database_url:
        limits = PostgresLimitRepository(dsn=config.database_url)

    service = BillingService(storage, config=config, provider=provider, limits=limits)
    register_event_logging(service.events)
    logger.info(
        "Billing service ready provider=%s livemode=%s limits=%s",
        service.provider_name,
        config.livemode,
        "postgres" if limits is not None else "memory",
    )
    return service


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    return create_billing_service()


__all__ = ["create_billing_service", "get_billing_service", "register_event_logging"]
