"""Billing facade composing the domain services over one storage backend."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Optional, Union

from ...config import BillingConfig
from ..common import Clock, utc_now
from ..entitlements.service import EntitlementService
from ..errors import NotFoundError, ProviderError
from ..events.bus import EventBus, EventHandler, Unsubscribe
from ..events.models import BillingEventType
from ..limits.service import LimitService
from ..money.proration import ProrationResult
from ..providers.gateway import ProviderGateway
from ..providers.interfaces import PaymentProvider, Payload, WebhookEvent
from ..storage.interfaces import BillingStorage, LimitRepository
from ..subscriptions.models import Subscription
from ..subscriptions.scheduler import LifecycleSweep, SweepSummary
from ..subscriptions.service import SubscriptionLifecycleEngine
from .catalog import PlanCatalog
from .customers import CustomerService
from .invoices import InvoiceService, LineItem
from .models import Invoice, InvoiceStatus, PaymentStatus, Plan
from .payments import PaymentService
from .periods import add_interval

logger = logging.getLogger(__name__)

PAYMENT_METHOD_METADATA_KEY = "payment_method_id"


class BillingService:
    """Single entry point for customers, subscriptions, invoices, payments,
    entitlements and limits.

    Without a payment provider the engine runs locally: nothing is charged
    and subscription payments are expected to be confirmed through
    ``subscriptions.activate``.
    """

    def __init__(
        self,
        storage: BillingStorage,
        *,
        config: Optional[BillingConfig] = None,
        provider: Optional[PaymentProvider] = None,
        events: Optional[EventBus] = None,
        limits: Optional[LimitRepository] = None,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or BillingConfig()
        self.storage = storage
        self._clock = clock or utc_now
        self.events = events or EventBus(livemode=self.config.livemode, clock=self._clock)
        self.gateway: Optional[ProviderGateway] = None
        if provider is not None:
            self.gateway = ProviderGateway(
                provider,
                max_attempts=self.config.provider_max_attempts,
                backoff_seconds=self.config.provider_backoff_seconds,
                sleep=sleep,
            )

        self.catalog = PlanCatalog(storage.plans, storage.promo_codes, gateway=self.gateway, clock=self._clock)
        self.customers = CustomerService(
            storage.customers, self.events, config=self.config, gateway=self.gateway, clock=self._clock
        )
        self.entitlements = EntitlementService(storage.entitlements, self.events, clock=self._clock)
        self.limits = LimitService(limits or storage.limits, self.events, clock=self._clock)
        self.invoices = InvoiceService(
            storage.invoices,
            storage.customers,
            self.events,
            catalog=self.catalog,
            config=self.config,
            clock=self._clock,
        )
        self.payments = PaymentService(
            storage.payments,
            storage.customers,
            self.invoices,
            self.events,
            config=self.config,
            gateway=self.gateway,
            clock=self._clock,
        )
        self.subscriptions = SubscriptionLifecycleEngine(
            storage.subscriptions,
            storage.customers,
            self.catalog,
            self.entitlements,
            self.limits,
            self.events,
            config=self.config,
            gateway=self.gateway,
            clock=self._clock,
            transaction=storage.transaction,
        )
        self.subscriptions.proration_invoicer = self._invoice_proration
        if self.gateway is not None:
            self.subscriptions.payment_collector = self._collect_subscription_payment
        self.sweep = LifecycleSweep(self.subscriptions, clock=self._clock)

    # ----------------------------------------------------------------- events

    def on(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> Unsubscribe:
        return self.events.on(event_type, handler)

    def once(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> Unsubscribe:
        return self.events.once(event_type, handler)

    def off(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> bool:
        return self.events.off(event_type, handler)

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        return self.events.on_any(handler)

    # ------------------------------------------------------------- utilities

    def is_livemode(self) -> bool:
        return self.config.livemode

    @property
    def provider_name(self) -> Optional[str]:
        return self.gateway.name if self.gateway else None

    def register_plan(self, plan: Plan) -> Plan:
        return self.catalog.register_plan(plan)

    def run_lifecycle_sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        return self.sweep.run(now)

    def construct_webhook_event(self, payload: Payload, signature: str) -> WebhookEvent:
        """Verify a provider webhook and parse it; bad signatures raise :class:`ProviderError`."""

        if self.gateway is None:
            raise ProviderError(
                "No payment provider is configured",
                code="provider_not_configured",
                operation="webhooks.construct_event",
            )
        event = self.gateway.provider.webhooks.construct_event(payload, signature)
        logger.info("Received %s webhook %s type=%s", self.gateway.name, event.id, event.type)
        return event

    # ---------------------------------------------------- subscription hooks

    def _collect_subscription_payment(self, subscription: Subscription, purpose: str) -> bool:
        """Invoice and charge one period of ``subscription``; True when paid."""

        price = self.catalog.get_price(subscription.price_id)
        if price is None:
            raise NotFoundError(
                f"Price {subscription.price_id} not found",
                entity="price",
                entity_id=subscription.price_id,
            )
        invoice = self._open_invoice_for(subscription) if purpose == "retry" else None
        if invoice is None:
            if purpose == "renewal":
                period_start = subscription.current_period_end
            else:
                period_start = self._clock()
            invoice = self.invoices.create(
                subscription.customer_id,
                [
                    LineItem(
                        description=f"Subscription {subscription.plan_id} ({purpose.replace('_', ' ')})",
                        unit_amount=price.unit_amount,
                        quantity=subscription.quantity,
                        price_id=price.id,
                    )
                ],
                subscription_id=subscription.id,
                currency=price.currency,
                period_start=period_start,
                period_end=add_interval(period_start, subscription.billing_interval, subscription.interval_count),
            )
        if invoice.status == InvoiceStatus.PAID:
            return True

        idempotency_key = f"{invoice.id}:{purpose}:{subscription.retry_count}"
        try:
            payment = self.payments.process(
                subscription.customer_id,
                invoice.amount_due,
                invoice_id=invoice.id,
                subscription_id=subscription.id,
                payment_method_id=subscription.metadata.get(PAYMENT_METHOD_METADATA_KEY),
                idempotency_key=idempotency_key,
            )
        except ProviderError:
            logger.warning(
                "Charge for subscription %s (%s) could not reach the provider",
                subscription.id,
                purpose,
                exc_info=True,
            )
            return False
        return payment.status == PaymentStatus.SUCCEEDED

    def _open_invoice_for(self, subscription: Subscription) -> Optional[Invoice]:
        for invoice in reversed(self.invoices.list_by_customer(subscription.customer_id)):
            if invoice.subscription_id == subscription.id and invoice.status == InvoiceStatus.OPEN:
                return invoice
        return None

    def _invoice_proration(self, subscription: Subscription, proration: ProrationResult) -> Invoice:
        price = self.catalog.get_price(subscription.price_id)
        currency = price.currency if price else self.config.default_currency
        lines = [
            LineItem(
                description=f"Remaining time on {subscription.price_id}",
                unit_amount=proration.new_amount,
                price_id=subscription.price_id,
            )
        ]
        invoice = self.invoices.create(
            subscription.customer_id,
            lines,
            subscription_id=subscription.id,
            currency=currency,
            discount=min(proration.unused_amount, proration.new_amount),
            period_start=self._clock(),
            period_end=subscription.current_period_end,
            metadata={"reason": "proration"},
        )
        logger.info(
            "Proration invoice %s for subscription %s amount_due=%s",
            invoice.id,
            subscription.id,
            invoice.amount_due,
        )
        return invoice


__all__ = ["BillingService", "PAYMENT_METHOD_METADATA_KEY"]
