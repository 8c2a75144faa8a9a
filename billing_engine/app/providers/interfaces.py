"""Payment provider adapter contracts.

Amounts cross this boundary as integer minor units; converting them to a
processor's own convention is the adapter's job.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from ..billing.models import Customer, Price

Payload = Union[bytes, str]


@dataclass(frozen=True)
class ProviderSubscription:
    id: str
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    price_id: Optional[str] = None
    quantity: int = 1


@dataclass(frozen=True)
class ProviderPayment:
    id: str
    status: str
    amount: int
    currency: str
    failure_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class ProviderRefund:
    id: str
    payment_id: str
    amount: int
    status: str = "succeeded"


@dataclass(frozen=True)
class ProviderPrice:
    id: str
    unit_amount: int
    currency: str
    interval: str
    interval_count: int = 1
    active: bool = True


@dataclass(frozen=True)
class WebhookEvent:
    id: str
    type: str
    created_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)


class ProviderCustomerAdapter(Protocol):
    def create(self, customer: Customer) -> str:
        """Register the customer and return the provider's id for it."""

    def update(
        self,
        provider_customer_id: str,
        *,
        email: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        ...

    def delete(self, provider_customer_id: str) -> None:
        ...

    def retrieve(self, provider_customer_id: str) -> Optional[Dict[str, Any]]:
        ...


class ProviderSubscriptionAdapter(Protocol):
    def create(
        self,
        provider_customer_id: str,
        provider_price_id: str,
        *,
        quantity: int = 1,
        trial_days: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderSubscription:
        ...

    def update(
        self,
        provider_subscription_id: str,
        *,
        provider_price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        proration_behavior: Optional[str] = None,
    ) -> ProviderSubscription:
        ...

    def cancel(self, provider_subscription_id: str, *, cancel_at_period_end: bool = False) -> ProviderSubscription:
        ...

    def pause(self, provider_subscription_id: str) -> ProviderSubscription:
        ...

    def resume(self, provider_subscription_id: str) -> ProviderSubscription:
        ...

    def retrieve(self, provider_subscription_id: str) -> Optional[ProviderSubscription]:
        ...


class ProviderPaymentAdapter(Protocol):
    def create(
        self,
        provider_customer_id: str,
        amount: int,
        currency: str,
        *,
        payment_method_id: Optional[str] = None,
        capture: bool = True,
        metadata: Optional[Mapping[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ProviderPayment:
        ...

    def capture(self, provider_payment_id: str) -> ProviderPayment:
        ...

    def cancel(self, provider_payment_id: str) -> ProviderPayment:
        ...

    def refund(
        self,
        provider_payment_id: str,
        amount: Optional[int] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> ProviderRefund:
        ...

    def retrieve(self, provider_payment_id: str) -> Optional[ProviderPayment]:
        ...


class ProviderPriceAdapter(Protocol):
    def create(self, price: Price) -> str:
        ...

    def archive(self, provider_price_id: str) -> None:
        ...

    def retrieve(self, provider_price_id: str) -> Optional[ProviderPrice]:
        ...


class ProviderWebhookAdapter(Protocol):
    def verify_signature(self, payload: Payload, signature: str) -> bool:
        ...

    def construct_event(self, payload: Payload, signature: str) -> WebhookEvent:
        """Verify and parse; raises :class:`ProviderError` on a bad signature."""


class PaymentProvider(Protocol):
    """External payment processor integration."""

    name: str
    customers: ProviderCustomerAdapter
    subscriptions: ProviderSubscriptionAdapter
    payments: ProviderPaymentAdapter
    prices: ProviderPriceAdapter
    webhooks: ProviderWebhookAdapter


__all__ = [
    "PaymentProvider",
    "ProviderCustomerAdapter",
    "ProviderPayment",
    "ProviderPaymentAdapter",
    "ProviderPrice",
    "ProviderPriceAdapter",
    "ProviderRefund",
    "ProviderSubscription",
    "ProviderSubscriptionAdapter",
    "ProviderWebhookAdapter",
    "WebhookEvent",
]
