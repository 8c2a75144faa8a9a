"""Storage adapter contracts consumed by the billing engine."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Generic, List, Optional, Protocol, Sequence, Tuple, TypeVar

from ..billing.models import Customer, Invoice, Payment, Plan, Price, PromoCode
from ..entitlements.models import EntitlementDefinition, EntitlementGrant, GrantSource
from ..limits.models import CustomerLimit, LimitDefinition
from ..subscriptions.models import Subscription

T = TypeVar("T")


@dataclass(frozen=True)
class ListOptions:
    limit: int = 100
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.offset < 0:
            raise ValueError("offset must be >= 0")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a listing plus the size of the full result."""

    data: Tuple[T, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.data) < self.total


class CustomerRepository(Protocol):
    def create(self, customer: Customer) -> Customer:
        ...

    def get(self, customer_id: str) -> Optional[Customer]:
        ...

    def get_by_external_id(self, external_id: str) -> Optional[Customer]:
        ...

    def update(self, customer: Customer) -> Customer:
        ...

    def soft_delete(self, customer_id: str, *, deleted_at: datetime) -> Optional[Customer]:
        ...

    def list(self, options: ListOptions) -> Page[Customer]:
        ...


class PlanRepository(Protocol):
    def save(self, plan: Plan) -> Plan:
        ...

    def get(self, plan_id: str) -> Optional[Plan]:
        ...

    def get_price(self, price_id: str) -> Optional[Price]:
        ...

    def list(self, *, active_only: bool = False) -> Sequence[Plan]:
        ...


class PromoCodeRepository(Protocol):
    def save(self, promo_code: PromoCode) -> PromoCode:
        ...

    def get(self, promo_code_id: str) -> Optional[PromoCode]:
        ...

    def get_by_code(self, code: str) -> Optional[PromoCode]:
        ...

    def increment_redemptions(self, promo_code_id: str) -> Optional[PromoCode]:
        """Atomically bump redemptions unless ``max_redemptions`` is reached."""


class SubscriptionRepository(Protocol):
    def create(self, subscription: Subscription) -> Subscription:
        ...

    def get(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def update(self, subscription: Subscription) -> Subscription:
        ...

    def find_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        ...

    def find_active_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        """Subscriptions that are active or trialing."""

    def find_needing_retry(self, now: datetime) -> Sequence[Subscription]:
        """Past-due subscriptions whose ``next_retry_at`` has passed."""

    def find_trials_ending(self, now: datetime) -> Sequence[Subscription]:
        ...

    def find_due_for_rollover(self, now: datetime) -> Sequence[Subscription]:
        ...

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Subscription]:
        ...


class InvoiceRepository(Protocol):
    def create(self, invoice: Invoice) -> Invoice:
        ...

    def get(self, invoice_id: str) -> Optional[Invoice]:
        ...

    def update(self, invoice: Invoice) -> Invoice:
        ...

    def find_by_customer_id(self, customer_id: str) -> Sequence[Invoice]:
        ...

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Invoice]:
        ...


class PaymentRepository(Protocol):
    def create(self, payment: Payment) -> Payment:
        ...

    def get(self, payment_id: str) -> Optional[Payment]:
        ...

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        ...

    def update(self, payment: Payment) -> Payment:
        ...

    def find_by_customer_id(self, customer_id: str) -> Sequence[Payment]:
        ...

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Payment]:
        ...


class EntitlementRepository(Protocol):
    def save_definition(self, definition: EntitlementDefinition) -> EntitlementDefinition:
        ...

    def get_definition(self, key: str) -> Optional[EntitlementDefinition]:
        ...

    def list_definitions(self) -> Sequence[EntitlementDefinition]:
        ...

    def get_grant(self, customer_id: str, key: str) -> Optional[EntitlementGrant]:
        ...

    def save_grant(self, grant: EntitlementGrant) -> EntitlementGrant:
        """Insert or replace the grant for ``(customer_id, entitlement_key)``."""

    def delete_grant(self, customer_id: str, key: str) -> Optional[EntitlementGrant]:
        ...

    def delete_by_source(self, source: GrantSource, source_id: Optional[str]) -> List[EntitlementGrant]:
        ...

    def list_grants(self, customer_id: str) -> Sequence[EntitlementGrant]:
        ...

    def find_expiring_between(self, start: datetime, end: datetime) -> Sequence[EntitlementGrant]:
        ...


class LimitRepository(Protocol):
    def save_definition(self, definition: LimitDefinition) -> LimitDefinition:
        ...

    def get_definition(self, key: str) -> Optional[LimitDefinition]:
        ...

    def get(self, customer_id: str, key: str) -> Optional[CustomerLimit]:
        ...

    def set(self, customer_limit: CustomerLimit) -> CustomerLimit:
        """Upsert the ceiling and provenance; existing usage is preserved."""

    def increment(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        """Atomically add ``amount`` to usage. ``None`` when no record exists."""

    def increment_within_limit(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        """Atomically add ``amount`` only if the ceiling is not crossed."""

    def decrement(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        ...

    def reset_usage(self, customer_id: str, key: str, *, max_value: Optional[int] = None) -> Optional[CustomerLimit]:
        ...

    def list_for_customer(self, customer_id: str) -> Sequence[CustomerLimit]:
        ...

    def list_by_source(self, source: GrantSource, source_id: Optional[str]) -> Sequence[CustomerLimit]:
        ...


class BillingStorage(Protocol):
    """Aggregate of every repository plus a transaction boundary."""

    customers: CustomerRepository
    plans: PlanRepository
    promo_codes: PromoCodeRepository
    subscriptions: SubscriptionRepository
    invoices: InvoiceRepository
    payments: PaymentRepository
    entitlements: EntitlementRepository
    limits: LimitRepository

    def transaction(self) -> ContextManager[None]:
        ...


__all__ = [
    "BillingStorage",
    "CustomerRepository",
    "EntitlementRepository",
    "InvoiceRepository",
    "LimitRepository",
    "ListOptions",
    "Page",
    "PaymentRepository",
    "PlanRepository",
    "PromoCodeRepository",
    "SubscriptionRepository",
]
