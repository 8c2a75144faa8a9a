"""In-memory storage adapter for development, tests and the sandbox."""
from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from ..billing.models import Customer, Invoice, Payment, Plan, Price, PromoCode
from ..common import Clock, utc_now
from ..entitlements.models import EntitlementDefinition, EntitlementGrant, GrantSource
from ..errors import ConflictError
from ..limits.models import UNLIMITED, CustomerLimit, LimitDefinition
from ..subscriptions.models import Subscription, SubscriptionStatus
from .interfaces import ListOptions, Page

T = TypeVar("T")


def _paginate(items: Sequence[T], options: ListOptions) -> Page[T]:
    window = tuple(items[options.offset : options.offset + options.limit])
    return Page(data=window, total=len(items), limit=options.limit, offset=options.offset)


class _Table:
    """Base for repositories sharing the storage lock."""

    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock

    def _snapshot(self) -> Dict[str, object]:
        return {name: copy.copy(value) for name, value in vars(self).items() if name != "_lock"}

    def _restore(self, state: Dict[str, object]) -> None:
        for name, value in state.items():
            setattr(self, name, value)


class InMemoryCustomerRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, Customer] = {}

    def create(self, customer: Customer) -> Customer:
        with self._lock:
            if customer.id in self._items:
                raise ConflictError(f"Customer {customer.id} already exists")
            self._items[customer.id] = customer
            return customer

    def get(self, customer_id: str) -> Optional[Customer]:
        return self._items.get(customer_id)

    def get_by_external_id(self, external_id: str) -> Optional[Customer]:
        with self._lock:
            for customer in self._items.values():
                if customer.external_id == external_id and not customer.is_deleted:
                    return customer
        return None

    def update(self, customer: Customer) -> Customer:
        with self._lock:
            self._items[customer.id] = customer
            return customer

    def soft_delete(self, customer_id: str, *, deleted_at: datetime) -> Optional[Customer]:
        with self._lock:
            customer = self._items.get(customer_id)
            if customer is None:
                return None
            deleted = customer.model_copy(update={"deleted_at": deleted_at, "updated_at": deleted_at})
            self._items[customer_id] = deleted
            return deleted

    def list(self, options: ListOptions) -> Page[Customer]:
        with self._lock:
            items = sorted(
                (customer for customer in self._items.values() if not customer.is_deleted),
                key=lambda customer: (customer.created_at, customer.id),
            )
        return _paginate(items, options)


class InMemoryPlanRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, Plan] = {}

    def save(self, plan: Plan) -> Plan:
        with self._lock:
            self._items[plan.id] = plan
            return plan

    def get(self, plan_id: str) -> Optional[Plan]:
        return self._items.get(plan_id)

    def get_price(self, price_id: str) -> Optional[Price]:
        with self._lock:
            for plan in self._items.values():
                price = plan.get_price(price_id)
                if price is not None:
                    return price
        return None

    def list(self, *, active_only: bool = False) -> Sequence[Plan]:
        with self._lock:
            plans = sorted(self._items.values(), key=lambda plan: plan.id)
        return [plan for plan in plans if plan.active or not active_only]


class InMemoryPromoCodeRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, PromoCode] = {}

    def save(self, promo_code: PromoCode) -> PromoCode:
        with self._lock:
            self._items[promo_code.id] = promo_code
            return promo_code

    def get(self, promo_code_id: str) -> Optional[PromoCode]:
        return self._items.get(promo_code_id)

    def get_by_code(self, code: str) -> Optional[PromoCode]:
        wanted = code.strip().upper()
        with self._lock:
            for promo_code in self._items.values():
                if promo_code.code.upper() == wanted:
                    return promo_code
        return None

    def increment_redemptions(self, promo_code_id: str) -> Optional[PromoCode]:
        with self._lock:
            promo_code = self._items.get(promo_code_id)
            if promo_code is None or promo_code.redemptions_exhausted:
                return None
            updated = promo_code.model_copy(update={"redemptions": promo_code.redemptions + 1})
            self._items[promo_code_id] = updated
            return updated


class InMemorySubscriptionRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, Subscription] = {}

    def create(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.id in self._items:
                raise ConflictError(f"Subscription {subscription.id} already exists")
            self._items[subscription.id] = subscription
            return subscription

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._items.get(subscription_id)

    def update(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._items[subscription.id] = subscription
            return subscription

    def _select(self, predicate: Callable[[Subscription], bool]) -> List[Subscription]:
        with self._lock:
            return sorted(
                (item for item in self._items.values() if predicate(item)),
                key=lambda item: (item.created_at, item.id),
            )

    def find_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        return self._select(lambda item: item.customer_id == customer_id)

    def find_active_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        return self._select(lambda item: item.customer_id == customer_id and item.is_active)

    def find_needing_retry(self, now: datetime) -> Sequence[Subscription]:
        return self._select(
            lambda item: item.status == SubscriptionStatus.PAST_DUE
            and item.next_retry_at is not None
            and item.next_retry_at <= now
        )

    def find_trials_ending(self, now: datetime) -> Sequence[Subscription]:
        return self._select(
            lambda item: item.status == SubscriptionStatus.TRIALING
            and item.trial_end is not None
            and item.trial_end <= now
        )

    def find_due_for_rollover(self, now: datetime) -> Sequence[Subscription]:
        return self._select(
            lambda item: item.status == SubscriptionStatus.ACTIVE and item.current_period_end <= now
        )

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Subscription]:
        items = self._select(lambda item: customer_id is None or item.customer_id == customer_id)
        return _paginate(items, options)


class InMemoryInvoiceRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, Invoice] = {}

    def create(self, invoice: Invoice) -> Invoice:
        with self._lock:
            if invoice.id in self._items:
                raise ConflictError(f"Invoice {invoice.id} already exists")
            self._items[invoice.id] = invoice
            return invoice

    def get(self, invoice_id: str) -> Optional[Invoice]:
        return self._items.get(invoice_id)

    def update(self, invoice: Invoice) -> Invoice:
        with self._lock:
            self._items[invoice.id] = invoice
            return invoice

    def find_by_customer_id(self, customer_id: str) -> Sequence[Invoice]:
        with self._lock:
            return sorted(
                (item for item in self._items.values() if item.customer_id == customer_id),
                key=lambda item: (item.created_at, item.id),
            )

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Invoice]:
        with self._lock:
            items = sorted(
                (item for item in self._items.values() if customer_id is None or item.customer_id == customer_id),
                key=lambda item: (item.created_at, item.id),
            )
        return _paginate(items, options)


class InMemoryPaymentRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._items: Dict[str, Payment] = {}

    def create(self, payment: Payment) -> Payment:
        with self._lock:
            if payment.id in self._items:
                raise ConflictError(f"Payment {payment.id} already exists")
            if payment.idempotency_key and self.get_by_idempotency_key(payment.idempotency_key):
                raise ConflictError(f"Payment with idempotency key {payment.idempotency_key} already exists")
            self._items[payment.id] = payment
            return payment

    def get(self, payment_id: str) -> Optional[Payment]:
        return self._items.get(payment_id)

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        with self._lock:
            for payment in self._items.values():
                if payment.idempotency_key == idempotency_key:
                    return payment
        return None

    def update(self, payment: Payment) -> Payment:
        with self._lock:
            self._items[payment.id] = payment
            return payment

    def find_by_customer_id(self, customer_id: str) -> Sequence[Payment]:
        with self._lock:
            return sorted(
                (item for item in self._items.values() if item.customer_id == customer_id),
                key=lambda item: (item.created_at, item.id),
            )

    def list(self, options: ListOptions, *, customer_id: Optional[str] = None) -> Page[Payment]:
        with self._lock:
            items = sorted(
                (item for item in self._items.values() if customer_id is None or item.customer_id == customer_id),
                key=lambda item: (item.created_at, item.id),
            )
        return _paginate(items, options)


class InMemoryEntitlementRepository(_Table):
    def __init__(self, lock: threading.RLock) -> None:
        super().__init__(lock)
        self._definitions: Dict[str, EntitlementDefinition] = {}
        self._grants: Dict[Tuple[str, str], EntitlementGrant] = {}

    def save_definition(self, definition: EntitlementDefinition) -> EntitlementDefinition:
        with self._lock:
            self._definitions[definition.key] = definition
            return definition

    def get_definition(self, key: str) -> Optional[EntitlementDefinition]:
        return self._definitions.get(key)

    def list_definitions(self) -> Sequence[EntitlementDefinition]:
        with self._lock:
            return sorted(self._definitions.values(), key=lambda definition: definition.key)

    def get_grant(self, customer_id: str, key: str) -> Optional[EntitlementGrant]:
        return self._grants.get((customer_id, key))

    def save_grant(self, grant: EntitlementGrant) -> EntitlementGrant:
        with self._lock:
            self._grants[(grant.customer_id, grant.entitlement_key)] = grant
            return grant

    def delete_grant(self, customer_id: str, key: str) -> Optional[EntitlementGrant]:
        with self._lock:
            return self._grants.pop((customer_id, key), None)

    def delete_by_source(self, source: GrantSource, source_id: Optional[str]) -> List[EntitlementGrant]:
        with self._lock:
            matching = [
                grant_key
                for grant_key, grant in self._grants.items()
                if grant.source == source and grant.source_id == source_id
            ]
            return [self._grants.pop(grant_key) for grant_key in matching]

    def list_grants(self, customer_id: str) -> Sequence[EntitlementGrant]:
        with self._lock:
            return sorted(
                (grant for grant in self._grants.values() if grant.customer_id == customer_id),
                key=lambda grant: grant.entitlement_key,
            )

    def find_expiring_between(self, start: datetime, end: datetime) -> Sequence[EntitlementGrant]:
        with self._lock:
            return sorted(
                (
                    grant
                    for grant in self._grants.values()
                    if grant.expires_at is not None and start < grant.expires_at <= end
                ),
                key=lambda grant: grant.expires_at,
            )


class InMemoryLimitRepository(_Table):
    def __init__(self, lock: threading.RLock, clock: Clock = utc_now) -> None:
        super().__init__(lock)
        self._clock = clock
        self._definitions: Dict[str, LimitDefinition] = {}
        self._limits: Dict[Tuple[str, str], CustomerLimit] = {}

    def _snapshot(self) -> Dict[str, object]:
        return {"_definitions": dict(self._definitions), "_limits": dict(self._limits)}

    def save_definition(self, definition: LimitDefinition) -> LimitDefinition:
        with self._lock:
            self._definitions[definition.key] = definition
            return definition

    def get_definition(self, key: str) -> Optional[LimitDefinition]:
        return self._definitions.get(key)

    def get(self, customer_id: str, key: str) -> Optional[CustomerLimit]:
        return self._limits.get((customer_id, key))

    def set(self, customer_limit: CustomerLimit) -> CustomerLimit:
        with self._lock:
            existing = self._limits.get((customer_limit.customer_id, customer_limit.limit_key))
            if existing is not None:
                customer_limit = customer_limit.model_copy(
                    update={"current_value": existing.current_value, "created_at": existing.created_at}
                )
            self._limits[(customer_limit.customer_id, customer_limit.limit_key)] = customer_limit
            return customer_limit

    def _apply(self, customer_id: str, key: str, delta: int, *, within_limit: bool = False) -> Optional[CustomerLimit]:
        with self._lock:
            existing = self._limits.get((customer_id, key))
            if existing is None:
                return None
            new_value = max(0, existing.current_value + delta)
            if within_limit and existing.max_value != UNLIMITED and new_value > existing.max_value:
                return None
            updated = existing.model_copy(update={"current_value": new_value, "updated_at": self._clock()})
            self._limits[(customer_id, key)] = updated
            return updated

    def increment(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        return self._apply(customer_id, key, amount)

    def increment_within_limit(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        return self._apply(customer_id, key, amount, within_limit=True)

    def decrement(self, customer_id: str, key: str, amount: int) -> Optional[CustomerLimit]:
        return self._apply(customer_id, key, -amount)

    def reset_usage(self, customer_id: str, key: str, *, max_value: Optional[int] = None) -> Optional[CustomerLimit]:
        with self._lock:
            existing = self._limits.get((customer_id, key))
            if existing is None:
                return None
            update: Dict[str, object] = {"current_value": 0, "updated_at": self._clock()}
            if max_value is not None:
                update["max_value"] = max_value
            updated = existing.model_copy(update=update)
            self._limits[(customer_id, key)] = updated
            return updated

    def list_for_customer(self, customer_id: str) -> Sequence[CustomerLimit]:
        with self._lock:
            return sorted(
                (item for item in self._limits.values() if item.customer_id == customer_id),
                key=lambda item: item.limit_key,
            )

    def list_by_source(self, source: GrantSource, source_id: Optional[str]) -> Sequence[CustomerLimit]:
        with self._lock:
            return sorted(
                (item for item in self._limits.values() if item.source == source and item.source_id == source_id),
                key=lambda item: (item.customer_id, item.limit_key),
            )


class InMemoryStorage:
    """All repositories behind one re-entrant lock.

    :meth:`transaction` holds the lock for the duration of the block and
    restores every table if the block raises.
    """

    def __init__(self, *, clock: Optional[Clock] = None) -> None:
        self._lock = threading.RLock()
        self.customers = InMemoryCustomerRepository(self._lock)
        self.plans = InMemoryPlanRepository(self._lock)
        self.promo_codes = InMemoryPromoCodeRepository(self._lock)
        self.subscriptions = InMemorySubscriptionRepository(self._lock)
        self.invoices = InMemoryInvoiceRepository(self._lock)
        self.payments = InMemoryPaymentRepository(self._lock)
        self.entitlements = InMemoryEntitlementRepository(self._lock)
        self.limits = InMemoryLimitRepository(self._lock, clock or utc_now)

    def _tables(self) -> List[_Table]:
        return [
            self.customers,
            self.plans,
            self.promo_codes,
            self.subscriptions,
            self.invoices,
            self.payments,
            self.entitlements,
            self.limits,
        ]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshots = [(table, table._snapshot()) for table in self._tables()]
            try:
                yield
            except BaseException:
                for table, state in snapshots:
                    table._restore(state)
                raise


__all__ = [
    "InMemoryCustomerRepository",
    "InMemoryEntitlementRepository",
    "InMemoryInvoiceRepository",
    "InMemoryLimitRepository",
    "InMemoryPaymentRepository",
    "InMemoryPlanRepository",
    "InMemoryPromoCodeRepository",
    "InMemoryStorage",
    "InMemorySubscriptionRepository",
]
