"""Storage adapter contracts and reference implementations."""

from .interfaces import (
    BillingStorage,
    CustomerRepository,
    EntitlementRepository,
    InvoiceRepository,
    LimitRepository,
    ListOptions,
    Page,
    PaymentRepository,
    PlanRepository,
    PromoCodeRepository,
    SubscriptionRepository,
)
from .memory import InMemoryStorage

__all__ = [
    "BillingStorage",
    "CustomerRepository",
    "EntitlementRepository",
    "InMemoryStorage",
    "InvoiceRepository",
    "LimitRepository",
    "ListOptions",
    "Page",
    "PaymentRepository",
    "PlanRepository",
    "PromoCodeRepository",
    "SubscriptionRepository",
]
