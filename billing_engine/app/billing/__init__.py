"""Customers, catalog, invoices and payments."""

from .models import (
    BillingInterval,
    Customer,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    Payment,
    PaymentStatus,
    Plan,
    Price,
    PromoCode,
    PromoDiscountType,
)
from .periods import add_interval

__all__ = [
    "BillingInterval",
    "Customer",
    "Invoice",
    "InvoiceLine",
    "InvoiceStatus",
    "Payment",
    "PaymentStatus",
    "Plan",
    "Price",
    "PromoCode",
    "PromoDiscountType",
    "add_interval",
]
