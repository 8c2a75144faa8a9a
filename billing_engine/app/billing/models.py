"""Pydantic models describing customers, catalog, invoices and payments."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


def _normalize_currency(value: str) -> str:
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"currency must be a three letter ISO 4217 code, got {value!r}")
    return code


class BillingInterval(str, Enum):
    """Supported billing frequencies."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class Customer(BaseModel):
    """A billable party mirrored at one or more payment providers."""

    id: str
    external_id: str
    email: EmailStr
    name: Optional[str] = None
    provider_customer_ids: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)
    livemode: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def provider_customer_id(self, provider: str) -> Optional[str]:
        return self.provider_customer_ids.get(provider)


class Price(BaseModel):
    """A price point of a plan, in integer minor units."""

    id: str
    plan_id: str
    unit_amount: int = Field(ge=0)
    currency: str = "USD"
    billing_interval: BillingInterval = BillingInterval.MONTH
    interval_count: int = Field(default=1, ge=1)
    trial_days: Optional[int] = Field(default=None, ge=0)
    active: bool = True
    provider_price_ids: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return _normalize_currency(value)


class Plan(BaseModel):
    """A sellable offering with the entitlements and limits it confers."""

    id: str
    name: str
    description: Optional[str] = None
    active: bool = True
    prices: Tuple[Price, ...] = ()
    entitlements: Tuple[str, ...] = ()
    limits: Dict[str, int] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def get_price(self, price_id: str) -> Optional[Price]:
        for price in self.prices:
            if price.id == price_id:
                return price
        return None

    @property
    def active_prices(self) -> Tuple[Price, ...]:
        return tuple(price for price in self.prices if price.active)


class PromoDiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PromoCode(BaseModel):
    """A redeemable discount, optionally restricted to some plans."""

    id: str
    code: str
    discount_type: PromoDiscountType
    discount_value: int = Field(ge=0)
    active: bool = True
    valid_until: Optional[datetime] = None
    max_redemptions: Optional[int] = Field(default=None, ge=0)
    redemptions: int = Field(default=0, ge=0)
    plan_ids: Tuple[str, ...] = ()

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _percentage_in_range(self) -> "PromoCode":
        if self.discount_type == PromoDiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        return self

    @property
    def redemptions_exhausted(self) -> bool:
        return self.max_redemptions is not None and self.redemptions >= self.max_redemptions


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


class InvoiceLine(BaseModel):
    description: str
    quantity: int = Field(default=1, ge=1)
    unit_amount: int = Field(ge=0)
    amount: int = Field(ge=0)
    price_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _amount_matches(self) -> "InvoiceLine":
        if self.amount != self.unit_amount * self.quantity:
            raise ValueError("line amount must equal unit_amount * quantity")
        return self


class Invoice(BaseModel):
    """Billing statement; totals are validated on construction."""

    id: str
    customer_id: str
    subscription_id: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.OPEN
    currency: str = "USD"
    subtotal: int = Field(ge=0)
    discount: int = Field(default=0, ge=0)
    tax: int = Field(default=0, ge=0)
    total: int = Field(ge=0)
    amount_paid: int = Field(default=0, ge=0)
    amount_due: int = Field(ge=0)
    lines: Tuple[InvoiceLine, ...] = ()
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    livemode: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return _normalize_currency(value)

    @model_validator(mode="after")
    def _totals_balance(self) -> "Invoice":
        if self.total != self.subtotal - self.discount + self.tax:
            raise ValueError("total must equal subtotal - discount + tax")
        if self.amount_due != self.total - self.amount_paid:
            raise ValueError("amount_due must equal total - amount_paid")
        return self

    @property
    def is_finalized(self) -> bool:
        return self.status in {InvoiceStatus.PAID, InvoiceStatus.VOID}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELED = "canceled"


class Payment(BaseModel):
    """A single money-movement attempt."""

    id: str
    customer_id: str
    amount: int = Field(ge=0)
    currency: str = "USD"
    status: PaymentStatus = PaymentStatus.PENDING
    invoice_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    provider_payment_ids: Dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None
    refunded_amount: int = Field(default=0, ge=0)
    failure_message: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    livemode: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return _normalize_currency(value)

    @property
    def refundable_amount(self) -> int:
        return max(0, self.amount - self.refunded_amount)


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
]
