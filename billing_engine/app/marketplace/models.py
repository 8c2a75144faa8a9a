"""Vendors, payout schedules and payout records for marketplace sellers."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

DEFAULT_COMMISSION_RATE = 10


class VendorStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class PayoutInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PayoutSchedule(BaseModel):
    """When a vendor gets paid; ``day_of_week`` follows ``datetime.weekday()``."""

    interval: PayoutInterval = PayoutInterval.WEEKLY
    day_of_week: int = Field(default=0, ge=0, le=6)
    day_of_month: int = Field(default=1, ge=1, le=31)

    model_config = ConfigDict(frozen=True)


class Vendor(BaseModel):
    """A seller receiving a share of marketplace payments."""

    id: str
    external_id: str
    name: str
    email: EmailStr
    status: VendorStatus = VendorStatus.PENDING
    commission_rate: Optional[float] = Field(default=None, ge=0, le=100)
    payout_schedule: PayoutSchedule = Field(default_factory=PayoutSchedule)
    provider_account_ids: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)
    livemode: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_active(self) -> bool:
        return self.status == VendorStatus.ACTIVE and self.deleted_at is None

    @property
    def is_pending(self) -> bool:
        return self.status == VendorStatus.PENDING

    @property
    def is_suspended(self) -> bool:
        return self.status == VendorStatus.SUSPENDED

    @property
    def can_receive_payments(self) -> bool:
        return self.is_active and bool(self.provider_account_ids)

    def effective_commission_rate(self, default: float = DEFAULT_COMMISSION_RATE) -> float:
        return default if self.commission_rate is None else self.commission_rate


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class VendorPayout(BaseModel):
    id: str
    vendor_id: str
    amount: int = Field(ge=0)
    currency: str = "USD"
    status: PayoutStatus = PayoutStatus.PENDING
    period_start: datetime
    period_end: datetime
    provider_payout_ids: Dict[str, str] = Field(default_factory=dict)
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()


__all__ = [
    "DEFAULT_COMMISSION_RATE",
    "PayoutInterval",
    "PayoutSchedule",
    "PayoutStatus",
    "Vendor",
    "VendorPayout",
    "VendorStatus",
]
