"""Subscription records and lifecycle states."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing.models import BillingInterval
from ..money.proration import ProrationResult

ADD_ON_METADATA_KEY = "addon"


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a subscription."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class ProrationBehavior(str, Enum):
    CREATE_PRORATIONS = "create_prorations"
    NONE = "none"
    ALWAYS_INVOICE = "always_invoice"


class PlanChangeTiming(str, Enum):
    IMMEDIATELY = "immediately"
    PERIOD_END = "period_end"


class Subscription(BaseModel):
    """A customer's recurring commitment to a plan price."""

    id: str
    customer_id: str
    plan_id: str
    price_id: str
    quantity: int = Field(default=1, ge=1)
    status: SubscriptionStatus
    billing_interval: BillingInterval
    interval_count: int = Field(default=1, ge=1)
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    retry_count: int = Field(default=0, ge=0)
    next_retry_at: Optional[datetime] = None
    grace_period_ends_at: Optional[datetime] = None
    promo_code_id: Optional[str] = None
    scheduled_price_id: Optional[str] = None
    provider_subscription_ids: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)
    livemode: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_add_on(self) -> bool:
        return self.metadata.get(ADD_ON_METADATA_KEY) == "true"

    @property
    def is_active(self) -> bool:
        return self.status in {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}

    @property
    def is_terminal(self) -> bool:
        return self.status in {SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED}

    def provider_subscription_id(self, provider: str) -> Optional[str]:
        return self.provider_subscription_ids.get(provider)


class PeriodStartedPayload(BaseModel):
    """Payload of ``billing.period.started``."""

    subscription: Subscription
    period_start: datetime
    period_end: datetime
    previous_period_start: datetime
    previous_period_end: datetime

    model_config = ConfigDict(frozen=True)


class PlanChangeResult(BaseModel):
    subscription: Subscription
    proration: Optional[ProrationResult] = None
    scheduled: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


__all__ = [
    "ADD_ON_METADATA_KEY",
    "PeriodStartedPayload",
    "PlanChangeResult",
    "PlanChangeTiming",
    "ProrationBehavior",
    "Subscription",
    "SubscriptionStatus",
]
