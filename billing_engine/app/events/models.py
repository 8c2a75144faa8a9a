"""Event kinds and the envelope delivered to subscribers."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class BillingEventType(str, Enum):
    """Closed set of events emitted by the billing engine."""

    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DELETED = "customer.deleted"

    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    SUBSCRIPTION_RESUMED = "subscription.resumed"
    SUBSCRIPTION_TRIAL_ENDED = "subscription.trial_ended"
    SUBSCRIPTION_PAST_DUE = "subscription.past_due"
    SUBSCRIPTION_RETRY_SCHEDULED = "subscription.retry_scheduled"
    SUBSCRIPTION_RETRY_FAILED = "subscription.retry_failed"

    BILLING_PERIOD_STARTED = "billing.period.started"

    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    INVOICE_VOIDED = "invoice.voided"
    INVOICE_PAYMENT_APPLIED = "invoice.payment_applied"

    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"

    ENTITLEMENT_GRANTED = "entitlement.granted"
    ENTITLEMENT_REVOKED = "entitlement.revoked"

    LIMIT_EXCEEDED = "limit.exceeded"


class BillingEvent(BaseModel):
    """Envelope handed to every subscriber."""

    id: str
    type: BillingEventType
    data: Any
    livemode: bool = False
    created_at: datetime

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


__all__ = ["BillingEvent", "BillingEventType"]
