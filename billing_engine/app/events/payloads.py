"""Mapping from every event kind to the payload type it carries."""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Type

from ..billing.models import Customer, Invoice, Payment
from ..entitlements.models import EntitlementGrant
from ..limits.models import LimitCheck
from ..subscriptions.models import PeriodStartedPayload, Subscription
from .models import BillingEventType

E = BillingEventType

EVENT_PAYLOAD_TYPES: Mapping[BillingEventType, Type[object]] = MappingProxyType(
    {
        E.CUSTOMER_CREATED: Customer,
        E.CUSTOMER_UPDATED: Customer,
        E.CUSTOMER_DELETED: Customer,
        E.SUBSCRIPTION_CREATED: Subscription,
        E.SUBSCRIPTION_UPDATED: Subscription,
        E.SUBSCRIPTION_CANCELED: Subscription,
        E.SUBSCRIPTION_PAUSED: Subscription,
        E.SUBSCRIPTION_RESUMED: Subscription,
        E.SUBSCRIPTION_TRIAL_ENDED: Subscription,
        E.SUBSCRIPTION_PAST_DUE: Subscription,
        E.SUBSCRIPTION_RETRY_SCHEDULED: Subscription,
        E.SUBSCRIPTION_RETRY_FAILED: Subscription,
        E.BILLING_PERIOD_STARTED: PeriodStartedPayload,
        E.INVOICE_CREATED: Invoice,
        E.INVOICE_PAID: Invoice,
        E.INVOICE_VOIDED: Invoice,
        E.INVOICE_PAYMENT_APPLIED: Invoice,
        E.PAYMENT_SUCCEEDED: Payment,
        E.PAYMENT_FAILED: Payment,
        E.PAYMENT_REFUNDED: Payment,
        E.ENTITLEMENT_GRANTED: EntitlementGrant,
        E.ENTITLEMENT_REVOKED: EntitlementGrant,
        E.LIMIT_EXCEEDED: LimitCheck,
    }
)

missing = set(BillingEventType) - set(EVENT_PAYLOAD_TYPES)
if missing:  # pragma: no cover - guards the enum and the map drifting apart
    raise RuntimeError(f"Event types without a payload type: {sorted(item.value for item in missing)}")
del missing


def payload_type_for(event_type: BillingEventType) -> Type[object]:
    return EVENT_PAYLOAD_TYPES[event_type]


__all__ = ["EVENT_PAYLOAD_TYPES", "payload_type_for"]
