"""In-process payment provider for local development and tests."""
from __future__ import annotations

import hashlib
import hmac
import json
import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..billing.models import BillingInterval, Customer, Price
from ..billing.periods import add_interval
from ..common import Clock, new_id, utc_now
from ..errors import ProviderError
from ..money.amounts import to_decimal
from .interfaces import (
    Payload,
    ProviderPayment,
    ProviderPrice,
    ProviderRefund,
    ProviderSubscription,
    WebhookEvent,
)

PROVIDER_NAME = "sandbox"

# Payment methods that simulate processor responses.
DECLINED_PAYMENT_METHODS = {
    "pm_card_declined": "Your card was declined.",
    "pm_card_insufficient_funds": "Your card has insufficient funds.",
    "pm_card_expired": "Your card has expired.",
}

WEBHOOK_TOLERANCE_SECONDS = 300


class _FailureInjector:
    """Queues exceptions raised by the next calls to a named operation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[str, List[Exception]] = defaultdict(list)

    def add(self, operation: str, error: Exception, times: int = 1) -> None:
        with self._lock:
            self._pending[operation].extend([error] * times)

    def check(self, operation: str) -> None:
        with self._lock:
            pending = self._pending.get(operation)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error


def _not_found(operation: str, entity: str, entity_id: str) -> ProviderError:
    return ProviderError(
        f"No such {entity}: {entity_id}",
        code="provider_resource_missing",
        provider=PROVIDER_NAME,
        operation=operation,
    )


class SandboxCustomers:
    def __init__(self, provider: "SandboxPaymentProvider") -> None:
        self._provider = provider
        self.records: Dict[str, Dict[str, Any]] = {}

    def create(self, customer: Customer) -> str:
        self._provider.failures.check("customers.create")
        provider_id = new_id("sbx_cus")
        self.records[provider_id] = {
            "id": provider_id,
            "email": customer.email,
            "name": customer.name,
            "metadata": {"billing_customer_id": customer.id, **customer.metadata},
            "deleted": False,
        }
        return provider_id

    def update(
        self,
        provider_customer_id: str,
        *,
        email: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._provider.failures.check("customers.update")
        record = self.records.get(provider_customer_id)
        if record is None:
            raise _not_found("customers.update", "customer", provider_customer_id)
        if email is not None:
            record["email"] = email
        if name is not None:
            record["name"] = name
        if metadata is not None:
            record["metadata"].update(metadata)

    def delete(self, provider_customer_id: str) -> None:
        self._provider.failures.check("customers.delete")
        record = self.records.get(provider_customer_id)
        if record is None:
            raise _not_found("customers.delete", "customer", provider_customer_id)
        record["deleted"] = True

    def retrieve(self, provider_customer_id: str) -> Optional[Dict[str, Any]]:
        self._provider.failures.check("customers.retrieve")
        record = self.records.get(provider_customer_id)
        return dict(record) if record else None


class SandboxSubscriptions:
    def __init__(self, provider: "SandboxPaymentProvider") -> None:
        self._provider = provider
        self.records: Dict[str, ProviderSubscription] = {}
        self._idempotency: Dict[str, str] = {}

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
        self._provider.failures.check("subscriptions.create")
        if idempotency_key and idempotency_key in self._idempotency:
            return self.records[self._idempotency[idempotency_key]]
        if provider_customer_id not in self._provider.customers.records:
            raise _not_found("subscriptions.create", "customer", provider_customer_id)
        price = self._provider.prices.retrieve(provider_price_id)
        if price is None:
            raise _not_found("subscriptions.create", "price", provider_price_id)

        now = self._provider.now()
        if trial_days:
            status = "trialing"
            period_end = now + timedelta(days=trial_days)
        else:
            status = "active"
            period_end = add_interval(now, BillingInterval(price.interval), price.interval_count)
        subscription = ProviderSubscription(
            id=new_id("sbx_sub"),
            status=status,
            current_period_start=now,
            current_period_end=period_end,
            price_id=provider_price_id,
            quantity=quantity,
        )
        self.records[subscription.id] = subscription
        if idempotency_key:
            self._idempotency[idempotency_key] = subscription.id
        return subscription

    def _get(self, operation: str, provider_subscription_id: str) -> ProviderSubscription:
        self._provider.failures.check(operation)
        subscription = self.records.get(provider_subscription_id)
        if subscription is None:
            raise _not_found(operation, "subscription", provider_subscription_id)
        return subscription

    def _store(self, subscription: ProviderSubscription) -> ProviderSubscription:
        self.records[subscription.id] = subscription
        return subscription

    def update(
        self,
        provider_subscription_id: str,
        *,
        provider_price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        proration_behavior: Optional[str] = None,
    ) -> ProviderSubscription:
        subscription = self._get("subscriptions.update", provider_subscription_id)
        if provider_price_id is not None and self._provider.prices.retrieve(provider_price_id) is None:
            raise _not_found("subscriptions.update", "price", provider_price_id)
        return self._store(
            replace(
                subscription,
                price_id=provider_price_id or subscription.price_id,
                quantity=quantity or subscription.quantity,
            )
        )

    def cancel(self, provider_subscription_id: str, *, cancel_at_period_end: bool = False) -> ProviderSubscription:
        subscription = self._get("subscriptions.cancel", provider_subscription_id)
        if cancel_at_period_end:
            return self._store(replace(subscription, cancel_at_period_end=True))
        return self._store(replace(subscription, status="canceled"))

    def pause(self, provider_subscription_id: str) -> ProviderSubscription:
        subscription = self._get("subscriptions.pause", provider_subscription_id)
        return self._store(replace(subscription, status="paused"))

    def resume(self, provider_subscription_id: str) -> ProviderSubscription:
        subscription = self._get("subscriptions.resume", provider_subscription_id)
        return self._store(replace(subscription, status="active"))

    def retrieve(self, provider_subscription_id: str) -> Optional[ProviderSubscription]:
        self._provider.failures.check("subscriptions.retrieve")
        return self.records.get(provider_subscription_id)


class SandboxPayments:
    def __init__(self, provider: "SandboxPaymentProvider") -> None:
        self._provider = provider
        self.records: Dict[str, ProviderPayment] = {}
        self.refunds: Dict[str, List[ProviderRefund]] = defaultdict(list)
        self._idempotency: Dict[str, Any] = {}
        self.create_calls = 0

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
        self._provider.failures.check("payments.create")
        if idempotency_key and idempotency_key in self._idempotency:
            return self.records[self._idempotency[idempotency_key]]
        if provider_customer_id not in self._provider.customers.records:
            raise _not_found("payments.create", "customer", provider_customer_id)

        self.create_calls += 1
        failure_message = DECLINED_PAYMENT_METHODS.get(payment_method_id or "")
        if failure_message:
            status = "failed"
        else:
            status = "succeeded" if capture else "requires_capture"
        payment = ProviderPayment(
            id=new_id("sbx_pay"),
            status=status,
            amount=amount,
            currency=currency.upper(),
            failure_message=failure_message,
        )
        self.records[payment.id] = payment
        if idempotency_key:
            self._idempotency[idempotency_key] = payment.id
        self._provider.ledger.append(
            {"payment_id": payment.id, "amount": str(to_decimal(amount, currency)), "currency": currency.upper()}
        )
        return payment

    def _get(self, operation: str, provider_payment_id: str) -> ProviderPayment:
        self._provider.failures.check(operation)
        payment = self.records.get(provider_payment_id)
        if payment is None:
            raise _not_found(operation, "payment", provider_payment_id)
        return payment

    def capture(self, provider_payment_id: str) -> ProviderPayment:
        payment = self._get("payments.capture", provider_payment_id)
        if payment.status != "requires_capture":
            raise ProviderError(
                f"Payment {provider_payment_id} cannot be captured from status {payment.status}",
                provider=PROVIDER_NAME,
                operation="payments.capture",
            )
        captured = replace(payment, status="succeeded")
        self.records[captured.id] = captured
        return captured

    def cancel(self, provider_payment_id: str) -> ProviderPayment:
        payment = self._get("payments.cancel", provider_payment_id)
        canceled = replace(payment, status="canceled")
        self.records[canceled.id] = canceled
        return canceled

    def refund(
        self,
        provider_payment_id: str,
        amount: Optional[int] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> ProviderRefund:
        payment = self._get("payments.refund", provider_payment_id)
        if idempotency_key and idempotency_key in self._idempotency:
            return self._idempotency[idempotency_key]
        already = sum(refund.amount for refund in self.refunds[provider_payment_id])
        refund_amount = payment.amount - already if amount is None else amount
        if payment.status != "succeeded" or refund_amount <= 0 or already + refund_amount > payment.amount:
            raise ProviderError(
                f"Refund of {refund_amount} is not possible for payment {provider_payment_id}",
                provider=PROVIDER_NAME,
                operation="payments.refund",
            )
        refund = ProviderRefund(id=new_id("sbx_re"), payment_id=provider_payment_id, amount=refund_amount)
        self.refunds[provider_payment_id].append(refund)
        if idempotency_key:
            self._idempotency[idempotency_key] = refund
        return refund

    def retrieve(self, provider_payment_id: str) -> Optional[ProviderPayment]:
        self._provider.failures.check("payments.retrieve")
        return self.records.get(provider_payment_id)


class SandboxPrices:
    def __init__(self, provider: "SandboxPaymentProvider") -> None:
        self._provider = provider
        self.records: Dict[str, ProviderPrice] = {}

    def create(self, price: Price) -> str:
        self._provider.failures.check("prices.create")
        provider_id = new_id("sbx_price")
        self.records[provider_id] = ProviderPrice(
            id=provider_id,
            unit_amount=price.unit_amount,
            currency=price.currency,
            interval=price.billing_interval.value,
            interval_count=price.interval_count,
            active=price.active,
        )
        return provider_id

    def archive(self, provider_price_id: str) -> None:
        self._provider.failures.check("prices.archive")
        price = self.records.get(provider_price_id)
        if price is None:
            raise _not_found("prices.archive", "price", provider_price_id)
        self.records[provider_price_id] = replace(price, active=False)

    def retrieve(self, provider_price_id: str) -> Optional[ProviderPrice]:
        return self.records.get(provider_price_id)


class SandboxWebhooks:
    """Signatures use the ``t=<unix>,v1=<hex hmac-sha256>`` header format."""

    def __init__(self, provider: "SandboxPaymentProvider", secret: str) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        self._provider = provider
        self._secret = secret.encode("utf-8")

    def _digest(self, timestamp: int, payload: bytes) -> str:
        signed = str(timestamp).encode("utf-8") + b"." + payload
        return hmac.new(self._secret, signed, hashlib.sha256).hexdigest()

    def sign(self, payload: Payload, *, timestamp: Optional[int] = None) -> str:
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        stamp = int(self._provider.now().timestamp()) if timestamp is None else timestamp
        return f"t={stamp},v1={self._digest(stamp, body)}"

    def verify_signature(self, payload: Payload, signature: str) -> bool:
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        parts = dict(item.split("=", 1) for item in signature.split(",") if "=" in item)
        try:
            timestamp = int(parts.get("t", ""))
        except ValueError:
            return False
        expected = parts.get("v1")
        if not expected:
            return False
        if abs(self._provider.now().timestamp() - timestamp) > WEBHOOK_TOLERANCE_SECONDS:
            return False
        return hmac.compare_digest(self._digest(timestamp, body), expected)

    def construct_event(self, payload: Payload, signature: str) -> WebhookEvent:
        if not self.verify_signature(payload, signature):
            raise ProviderError(
                "Webhook signature verification failed",
                code="webhook_signature_invalid",
                status_code=400,
                provider=PROVIDER_NAME,
                operation="webhooks.construct_event",
            )
        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise ProviderError(
                "Webhook payload is not valid JSON",
                code="webhook_payload_invalid",
                status_code=400,
                provider=PROVIDER_NAME,
                operation="webhooks.construct_event",
            ) from exc
        created = body.get("created")
        return WebhookEvent(
            id=str(body.get("id") or new_id("sbx_evt")),
            type=str(body.get("type", "")),
            created_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else self._provider.now(),
            data=dict(body.get("data") or {}),
        )


class SandboxPaymentProvider:
    """Minimal provider implementation for local development and tests."""

    name = PROVIDER_NAME

    def __init__(self, *, webhook_secret: str = "whsec_sandbox", clock: Optional[Clock] = None) -> None:
        self._clock: Callable[[], datetime] = clock or utc_now
        self.failures = _FailureInjector()
        self.ledger: List[Dict[str, str]] = []
        self.customers = SandboxCustomers(self)
        self.subscriptions = SandboxSubscriptions(self)
        self.payments = SandboxPayments(self)
        self.prices = SandboxPrices(self)
        self.webhooks = SandboxWebhooks(self, webhook_secret)

    def now(self) -> datetime:
        return self._clock()

    def fail_next(self, operation: str, error: Optional[Exception] = None, *, times: int = 1) -> None:
        """Make the next ``times`` calls to ``operation`` raise ``error``."""

        self.failures.add(operation, error or ConnectionError(f"sandbox {operation} unavailable"), times)


__all__ = ["DECLINED_PAYMENT_METHODS", "PROVIDER_NAME", "SandboxPaymentProvider"]
