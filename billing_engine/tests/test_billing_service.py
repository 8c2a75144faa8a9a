from __future__ import annotations

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from billing_engine.app.billing.models import InvoiceStatus, PaymentStatus
from billing_engine.app.billing.service import PAYMENT_METHOD_METADATA_KEY, BillingService
from billing_engine.app.errors import ConflictError, NotFoundError, ProviderError
from billing_engine.app.events import BillingEventType
from billing_engine.app.providers import SandboxPaymentProvider
from billing_engine.app.subscriptions import SubscriptionStatus


@pytest.fixture
def provider(clock) -> SandboxPaymentProvider:
    return SandboxPaymentProvider(webhook_secret="whsec_test", clock=clock)


@pytest.fixture
def billing(storage, provider, clock, plan_factory) -> BillingService:
    service = BillingService(storage, provider=provider, clock=clock, sleep=lambda seconds: None)
    service.entitlements.define("reports.export", "Report export")
    service.limits.define("projects", "Projects", default_value=3)
    service.register_plan(plan_factory("pro", unit_amount=1900))
    service.register_plan(plan_factory("trial", unit_amount=2900, trial_days=14))
    return service


@pytest.fixture
def customer(billing):
    return billing.customers.create("user-1", "ada@example.com", name="Ada")


def test_provider_records_are_linked(billing, provider, customer) -> None:
    assert billing.provider_name == "sandbox"
    assert customer.provider_customer_id("sandbox") in provider.customers.records

    price = billing.catalog.get_price("price_pro_month")
    assert price.provider_price_ids["sandbox"].startswith("sbx_price")

    subscription = billing.subscriptions.create(customer.id, "pro")

    assert subscription.status == SubscriptionStatus.INCOMPLETE
    assert subscription.provider_subscription_id("sandbox") is not None


def test_customer_registration_rules(billing, customer) -> None:
    with pytest.raises(ConflictError):
        billing.customers.create("user-1", "other@example.com")
    with pytest.raises(PydanticValidationError):
        billing.customers.update(customer.id, email="not-an-email")

    renamed = billing.customers.sync_user("user-1", "ADA@example.com", name="Ada Lovelace")

    assert renamed.id == customer.id
    assert renamed.name == "Ada Lovelace"
    assert str(renamed.email) == "ada@example.com"

    billing.customers.delete(customer.id)

    assert billing.customers.get(customer.id) is None
    assert billing.customers.list().total == 0


def test_trial_converts_when_the_charge_succeeds(billing, provider, customer, clock) -> None:
    subscription = billing.subscriptions.create(customer.id, "trial")
    assert subscription.status == SubscriptionStatus.TRIALING

    clock.advance(days=14)
    summary = billing.run_lifecycle_sweep()

    assert summary.trials_converted == 1
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.ACTIVE
    [invoice] = billing.invoices.list_by_customer(customer.id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.total == 2900
    [payment] = billing.payments.list_by_customer(customer.id)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.invoice_id == invoice.id
    assert provider.payments.create_calls == 1


def test_declined_trial_recovers_on_retry(billing, customer, clock) -> None:
    subscription = billing.subscriptions.create(
        customer.id,
        "trial",
        metadata={PAYMENT_METHOD_METADATA_KEY: "pm_card_declined"},
    )

    clock.advance(days=14)
    first = billing.run_lifecycle_sweep()

    assert first.trials_past_due == 1
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.PAST_DUE
    assert billing.payments.list_by_customer(customer.id)[0].failure_message == "Your card was declined."

    billing.subscriptions.update(subscription.id, metadata={PAYMENT_METHOD_METADATA_KEY: "pm_card_visa"})
    clock.advance(days=2)
    second = billing.run_lifecycle_sweep()

    assert second.retries_recovered == 1
    recovered = billing.subscriptions.get(subscription.id)
    assert recovered.status == SubscriptionStatus.ACTIVE
    assert recovered.retry_count == 0
    [invoice] = billing.invoices.list_by_customer(customer.id)
    assert invoice.status == InvoiceStatus.PAID
    assert billing.entitlements.check(customer.id, "reports.export") is True


def test_recovered_renewal_is_not_charged_again(billing, customer, clock) -> None:
    created = billing.subscriptions.create(
        customer.id,
        "pro",
        metadata={PAYMENT_METHOD_METADATA_KEY: "pm_card_declined"},
    )
    subscription = billing.subscriptions.activate(created.id)

    clock.now = subscription.current_period_end
    assert billing.run_lifecycle_sweep().renewals_failed == 1

    billing.subscriptions.update(subscription.id, metadata={PAYMENT_METHOD_METADATA_KEY: "pm_card_visa"})
    clock.advance(days=2)
    assert billing.run_lifecycle_sweep().retries_recovered == 1

    later = billing.run_lifecycle_sweep()

    assert later.renewed == 0
    recovered = billing.subscriptions.get(subscription.id)
    assert recovered.status == SubscriptionStatus.ACTIVE
    assert recovered.current_period_start == subscription.current_period_end
    paid = [
        payment
        for payment in billing.payments.list_by_customer(customer.id)
        if payment.status == PaymentStatus.SUCCEEDED
    ]
    assert len(paid) == 1
    [invoice] = billing.invoices.list_by_customer(customer.id)
    assert invoice.period_start == recovered.current_period_start
    assert invoice.period_end == recovered.current_period_end


def test_failed_grant_rolls_back_without_announcing_it(billing, customer, plan_factory) -> None:
    billing.register_plan(plan_factory("broken", entitlements=("reports.export", "undefined.key")))
    granted = []
    billing.on(BillingEventType.ENTITLEMENT_GRANTED, lambda event: granted.append(event.data.entitlement_key))

    with pytest.raises(NotFoundError):
        billing.subscriptions.create(customer.id, "broken", trial_days=7)

    assert granted == []
    assert billing.entitlements.get(customer.id, "reports.export") is None
    assert billing.subscriptions.get_by_customer_id(customer.id) == []


def test_renewal_charges_the_next_period(billing, customer, clock) -> None:
    subscription = billing.subscriptions.activate(billing.subscriptions.create(customer.id, "pro").id)

    clock.now = subscription.current_period_end
    summary = billing.run_lifecycle_sweep()

    assert summary.renewed == 1
    renewed = billing.subscriptions.get(subscription.id)
    assert renewed.current_period_start == subscription.current_period_end
    [invoice] = billing.invoices.list_by_customer(customer.id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.period_start == subscription.current_period_end


def test_declined_renewal_marks_past_due(billing, customer, clock) -> None:
    created = billing.subscriptions.create(
        customer.id,
        "pro",
        metadata={PAYMENT_METHOD_METADATA_KEY: "pm_card_insufficient_funds"},
    )
    subscription = billing.subscriptions.activate(created.id)

    clock.now = subscription.current_period_end
    summary = billing.run_lifecycle_sweep()

    assert summary.renewals_failed == 1
    assert summary.renewed == 0
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.PAST_DUE


def test_provider_outage_during_renewal_marks_past_due(billing, provider, customer, clock, caplog) -> None:
    subscription = billing.subscriptions.activate(billing.subscriptions.create(customer.id, "pro").id)
    provider.fail_next("payments.create", times=3)

    clock.now = subscription.current_period_end
    with caplog.at_level("WARNING"):
        summary = billing.run_lifecycle_sweep()

    assert summary.renewals_failed == 1
    assert summary.failures == 0
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.PAST_DUE
    [payment] = billing.payments.list_by_customer(customer.id)
    assert payment.status == PaymentStatus.FAILED
    assert "could not reach the provider" in caplog.text


def test_payment_idempotency_key_replays(billing, provider, customer) -> None:
    first = billing.payments.process(customer.id, 1900, idempotency_key="order-1")
    second = billing.payments.process(customer.id, 1900, idempotency_key="order-1")

    assert first.id == second.id
    assert provider.payments.create_calls == 1
    assert len(billing.payments.list_by_customer(customer.id)) == 1


def test_refunds_move_through_partial_to_full(billing, customer) -> None:
    refunded = []
    billing.on(BillingEventType.PAYMENT_REFUNDED, lambda event: refunded.append(event.data.refunded_amount))
    payment = billing.payments.process(customer.id, 1000)

    partial = billing.payments.refund(payment.id, 400)
    full = billing.payments.refund(payment.id)

    assert partial.status == PaymentStatus.PARTIALLY_REFUNDED
    assert full.status == PaymentStatus.REFUNDED
    assert full.refunded_amount == 1000
    assert refunded == [400, 1000]


def test_outage_without_idempotency_key_is_recorded_and_raised(billing, provider, customer) -> None:
    provider.fail_next("payments.create")

    with pytest.raises(ProviderError) as exc:
        billing.payments.process(customer.id, 1900)

    assert exc.value.retryable is True
    [payment] = billing.payments.list_by_customer(customer.id)
    assert payment.status == PaymentStatus.FAILED


def test_webhook_events_are_verified(billing, provider) -> None:
    payload = json.dumps({"id": "evt_1", "type": "payment.succeeded", "data": {"amount": 1900}})

    event = billing.construct_webhook_event(payload, provider.webhooks.sign(payload))

    assert event.type == "payment.succeeded"
    with pytest.raises(ProviderError):
        billing.construct_webhook_event(payload, "t=1,v1=deadbeef")


def test_engine_without_provider_cannot_charge(storage, clock) -> None:
    billing = BillingService(storage, clock=clock)
    customer = billing.customers.create("user-1", "ada@example.com")

    assert billing.provider_name is None
    with pytest.raises(ProviderError) as exc:
        billing.payments.process(customer.id, 1900)
    assert exc.value.code == "provider_not_configured"
    with pytest.raises(ProviderError):
        billing.construct_webhook_event("{}", "t=1,v1=00")
