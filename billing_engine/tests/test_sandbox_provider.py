from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from billing_engine.app.billing.models import Customer, Price
from billing_engine.app.errors import ProviderError
from billing_engine.app.providers import ProviderGateway, SandboxPaymentProvider


@pytest.fixture
def provider(clock) -> SandboxPaymentProvider:
    return SandboxPaymentProvider(webhook_secret="whsec_test", clock=clock)


@pytest.fixture
def provider_customer_id(provider) -> str:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    customer = Customer(id="cus_1", external_id="user-1", email="ada@example.com", created_at=now, updated_at=now)
    return provider.customers.create(customer)


def test_webhook_signature_round_trip(provider) -> None:
    payload = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"invoice": "inv_1"}})
    signature = provider.webhooks.sign(payload)

    event = provider.webhooks.construct_event(payload, signature)

    assert event.id == "evt_1"
    assert event.type == "invoice.paid"
    assert event.data == {"invoice": "inv_1"}


def test_webhook_rejects_tampered_payload(provider) -> None:
    signature = provider.webhooks.sign('{"id": "evt_1"}')

    assert provider.webhooks.verify_signature('{"id": "evt_2"}', signature) is False
    with pytest.raises(ProviderError) as exc:
        provider.webhooks.construct_event('{"id": "evt_2"}', signature)

    assert exc.value.code == "webhook_signature_invalid"
    assert exc.value.status_code == 400


def test_webhook_rejects_stale_timestamp(provider, clock) -> None:
    payload = '{"id": "evt_1"}'
    signature = provider.webhooks.sign(payload)

    clock.advance(minutes=10)

    assert provider.webhooks.verify_signature(payload, signature) is False


def test_webhook_rejects_malformed_header(provider) -> None:
    assert provider.webhooks.verify_signature("{}", "garbage") is False
    assert provider.webhooks.verify_signature("{}", "t=abc,v1=00") is False


def test_declined_payment_method_fails_the_charge(provider, provider_customer_id) -> None:
    charge = provider.payments.create(provider_customer_id, 1900, "usd", payment_method_id="pm_card_declined")

    assert charge.succeeded is False
    assert charge.failure_message == "Your card was declined."
    assert charge.currency == "USD"


def test_payment_idempotency_key_replays_the_charge(provider, provider_customer_id) -> None:
    first = provider.payments.create(provider_customer_id, 1900, "USD", idempotency_key="key-1")
    second = provider.payments.create(provider_customer_id, 1900, "USD", idempotency_key="key-1")

    assert first.id == second.id
    assert provider.payments.create_calls == 1
    assert provider.ledger == [{"payment_id": first.id, "amount": "19.00", "currency": "USD"}]


def test_refunds_cannot_exceed_the_charge(provider, provider_customer_id) -> None:
    charge = provider.payments.create(provider_customer_id, 1000, "USD")

    provider.payments.refund(charge.id, 600)
    with pytest.raises(ProviderError):
        provider.payments.refund(charge.id, 600)
    refund = provider.payments.refund(charge.id)

    assert refund.amount == 400


def test_subscription_with_trial_starts_trialing(provider, provider_customer_id, clock) -> None:
    price = Price(id="price_pro", plan_id="pro", unit_amount=1900)
    provider_price_id = provider.prices.create(price)

    subscription = provider.subscriptions.create(provider_customer_id, provider_price_id, trial_days=14)

    assert subscription.status == "trialing"
    assert (subscription.current_period_end - clock.now).days == 14
    assert provider.subscriptions.cancel(subscription.id).status == "canceled"


def test_gateway_retries_transient_failures_with_idempotency_key(provider, provider_customer_id) -> None:
    sleeps = []
    gateway = ProviderGateway(provider, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append)
    provider.fail_next("payments.create", times=2)

    charge = gateway.idempotent(
        "payments.create",
        provider.payments.create,
        provider_customer_id,
        1900,
        "USD",
        idempotency_key="key-1",
    )

    assert charge.succeeded is True
    assert sleeps == [0.5, 1.0]


def test_gateway_does_not_retry_without_idempotency_key(provider, provider_customer_id) -> None:
    gateway = ProviderGateway(provider, max_attempts=3, sleep=lambda seconds: None)
    provider.fail_next("payments.create")

    with pytest.raises(ProviderError) as exc:
        gateway.idempotent(
            "payments.create",
            provider.payments.create,
            provider_customer_id,
            1900,
            "USD",
            idempotency_key=None,
        )

    assert exc.value.retryable is True
    assert exc.value.provider == "sandbox"
    assert isinstance(exc.value.__cause__, ConnectionError)
    assert provider.payments.create_calls == 0


def test_gateway_gives_up_after_max_attempts(provider) -> None:
    gateway = ProviderGateway(provider, max_attempts=2, sleep=lambda seconds: None)
    provider.fail_next("customers.retrieve", times=5)

    with pytest.raises(ProviderError) as exc:
        gateway.read("customers.retrieve", provider.customers.retrieve, "sbx_cus_missing")

    assert exc.value.operation == "customers.retrieve"


def test_gateway_passes_provider_errors_through(provider) -> None:
    gateway = ProviderGateway(provider, sleep=lambda seconds: None)

    with pytest.raises(ProviderError) as exc:
        gateway.call("customers.delete", provider.customers.delete, "sbx_cus_missing")

    assert exc.value.code == "provider_resource_missing"
    assert exc.value.retryable is False


def test_non_transient_errors_are_not_retried(provider) -> None:
    calls = []

    def flaky() -> None:
        calls.append(1)
        raise ValueError("bad request")

    gateway = ProviderGateway(provider, max_attempts=3, sleep=lambda seconds: None)

    with pytest.raises(ProviderError) as exc:
        gateway.call("custom.op", flaky, retry=True)

    assert len(calls) == 1
    assert exc.value.retryable is False
