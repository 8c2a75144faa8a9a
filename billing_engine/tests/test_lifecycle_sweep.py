from __future__ import annotations

from datetime import timedelta

import pytest

from billing_engine.app.billing.service import BillingService
from billing_engine.app.errors import InvalidStateError
from billing_engine.app.subscriptions import SubscriptionStatus
from billing_engine.app.subscriptions.scheduler import SweepSummary


@pytest.fixture
def billing(storage, clock, plan_factory) -> BillingService:
    service = BillingService(storage, clock=clock)
    service.entitlements.define("reports.export", "Report export")
    service.limits.define("projects", "Projects", default_value=3)
    service.register_plan(plan_factory("pro", unit_amount=1900))
    return service


def _customer(billing, index: int):
    return billing.customers.create(f"user-{index}", f"user{index}@example.com")


def _active(billing, index: int):
    customer = _customer(billing, index)
    subscription = billing.subscriptions.create(customer.id, "pro")
    return billing.subscriptions.activate(subscription.id)


def test_empty_sweep_reports_nothing(billing) -> None:
    assert billing.run_lifecycle_sweep() == SweepSummary()


def test_sweep_handles_each_due_subscription_once(billing, clock) -> None:
    trialing = billing.subscriptions.create(_customer(billing, 1).id, "pro", trial_days=3)
    renewing = _active(billing, 2)
    leaving = _active(billing, 3)
    billing.subscriptions.cancel(leaving.id, cancel_at_period_end=True)
    not_due = billing.subscriptions.create(_customer(billing, 4).id, "pro", trial_days=60)

    clock.now = renewing.current_period_end
    summary = billing.run_lifecycle_sweep()

    assert summary.trials_past_due == 1
    assert summary.renewed == 1
    assert summary.canceled == 1
    assert summary.failures == 0
    assert billing.subscriptions.get(trialing.id).status == SubscriptionStatus.PAST_DUE
    assert billing.subscriptions.get(renewing.id).current_period_start == renewing.current_period_end
    assert billing.subscriptions.get(leaving.id).status == SubscriptionStatus.CANCELED
    assert billing.subscriptions.get(not_due.id).status == SubscriptionStatus.TRIALING

    second = billing.run_lifecycle_sweep()

    assert second.renewed == 0
    assert second.canceled == 0


def test_trial_scheduled_to_cancel_is_canceled_at_trial_end(billing, clock) -> None:
    subscription = billing.subscriptions.create(_customer(billing, 1).id, "pro", trial_days=7)
    billing.subscriptions.cancel(subscription.id, cancel_at_period_end=True)

    clock.advance(days=7)
    summary = billing.run_lifecycle_sweep()

    assert summary.canceled == 1
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.CANCELED


def test_retries_are_scheduled_until_exhausted(billing, clock) -> None:
    subscription = _active(billing, 1)
    billing.subscriptions.mark_past_due(subscription.id)

    outcomes = []
    for _ in range(3):
        clock.advance(days=2)
        outcomes.append(billing.run_lifecycle_sweep())

    assert [summary.retries_scheduled for summary in outcomes] == [1, 1, 0]
    assert outcomes[-1].retries_exhausted == 1
    assert billing.subscriptions.get(subscription.id).status == SubscriptionStatus.CANCELED


def test_retry_waits_for_next_retry_time(billing, clock) -> None:
    subscription = _active(billing, 1)
    billing.subscriptions.mark_past_due(subscription.id)

    clock.advance(days=1)

    assert billing.run_lifecycle_sweep().retries_scheduled == 0


def test_failures_are_counted_and_the_sweep_continues(billing, clock, monkeypatch, caplog) -> None:
    broken = _active(billing, 1)
    healthy = _active(billing, 2)
    original = billing.subscriptions.rollover_period

    def rollover(subscription_id: str):
        if subscription_id == broken.id:
            raise InvalidStateError("simulated", current_status="active", action="rollover")
        return original(subscription_id)

    monkeypatch.setattr(billing.subscriptions, "rollover_period", rollover)
    clock.now = healthy.current_period_end

    with caplog.at_level("ERROR"):
        summary = billing.run_lifecycle_sweep()

    assert summary.failures == 1
    assert summary.failed_subscription_ids == [broken.id]
    assert summary.renewed == 1
    assert "Subscription lifecycle step failed" in caplog.text


def test_naive_sweep_time_is_treated_as_utc(billing, clock) -> None:
    subscription = _active(billing, 1)
    naive_end = subscription.current_period_end.replace(tzinfo=None)

    summary = billing.run_lifecycle_sweep(naive_end + timedelta(seconds=1))

    assert summary.renewed == 1
