from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from billing_engine.app.billing.models import BillingInterval, Plan, Price
from billing_engine.app.events.bus import EventBus
from billing_engine.app.storage.memory import InMemoryStorage


class FakeClock:
    """Deterministic clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, tzinfo=timezone.utc))


@pytest.fixture
def storage(clock: FakeClock) -> InMemoryStorage:
    return InMemoryStorage(clock=clock)


@pytest.fixture
def events(clock: FakeClock) -> EventBus:
    return EventBus(clock=clock)


def make_plan(
    plan_id: str = "pro",
    *,
    unit_amount: int = 1900,
    currency: str = "USD",
    interval: BillingInterval = BillingInterval.MONTH,
    trial_days: int | None = None,
    entitlements: tuple[str, ...] = ("reports.export",),
    limits: dict[str, int] | None = None,
    extra_prices: tuple[Price, ...] = (),
) -> Plan:
    return Plan(
        id=plan_id,
        name=plan_id.title(),
        prices=(
            Price(
                id=f"price_{plan_id}_{interval.value}",
                plan_id=plan_id,
                unit_amount=unit_amount,
                currency=currency,
                billing_interval=interval,
                trial_days=trial_days,
            ),
            *extra_prices,
        ),
        entitlements=entitlements,
        limits={"projects": 5} if limits is None else limits,
    )


@pytest.fixture
def plan_factory():
    return make_plan
