from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from billing_engine.app.entitlements import GrantSource
from billing_engine.app.errors import LimitExceededError, NotFoundError, ValidationError
from billing_engine.app.events import BillingEventType
from billing_engine.app.limits import UNLIMITED
from billing_engine.app.limits.service import LimitService


@pytest.fixture
def limit_service(storage, events, clock) -> LimitService:
    service = LimitService(storage.limits, events, clock=clock)
    service.define("projects", "Projects", default_value=3)
    service.define("seats", "Seats", default_value=2)
    return service


def test_check_without_limit_reports_unlimited(limit_service) -> None:
    result = limit_service.check("cus_1", "projects", 10)

    assert result.allowed is True
    assert result.is_unlimited is True
    assert result.remaining is None


def test_consume_until_exhausted(limit_service, events) -> None:
    exceeded = []
    events.on(BillingEventType.LIMIT_EXCEEDED, lambda event: exceeded.append(event.data))
    limit_service.set("cus_1", "projects", 5)

    for _ in range(5):
        limit_service.consume("cus_1", "projects")

    with pytest.raises(LimitExceededError) as exc:
        limit_service.consume("cus_1", "projects")

    assert exc.value.status_code == 403
    assert exc.value.payload["limit"] == "projects"
    assert exc.value.payload["current_value"] == 5
    assert exc.value.payload["max_value"] == 5
    assert limit_service.get("cus_1", "projects").current_value == 5
    assert len(exceeded) == 1
    assert exceeded[0].allowed is False


def test_check_reports_remaining_headroom(limit_service) -> None:
    limit_service.set("cus_1", "projects", 5)
    limit_service.consume("cus_1", "projects", 2)

    result = limit_service.check("cus_1", "projects", 4)

    assert result.allowed is False
    assert result.remaining == 3
    assert limit_service.check("cus_1", "projects", 3).allowed is True


def test_unlimited_ceiling_accepts_any_usage(limit_service) -> None:
    limit_service.set("cus_1", "projects", UNLIMITED)

    updated = limit_service.consume("cus_1", "projects", 10_000)

    assert updated.current_value == 10_000
    assert limit_service.check("cus_1", "projects", 1).allowed is True


def test_consume_without_limit_raises_not_found(limit_service) -> None:
    with pytest.raises(NotFoundError):
        limit_service.consume("cus_1", "projects")


def test_amount_must_be_positive(limit_service) -> None:
    limit_service.set("cus_1", "projects", 5)

    with pytest.raises(ValidationError):
        limit_service.consume("cus_1", "projects", 0)
    with pytest.raises(ValidationError):
        limit_service.increment("cus_1", "projects", -1)


def test_increment_ignores_ceiling_and_decrement_floors_at_zero(limit_service) -> None:
    limit_service.set("cus_1", "seats", 2)

    assert limit_service.increment("cus_1", "seats", 5).current_value == 5
    assert limit_service.decrement("cus_1", "seats", 3).current_value == 2
    assert limit_service.decrement("cus_1", "seats", 10).current_value == 0


def test_set_keeps_current_usage(limit_service) -> None:
    limit_service.set("cus_1", "projects", 5)
    limit_service.consume("cus_1", "projects", 4)

    updated = limit_service.set("cus_1", "projects", 10)

    assert updated.current_value == 4
    assert updated.max_value == 10


def test_set_rejects_values_below_unlimited(limit_service) -> None:
    with pytest.raises(ValidationError):
        limit_service.set("cus_1", "projects", -2)


def test_concurrent_consumes_are_serialized(limit_service) -> None:
    limit_service.set("cus_1", "projects", 1000)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(lambda _: limit_service.consume("cus_1", "projects", 5), range(100)))

    assert limit_service.get("cus_1", "projects").current_value == 500


def test_concurrent_consumes_never_overshoot(limit_service) -> None:
    limit_service.set("cus_1", "projects", 450)

    def attempt(_: int) -> bool:
        try:
            limit_service.consume("cus_1", "projects", 5)
        except LimitExceededError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=16) as pool:
        outcomes = list(pool.map(attempt, range(100)))

    assert outcomes.count(True) == 90
    assert limit_service.get("cus_1", "projects").current_value == 450


def test_reset_for_source_restores_plan_ceilings(limit_service) -> None:
    limit_service.apply_plan_limits("cus_1", {"projects": 10, "seats": 4}, source_id="sub_1")
    limit_service.set("cus_2", "projects", 7, source=GrantSource.MANUAL)
    limit_service.consume("cus_1", "projects", 6)
    limit_service.consume("cus_1", "seats", 4)
    limit_service.consume("cus_2", "projects", 2)

    reset = limit_service.reset_for_source(GrantSource.SUBSCRIPTION, "sub_1", ceilings={"projects": 20})

    by_key = {item.limit_key: item for item in reset}
    assert by_key["projects"].current_value == 0
    assert by_key["projects"].max_value == 20
    assert by_key["seats"].current_value == 0
    assert by_key["seats"].max_value == 2
    assert limit_service.get("cus_2", "projects").current_value == 2


def test_list_for_customer_is_sorted_by_key(limit_service) -> None:
    limit_service.set("cus_1", "seats", 2)
    limit_service.set("cus_1", "projects", 5)

    assert [item.limit_key for item in limit_service.list_for_customer("cus_1")] == ["projects", "seats"]
