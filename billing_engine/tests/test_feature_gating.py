from __future__ import annotations

import pytest

from billing_engine.app.entitlements.service import EntitlementService
from billing_engine.app.feature_gates import (
    CustomerGate,
    EntitlementRequiredError,
    FeatureGateError,
    LimitExceededError,
    enforce_limit,
    require_entitlement,
)
from billing_engine.app.limits.service import LimitService


@pytest.fixture
def entitlements(storage, events, clock) -> EntitlementService:
    service = EntitlementService(storage.entitlements, events, clock=clock)
    service.define("sync.enabled", "Sync")
    service.define("search.advanced", "Advanced search")
    service.grant("cus_1", "sync.enabled")
    return service


@pytest.fixture
def limits(storage, events, clock) -> LimitService:
    service = LimitService(storage.limits, events, clock=clock)
    service.define("uploads", "Uploads", default_value=10)
    service.set("cus_1", "uploads", 3)
    return service


@pytest.fixture
def gate(entitlements: EntitlementService, limits: LimitService) -> CustomerGate:
    return CustomerGate("cus_1", entitlements, limits)


def test_require_entitlement_allows_granted_key(entitlements: EntitlementService) -> None:
    require_entitlement(entitlements, "cus_1", "sync.enabled")


def test_require_entitlement_raises_when_missing(entitlements: EntitlementService) -> None:
    with pytest.raises(EntitlementRequiredError) as exc:
        require_entitlement(entitlements, "cus_1", "search.advanced")

    assert exc.value.code == "entitlement_required"
    assert exc.value.status_code == 403
    assert exc.value.payload["missing_entitlement"] == "search.advanced"
    assert exc.value.payload["customer_id"] == "cus_1"


def test_require_entitlement_custom_code_and_message(entitlements: EntitlementService) -> None:
    with pytest.raises(FeatureGateError) as exc:
        require_entitlement(
            entitlements,
            "cus_1",
            "search.advanced",
            error_code="upgrade_required",
            message="Upgrade to search",
        )

    assert exc.value.code == "upgrade_required"
    assert exc.value.payload["message"] == "Upgrade to search"


def test_customer_gate_helpers(gate: CustomerGate) -> None:
    assert gate.has("sync.enabled") is True
    assert gate.has("search.advanced") is False

    gate.require("sync.enabled")

    with pytest.raises(FeatureGateError):
        gate.require("search.advanced")


def test_enforce_limit_reports_headroom(gate: CustomerGate, limits: LimitService) -> None:
    result = gate.enforce_limit("uploads", 3)

    assert result.allowed is True
    assert result.remaining == 3
    assert limits.get("cus_1", "uploads").current_value == 0

    with pytest.raises(LimitExceededError) as exc:
        enforce_limit(limits, "cus_1", "uploads", 4)

    assert exc.value.payload["limit"] == "uploads"
    assert exc.value.payload["max_value"] == 3


def test_consume_records_usage_until_the_ceiling(gate: CustomerGate) -> None:
    assert gate.consume("uploads", 2).remaining == 1
    assert gate.consume("uploads").remaining == 0

    with pytest.raises(LimitExceededError):
        gate.consume("uploads")

    assert gate.check_limit("uploads", 0).current_value == 3


def test_missing_limit_is_unlimited(gate: CustomerGate) -> None:
    result = gate.enforce_limit("api.calls", 1_000_000)

    assert result.allowed is True
    assert result.is_unlimited is True


def test_feature_gate_error_converts_to_http_exception() -> None:
    error = FeatureGateError(code="entitlement_required", message="flag missing")
    http_exc = error.to_http_exception()

    assert http_exc.status_code == 403
    assert http_exc.detail["error"] == "entitlement_required"
    assert http_exc.detail["message"] == "flag missing"
