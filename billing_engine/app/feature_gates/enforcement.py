"""Helpers for enforcing entitlement and limit checks on API and service layers."""
from __future__ import annotations

from typing import Optional

from ..entitlements.service import EntitlementService
from ..errors import EntitlementRequiredError, LimitExceededError
from ..limits.models import LimitCheck
from ..limits.service import LimitService


def require_entitlement(
    entitlements: EntitlementService,
    customer_id: str,
    key: str,
    *,
    error_code: str = "entitlement_required",
    message: Optional[str] = None,
) -> None:
    """Ensure the customer holds an unexpired grant for ``key``.

    Parameters
    ----------
    entitlements:
        Service answering entitlement checks.
    customer_id:
        Billing customer whose grants are inspected.
    key:
        The entitlement key that must be granted.
    error_code:
        Optional override for the surfaced error code when the entitlement is
        not granted. Defaults to ``"entitlement_required"``.
    message:
        Optional human-friendly message explaining the failure. If omitted, a
        default message mentioning the missing entitlement is used.
    """

    if entitlements.check(customer_id, key):
        return
    raise EntitlementRequiredError(
        code=error_code,
        message=message or f"Entitlement '{key}' is required.",
        detail={"missing_entitlement": key, "customer_id": customer_id},
    )


def enforce_limit(
    limits: LimitService,
    customer_id: str,
    key: str,
    amount: int = 1,
    *,
    consume: bool = False,
    error_code: str = "limit_exceeded",
) -> LimitCheck:
    """Raise when ``amount`` more usage would exceed the customer's ceiling.

    With ``consume=True`` the usage is also recorded, atomically with the check.
    """

    if consume:
        limits.consume(customer_id, key, amount)
        return limits.check(customer_id, key, 0)

    result = limits.check(customer_id, key, amount)
    if not result.allowed:
        raise LimitExceededError(
            code=error_code,
            message=f"Usage limit '{key}' exceeded.",
            detail={"limit": key, **result.to_dict()},
        )
    return result
