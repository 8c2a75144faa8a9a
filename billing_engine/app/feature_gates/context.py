"""Convenience wrapper binding the gating helpers to one customer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..entitlements.service import EntitlementService
from ..limits.models import LimitCheck
from ..limits.service import LimitService
from .enforcement import enforce_limit, require_entitlement


@dataclass(frozen=True)
class CustomerGate:
    """Facade exposing gating-centric helpers for a customer's grants and limits."""

    customer_id: str
    entitlements: EntitlementService
    limits: LimitService

    def has(self, key: str) -> bool:
        return self.entitlements.check(self.customer_id, key)

    def require(self, key: str, *, error_code: str = "entitlement_required", message: Optional[str] = None) -> None:
        require_entitlement(self.entitlements, self.customer_id, key, error_code=error_code, message=message)

    def check_limit(self, key: str, amount: int = 1) -> LimitCheck:
        return self.limits.check(self.customer_id, key, amount)

    def enforce_limit(self, key: str, amount: int = 1) -> LimitCheck:
        """Raise when ``amount`` more usage would not fit."""

        return enforce_limit(self.limits, self.customer_id, key, amount)

    def consume(self, key: str, amount: int = 1) -> LimitCheck:
        """Record usage, raising instead when it would not fit."""

        return enforce_limit(self.limits, self.customer_id, key, amount, consume=True)
