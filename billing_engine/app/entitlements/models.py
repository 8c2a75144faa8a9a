"""Entitlement definitions and per-customer grants."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class GrantSource(str, Enum):
    """Where a grant or customer limit came from."""

    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"
    MANUAL = "manual"


class EntitlementDefinition(BaseModel):
    key: str
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class EntitlementGrant(BaseModel):
    """A boolean feature flag granted to one customer."""

    customer_id: str
    entitlement_key: str
    source: GrantSource = GrantSource.MANUAL
    source_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    granted_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


def later_expiration(current: Optional[datetime], incoming: Optional[datetime]) -> Optional[datetime]:
    """``None`` means the grant never expires and always wins."""

    if current is None or incoming is None:
        return None
    return max(current, incoming)


__all__ = ["EntitlementDefinition", "EntitlementGrant", "GrantSource", "later_expiration"]
