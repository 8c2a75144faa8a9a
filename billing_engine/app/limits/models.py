"""Usage quota definitions and per-customer counters."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import GrantSource

UNLIMITED = -1


class LimitDefinition(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    default_value: int = Field(default=0, ge=UNLIMITED)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CustomerLimit(BaseModel):
    """Current usage against a ceiling; ``max_value == -1`` is unlimited."""

    customer_id: str
    limit_key: str
    max_value: int = Field(ge=UNLIMITED)
    current_value: int = Field(default=0, ge=0)
    source: GrantSource = GrantSource.MANUAL
    source_id: Optional[str] = None
    reset_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_unlimited(self) -> bool:
        return self.max_value == UNLIMITED


class LimitCheck(BaseModel):
    """Result of checking usage headroom for a customer limit."""

    customer_id: str
    limit_key: str
    allowed: bool
    current_value: int
    max_value: int
    remaining: Optional[int]
    requested: int = 1

    model_config = ConfigDict(frozen=True)

    @property
    def is_unlimited(self) -> bool:
        return self.max_value == UNLIMITED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "current_value": self.current_value,
            "max_value": self.max_value,
            "remaining": self.remaining,
        }


def evaluate_limit(customer_limit: Optional[CustomerLimit], *, customer_id: str, key: str, requested: int = 1) -> LimitCheck:
    """Compare usage plus ``requested`` against the ceiling."""

    if customer_limit is None or customer_limit.is_unlimited:
        current = customer_limit.current_value if customer_limit else 0
        return LimitCheck(
            customer_id=customer_id,
            limit_key=key,
            allowed=True,
            current_value=current,
            max_value=UNLIMITED,
            remaining=None,
            requested=requested,
        )
    remaining = max(0, customer_limit.max_value - customer_limit.current_value)
    return LimitCheck(
        customer_id=customer_id,
        limit_key=key,
        allowed=customer_limit.current_value + requested <= customer_limit.max_value,
        current_value=customer_limit.current_value,
        max_value=customer_limit.max_value,
        remaining=remaining,
        requested=requested,
    )


__all__ = ["CustomerLimit", "LimitCheck", "LimitDefinition", "UNLIMITED", "evaluate_limit"]
