"""Set, consume and check customer usage limits."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Optional, Sequence

from ..common import Clock, utc_now
from ..entitlements.models import GrantSource
from ..errors import LimitExceededError, NotFoundError, ValidationError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..storage.interfaces import LimitRepository
from .models import UNLIMITED, CustomerLimit, LimitCheck, LimitDefinition, evaluate_limit

logger = logging.getLogger(__name__)


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
        raise ValidationError(f"amount must be a positive integer, got {amount!r}", detail={"field": "amount"})


class LimitService:
    """Usage counters live in storage, which serializes concurrent increments."""

    def __init__(
        self,
        repository: LimitRepository,
        events: EventBus,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._events = events
        self._clock = clock or utc_now

    def define(self, key: str, name: str, *, default_value: int = 0, description: Optional[str] = None) -> LimitDefinition:
        return self._repository.save_definition(
            LimitDefinition(key=key, name=name, default_value=default_value, description=description)
        )

    def get_definition(self, key: str) -> Optional[LimitDefinition]:
        return self._repository.get_definition(key)

    def set(
        self,
        customer_id: str,
        key: str,
        max_value: int,
        *,
        source: GrantSource = GrantSource.MANUAL,
        source_id: Optional[str] = None,
        reset_at: Optional[datetime] = None,
    ) -> CustomerLimit:
        """Overwrite the ceiling; current usage is kept."""

        if max_value < UNLIMITED:
            raise ValidationError("max_value must be >= 0, or -1 for unlimited", detail={"field": "max_value"})
        now = self._clock()
        stored = self._repository.set(
            CustomerLimit(
                customer_id=customer_id,
                limit_key=key,
                max_value=max_value,
                source=source,
                source_id=source_id,
                reset_at=reset_at,
                created_at=now,
                updated_at=now,
            )
        )
        logger.debug("Limit %s for customer=%s set to %s", key, customer_id, max_value)
        return stored

    def apply_plan_limits(
        self,
        customer_id: str,
        limits: Mapping[str, int],
        *,
        source_id: str,
    ) -> Sequence[CustomerLimit]:
        return [
            self.set(customer_id, key, max_value, source=GrantSource.SUBSCRIPTION, source_id=source_id)
            for key, max_value in sorted(limits.items())
        ]

    def get(self, customer_id: str, key: str) -> Optional[CustomerLimit]:
        return self._repository.get(customer_id, key)

    def list_for_customer(self, customer_id: str) -> Sequence[CustomerLimit]:
        return self._repository.list_for_customer(customer_id)

    def check(self, customer_id: str, key: str, amount: int = 1) -> LimitCheck:
        return evaluate_limit(self._repository.get(customer_id, key), customer_id=customer_id, key=key, requested=amount)

    def increment(self, customer_id: str, key: str, amount: int = 1) -> CustomerLimit:
        """Add ``amount`` to current usage without enforcing the ceiling."""

        _require_positive(amount)
        updated = self._repository.increment(customer_id, key, amount)
        if updated is None:
            raise NotFoundError(
                f"No limit {key!r} for customer {customer_id}",
                entity="customer_limit",
                entity_id=f"{customer_id}:{key}",
            )
        return updated

    def consume(self, customer_id: str, key: str, amount: int = 1) -> CustomerLimit:
        """Atomically record usage only if it fits under the ceiling."""

        _require_positive(amount)
        updated = self._repository.increment_within_limit(customer_id, key, amount)
        if updated is not None:
            return updated

        current = self._repository.get(customer_id, key)
        if current is None:
            raise NotFoundError(
                f"No limit {key!r} for customer {customer_id}",
                entity="customer_limit",
                entity_id=f"{customer_id}:{key}",
            )
        result = evaluate_limit(current, customer_id=customer_id, key=key, requested=amount)
        logger.warning(
            "Limit %s exceeded for customer=%s current=%s max=%s requested=%s",
            key,
            customer_id,
            result.current_value,
            result.max_value,
            amount,
        )
        self._events.emit(BillingEventType.LIMIT_EXCEEDED, result)
        raise LimitExceededError(
            f"Usage limit {key!r} exceeded",
            detail={"limit": key, **result.to_dict()},
        )

    def decrement(self, customer_id: str, key: str, amount: int = 1) -> CustomerLimit:
        _require_positive(amount)
        updated = self._repository.decrement(customer_id, key, amount)
        if updated is None:
            raise NotFoundError(
                f"No limit {key!r} for customer {customer_id}",
                entity="customer_limit",
                entity_id=f"{customer_id}:{key}",
            )
        return updated

    def reset_usage(self, customer_id: str, key: str) -> Optional[CustomerLimit]:
        return self._repository.reset_usage(customer_id, key)

    def reset_for_source(
        self,
        source: GrantSource,
        source_id: Optional[str],
        *,
        ceilings: Optional[Mapping[str, int]] = None,
    ) -> Sequence[CustomerLimit]:
        """Zero usage for every limit with this provenance.

        Ceilings come from ``ceilings`` when the key is present there, else
        from the limit definition's default; unknown keys keep their ceiling.
        """

        reset = []
        for customer_limit in self._repository.list_by_source(source, source_id):
            max_value = (ceilings or {}).get(customer_limit.limit_key)
            if max_value is None:
                definition = self._repository.get_definition(customer_limit.limit_key)
                max_value = definition.default_value if definition else None
            updated = self._repository.reset_usage(
                customer_limit.customer_id, customer_limit.limit_key, max_value=max_value
            )
            if updated is not None:
                reset.append(updated)
        return reset


__all__ = ["LimitService"]
