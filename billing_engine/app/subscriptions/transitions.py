"""Allowed subscription status transitions."""
from __future__ import annotations

from types import MappingProxyType
from typing import FrozenSet, Mapping

from ..errors import InvalidStateError
from .models import SubscriptionStatus

S = SubscriptionStatus

ALLOWED_TRANSITIONS: Mapping[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = MappingProxyType(
    {
        S.INCOMPLETE: frozenset({S.TRIALING, S.ACTIVE, S.INCOMPLETE_EXPIRED}),
        S.TRIALING: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELED}),
        S.ACTIVE: frozenset({S.PAST_DUE, S.PAUSED, S.CANCELED}),
        S.PAST_DUE: frozenset({S.ACTIVE, S.CANCELED, S.UNPAID}),
        S.UNPAID: frozenset({S.ACTIVE, S.CANCELED}),
        S.PAUSED: frozenset({S.ACTIVE}),
        S.CANCELED: frozenset(),
        S.INCOMPLETE_EXPIRED: frozenset(),
    }
)

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def assert_transition(current: SubscriptionStatus, target: SubscriptionStatus, *, action: str) -> None:
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot {action} a subscription in status {current.value}",
            current_status=current.value,
            action=action,
        )


__all__ = ["ALLOWED_TRANSITIONS", "TERMINAL_STATUSES", "assert_transition", "can_transition"]
