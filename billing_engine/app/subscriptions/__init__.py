"""Subscription records and the rules for moving between their states."""

from .models import (
    ADD_ON_METADATA_KEY,
    PeriodStartedPayload,
    PlanChangeResult,
    PlanChangeTiming,
    ProrationBehavior,
    Subscription,
    SubscriptionStatus,
)
from .transitions import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, assert_transition, can_transition

__all__ = [
    "ADD_ON_METADATA_KEY",
    "ALLOWED_TRANSITIONS",
    "PeriodStartedPayload",
    "PlanChangeResult",
    "PlanChangeTiming",
    "ProrationBehavior",
    "Subscription",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "assert_transition",
    "can_transition",
]
