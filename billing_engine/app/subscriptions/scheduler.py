"""Periodic sweep driving time-based subscription transitions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ..common import Clock, utc_now
from ..errors import BillingError
from .models import Subscription, SubscriptionStatus
from .service import SubscriptionLifecycleEngine

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    """Aggregated results for one lifecycle sweep."""

    trials_converted: int = 0
    trials_past_due: int = 0
    renewed: int = 0
    renewals_failed: int = 0
    canceled: int = 0
    retries_recovered: int = 0
    retries_scheduled: int = 0
    retries_exhausted: int = 0
    failures: int = 0
    failed_subscription_ids: List[str] = field(default_factory=list)


class LifecycleSweep:
    """Ends due trials, rolls over billing periods and retries past due charges.

    A failure on one subscription is logged and counted; the sweep moves on.
    """

    def __init__(self, engine: SubscriptionLifecycleEngine, *, clock: Optional[Clock] = None) -> None:
        self._engine = engine
        self._clock = clock or utc_now

    def run(self, now: Optional[datetime] = None) -> SweepSummary:
        current_time = now or self._clock()
        if current_time.tzinfo is None:
            current_time = current_time.replace(tzinfo=timezone.utc)

        summary = SweepSummary()
        for subscription in self._engine.find_trials_ending(current_time):
            self._guarded(summary, subscription, "end_trial", self._end_trial)
        for subscription in self._engine.find_due_for_rollover(current_time):
            self._guarded(summary, subscription, "rollover", self._renew)
        for subscription in self._engine.find_needing_retry(current_time):
            self._guarded(summary, subscription, "retry", self._retry)

        logger.info(
            "Subscription lifecycle sweep completed",
            extra={
                "renewed": summary.renewed,
                "canceled": summary.canceled,
                "trials_converted": summary.trials_converted,
                "retries_exhausted": summary.retries_exhausted,
                "failures": summary.failures,
            },
        )
        return summary

    def _guarded(self, summary: SweepSummary, subscription: Subscription, step: str, handler) -> None:
        try:
            handler(summary, subscription)
        except BillingError:
            summary.failures += 1
            summary.failed_subscription_ids.append(subscription.id)
            logger.exception(
                "Subscription lifecycle step failed",
                extra={"subscription_id": subscription.id, "step": step},
            )

    def _end_trial(self, summary: SweepSummary, subscription: Subscription) -> None:
        if subscription.cancel_at is not None:
            self._engine.rollover_period(subscription.id)
            summary.canceled += 1
            return
        result = self._engine.end_trial(subscription.id)
        if result.status == SubscriptionStatus.ACTIVE:
            summary.trials_converted += 1
        else:
            summary.trials_past_due += 1

    def _renew(self, summary: SweepSummary, subscription: Subscription) -> None:
        if subscription.cancel_at is not None:
            self._engine.rollover_period(subscription.id)
            summary.canceled += 1
            return
        collector = self._engine.payment_collector
        if collector is not None and not collector(subscription, "renewal"):
            self._engine.mark_past_due(subscription.id)
            summary.renewals_failed += 1
            return
        self._engine.rollover_period(subscription.id)
        summary.renewed += 1

    def _retry(self, summary: SweepSummary, subscription: Subscription) -> None:
        collector = self._engine.payment_collector
        if collector is not None and collector(subscription, "retry"):
            self._engine.activate(subscription.id)
            summary.retries_recovered += 1
            return
        result = self._engine.retry_past_due(subscription.id)
        if result.status == SubscriptionStatus.PAST_DUE:
            summary.retries_scheduled += 1
        else:
            summary.retries_exhausted += 1


__all__ = ["LifecycleSweep", "SweepSummary"]
