"""Proration of plan changes within a billing period."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict

from ...config import DEFAULT_MAX_SAFE_AMOUNT
from .amounts import prorate, safe_multiply

_DAY = timedelta(days=1)


@dataclass(frozen=True)
class PeriodInfo:
    """Elapsed/remaining whole days of a billing period at a point in time."""

    days_in_period: int
    days_elapsed: int
    days_remaining: int

    @property
    def percent_complete(self) -> float:
        if self.days_in_period <= 0:
            return 100.0
        return round(self.days_elapsed / self.days_in_period * 100, 2)


@dataclass(frozen=True)
class ProrationResult:
    """Outcome of swapping prices part-way through a period."""

    unused_amount: int
    new_amount: int
    credit_amount: int
    charge_amount: int
    days_remaining: int
    days_in_period: int

    @property
    def net_amount(self) -> int:
        return self.charge_amount - self.credit_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unused_amount": self.unused_amount,
            "new_amount": self.new_amount,
            "credit_amount": self.credit_amount,
            "charge_amount": self.charge_amount,
            "days_remaining": self.days_remaining,
            "days_in_period": self.days_in_period,
        }


def get_period_info(period_start: datetime, period_end: datetime, now: datetime) -> PeriodInfo:
    """Whole days are rounded up, so a partially used day still counts."""

    total = period_end - period_start
    remaining = max(period_end - now, timedelta(0))
    days_in_period = math.ceil(total / _DAY) if total > timedelta(0) else 0
    days_remaining = min(math.ceil(remaining / _DAY), days_in_period)
    return PeriodInfo(
        days_in_period=days_in_period,
        days_elapsed=days_in_period - days_remaining,
        days_remaining=days_remaining,
    )


def calculate_plan_change_proration(
    *,
    current_unit_amount: int,
    new_unit_amount: int,
    quantity: int,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
    max_amount: int = DEFAULT_MAX_SAFE_AMOUNT,
) -> ProrationResult:
    """Credit for the unused part of the old price against the new price.

    Raises :class:`InvalidPeriodError` when the period has no length.
    """

    info = get_period_info(period_start, period_end, now)
    current_total = safe_multiply(current_unit_amount, quantity, max_amount=max_amount)
    new_total = safe_multiply(new_unit_amount, quantity, max_amount=max_amount)
    unused = prorate(current_total, info.days_in_period, info.days_remaining)
    new_amount = prorate(new_total, info.days_in_period, info.days_remaining)
    return ProrationResult(
        unused_amount=unused,
        new_amount=new_amount,
        credit_amount=max(0, unused - new_amount),
        charge_amount=max(0, new_amount - unused),
        days_remaining=info.days_remaining,
        days_in_period=info.days_in_period,
    )


__all__ = ["PeriodInfo", "ProrationResult", "calculate_plan_change_proration", "get_period_info"]
