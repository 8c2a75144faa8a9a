"""Calendar arithmetic for billing intervals."""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from .models import BillingInterval


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    # Jan 31 + 1 month lands on the last day of February.
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_interval(moment: datetime, interval: BillingInterval, count: int = 1) -> datetime:
    """Advance ``moment`` by ``count`` billing intervals."""

    if count < 1:
        raise ValueError("count must be >= 1")
    if interval == BillingInterval.DAY:
        return moment + timedelta(days=count)
    if interval == BillingInterval.WEEK:
        return moment + timedelta(weeks=count)
    if interval == BillingInterval.MONTH:
        return _add_months(moment, count)
    if interval == BillingInterval.YEAR:
        return _add_months(moment, 12 * count)
    raise ValueError(f"Unsupported billing interval {interval!r}")


__all__ = ["add_interval"]
