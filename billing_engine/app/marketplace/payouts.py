"""Payout schedules, eligibility and payout record bookkeeping."""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional

from ..common import Clock, new_id, utc_now
from ..errors import InvalidStateError
from .models import PayoutInterval, PayoutSchedule, PayoutStatus, Vendor, VendorPayout

PAYOUT_TRANSITIONS: Mapping[PayoutStatus, FrozenSet[PayoutStatus]] = MappingProxyType(
    {
        PayoutStatus.PENDING: frozenset({PayoutStatus.PROCESSING, PayoutStatus.FAILED}),
        PayoutStatus.PROCESSING: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED}),
        PayoutStatus.PAID: frozenset(),
        PayoutStatus.FAILED: frozenset(),
    }
)

_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class PayoutPeriod:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class PayoutEligibility:
    eligible: bool
    reason: Optional[str] = None
    next_eligible_date: Optional[datetime] = None


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _add_month(moment: datetime, day: int) -> datetime:
    year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
    return moment.replace(year=year, month=month, day=min(day, calendar.monthrange(year, month)[1]))


def next_payout_date(schedule: PayoutSchedule, from_date: Optional[datetime] = None) -> datetime:
    """Midnight of the next scheduled payout day strictly after ``from_date``."""

    start = _midnight(from_date or utc_now())
    if schedule.interval == PayoutInterval.DAILY:
        return start + timedelta(days=1)
    if schedule.interval == PayoutInterval.WEEKLY:
        days_ahead = (schedule.day_of_week - start.weekday()) % 7 or 7
        return start + timedelta(days=days_ahead)
    return _add_month(start.replace(day=1), schedule.day_of_month)


def payout_period(schedule: PayoutSchedule, for_date: Optional[datetime] = None) -> PayoutPeriod:
    """The schedule window containing ``for_date``; ``end`` is inclusive."""

    moment = for_date or utc_now()
    day = _midnight(moment)
    if schedule.interval == PayoutInterval.DAILY:
        return PayoutPeriod(start=day, end=day + timedelta(days=1) - _ONE_MICROSECOND)
    if schedule.interval == PayoutInterval.WEEKLY:
        start = day - timedelta(days=(day.weekday() - schedule.day_of_week) % 7)
        return PayoutPeriod(start=start, end=start + timedelta(days=7) - _ONE_MICROSECOND)
    start = day.replace(day=1)
    return PayoutPeriod(start=start, end=_add_month(start, 1) - _ONE_MICROSECOND)


def is_within_payout_period(moment: datetime, period: PayoutPeriod) -> bool:
    return period.contains(moment)


def create_payout(
    vendor_id: str,
    amount: int,
    currency: str,
    period: PayoutPeriod,
    *,
    clock: Optional[Clock] = None,
) -> VendorPayout:
    return VendorPayout(
        id=new_id("po"),
        vendor_id=vendor_id,
        amount=amount,
        currency=currency,
        status=PayoutStatus.PENDING,
        period_start=period.start,
        period_end=period.end,
        created_at=(clock or utc_now)(),
    )


def check_payout_eligibility(
    vendor: Vendor,
    pending_amount: int,
    min_payout_amount: int = 0,
    *,
    now: Optional[datetime] = None,
) -> PayoutEligibility:
    if not vendor.is_active:
        return PayoutEligibility(eligible=False, reason="Vendor is not active")
    if not vendor.can_receive_payments:
        return PayoutEligibility(eligible=False, reason="Vendor has no payment account configured")
    if pending_amount < min_payout_amount:
        return PayoutEligibility(
            eligible=False,
            reason=f"Minimum payout amount of {min_payout_amount} not reached",
            next_eligible_date=next_payout_date(vendor.payout_schedule, now),
        )
    return PayoutEligibility(eligible=True)


def _transition(payout: VendorPayout, target: PayoutStatus, **updates: object) -> VendorPayout:
    if target not in PAYOUT_TRANSITIONS[payout.status]:
        raise InvalidStateError(
            f"Cannot move payout {payout.id} from {payout.status.value} to {target.value}",
            current_status=payout.status.value,
            action=f"mark_{target.value}",
        )
    return payout.model_copy(update={"status": target, **updates})


def mark_payout_processing(payout: VendorPayout) -> VendorPayout:
    return _transition(payout, PayoutStatus.PROCESSING)


def mark_payout_paid(
    payout: VendorPayout,
    *,
    provider: Optional[str] = None,
    provider_payout_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> VendorPayout:
    provider_payout_ids = dict(payout.provider_payout_ids)
    if provider and provider_payout_id:
        provider_payout_ids[provider] = provider_payout_id
    return _transition(
        payout,
        PayoutStatus.PAID,
        paid_at=(clock or utc_now)(),
        provider_payout_ids=provider_payout_ids,
    )


def mark_payout_failed(payout: VendorPayout, reason: Optional[str] = None) -> VendorPayout:
    return _transition(payout, PayoutStatus.FAILED, failure_reason=reason)


def calculate_vendor_earnings(payouts: Iterable[VendorPayout]) -> int:
    return sum(payout.amount for payout in payouts if payout.status == PayoutStatus.PAID)


def calculate_pending_earnings(payouts: Iterable[VendorPayout]) -> int:
    return sum(
        payout.amount
        for payout in payouts
        if payout.status in {PayoutStatus.PENDING, PayoutStatus.PROCESSING}
    )


def filter_payouts_by_status(payouts: Iterable[VendorPayout], status: PayoutStatus) -> List[VendorPayout]:
    return [payout for payout in payouts if payout.status == status]


def filter_payouts_by_date_range(
    payouts: Iterable[VendorPayout],
    start: datetime,
    end: datetime,
) -> List[VendorPayout]:
    return [payout for payout in payouts if start <= payout.created_at <= end]


__all__ = [
    "PAYOUT_TRANSITIONS",
    "PayoutEligibility",
    "PayoutPeriod",
    "calculate_pending_earnings",
    "calculate_vendor_earnings",
    "check_payout_eligibility",
    "create_payout",
    "filter_payouts_by_date_range",
    "filter_payouts_by_status",
    "is_within_payout_period",
    "mark_payout_failed",
    "mark_payout_paid",
    "mark_payout_processing",
    "next_payout_date",
    "payout_period",
]
