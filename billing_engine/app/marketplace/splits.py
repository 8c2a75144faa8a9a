"""Splitting marketplace payments between vendors and the platform.

Every function here returns parts that add up to the input amount exactly.
Rounding leftovers always land on the platform fee.
"""
from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Sequence, Tuple

from ..errors import ValidationError
from ..money.amounts import Number, assert_valid_amount, percentage_of, round_half_up


def _check_percentage(value: Optional[Number], field: str) -> None:
    if value is not None and not 0 <= value <= 100:
        raise ValidationError(f"{field} must be between 0 and 100", detail={"field": field, "value": value})


def _fraction(value: Number) -> Fraction:
    return Fraction(str(value)) if isinstance(value, float) else Fraction(value)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def calculate_platform_commission(
    amount: int,
    commission_rate: Number,
    *,
    min_commission: Optional[int] = None,
    max_commission: Optional[int] = None,
) -> int:
    commission = percentage_of(amount, commission_rate)
    if min_commission is not None:
        commission = max(commission, min_commission)
    if max_commission is not None:
        commission = min(commission, max_commission)
    return commission


def calculate_vendor_amount(
    total_amount: int,
    commission_rate: Number,
    *,
    min_commission: Optional[int] = None,
    max_commission: Optional[int] = None,
) -> int:
    commission = calculate_platform_commission(
        total_amount,
        commission_rate,
        min_commission=min_commission,
        max_commission=max_commission,
    )
    return total_amount - _clamp(commission, 0, total_amount)


@dataclass(frozen=True)
class SplitConfig:
    """Vendor share as an amount or percentage, plus optional platform fee rules.

    The platform fee comes from ``platform_fee`` first, then
    ``platform_fee_percentage``, else whatever the vendor share leaves over.
    """

    vendor_id: str
    vendor_amount: Optional[int] = None
    vendor_percentage: Optional[Number] = None
    platform_fee: Optional[int] = None
    platform_fee_percentage: Optional[Number] = None
    min_platform_fee: Optional[int] = None
    max_platform_fee: Optional[int] = None


@dataclass(frozen=True)
class SplitResult:
    vendor_id: str
    total_amount: int
    vendor_amount: int
    platform_fee: int
    currency: str


def calculate_split(total_amount: int, config: SplitConfig, currency: str) -> SplitResult:
    assert_valid_amount(total_amount, "total_amount")
    _check_percentage(config.vendor_percentage, "vendor_percentage")
    _check_percentage(config.platform_fee_percentage, "platform_fee_percentage")

    if config.vendor_amount is not None:
        vendor_share = config.vendor_amount
    elif config.vendor_percentage is not None:
        vendor_share = percentage_of(total_amount, config.vendor_percentage)
    else:
        vendor_share = total_amount

    if config.platform_fee is not None:
        platform_fee = config.platform_fee
    elif config.platform_fee_percentage is not None:
        platform_fee = percentage_of(total_amount, config.platform_fee_percentage)
    else:
        platform_fee = total_amount - vendor_share

    if config.min_platform_fee is not None:
        platform_fee = max(platform_fee, config.min_platform_fee)
    if config.max_platform_fee is not None:
        platform_fee = min(platform_fee, config.max_platform_fee)
    platform_fee = _clamp(platform_fee, 0, total_amount)

    return SplitResult(
        vendor_id=config.vendor_id,
        total_amount=total_amount,
        vendor_amount=total_amount - platform_fee,
        platform_fee=platform_fee,
        currency=currency.upper(),
    )


@dataclass(frozen=True)
class VendorShare:
    vendor_id: str
    amount: Optional[int] = None
    percentage: Optional[Number] = None


@dataclass(frozen=True)
class MultiVendorSplitConfig:
    total_amount: int
    currency: str
    splits: Sequence[VendorShare]
    platform_fee_percentage: Optional[Number] = None
    min_platform_fee: Optional[int] = None


@dataclass(frozen=True)
class VendorSplit:
    vendor_id: str
    amount: int
    # Proportional slice of the platform fee, for reporting only.
    platform_fee: int


@dataclass(frozen=True)
class MultiVendorSplitResult:
    total_amount: int
    vendor_payouts: Tuple[VendorSplit, ...]
    platform_fee: int
    currency: str

    @property
    def vendor_total(self) -> int:
        return sum(payout.amount for payout in self.vendor_payouts)


def calculate_multi_vendor_split(config: MultiVendorSplitConfig) -> MultiVendorSplitResult:
    """Share ``total_amount`` among vendors after the platform fee.

    Nominal shares are scaled to what is left after the fee and floored;
    the pennies lost to flooring are added to the platform fee.
    """

    total = assert_valid_amount(config.total_amount, "total_amount")
    _check_percentage(config.platform_fee_percentage, "platform_fee_percentage")

    nominal = []
    for share in config.splits:
        _check_percentage(share.percentage, "percentage")
        if share.amount is not None:
            nominal.append((share.vendor_id, assert_valid_amount(share.amount, "amount")))
        elif share.percentage is not None:
            nominal.append((share.vendor_id, percentage_of(total, share.percentage)))
        else:
            raise ValidationError(
                f"Share for vendor {share.vendor_id} needs an amount or a percentage",
                detail={"vendor_id": share.vendor_id},
            )
    total_nominal = sum(amount for _, amount in nominal)

    platform_fee = total - total_nominal
    if config.platform_fee_percentage is not None:
        platform_fee = max(platform_fee, percentage_of(total, config.platform_fee_percentage))
    if config.min_platform_fee is not None:
        platform_fee = max(platform_fee, config.min_platform_fee)
    platform_fee = _clamp(platform_fee, 0, total)

    available = total - platform_fee
    if total_nominal > 0:
        amounts = [(vendor_id, amount * available // total_nominal) for vendor_id, amount in nominal]
    else:
        amounts = [(vendor_id, 0) for vendor_id, _ in nominal]
    vendor_total = sum(amount for _, amount in amounts)
    platform_fee += available - vendor_total

    payouts = tuple(
        VendorSplit(
            vendor_id=vendor_id,
            amount=amount,
            platform_fee=round_half_up(Fraction(amount, vendor_total) * platform_fee) if vendor_total else 0,
        )
        for vendor_id, amount in amounts
    )
    return MultiVendorSplitResult(
        total_amount=total,
        vendor_payouts=payouts,
        platform_fee=platform_fee,
        currency=config.currency.upper(),
    )


@dataclass(frozen=True)
class RevenueShareConfig:
    vendor_rate: Number
    platform_rate: Number
    affiliate_rate: Optional[Number] = None
    referral_rate: Optional[Number] = None


@dataclass(frozen=True)
class RevenueShares:
    vendor_amount: int
    platform_amount: int
    affiliate_amount: int = 0
    referral_amount: int = 0

    @property
    def total(self) -> int:
        return self.vendor_amount + self.platform_amount + self.affiliate_amount + self.referral_amount


def calculate_revenue_shares(
    amount: int,
    config: RevenueShareConfig,
    *,
    affiliate_id: Optional[str] = None,
    referrer_id: Optional[str] = None,
) -> RevenueShares:
    """Take the affiliate cut, then the referral cut, then split the rest."""

    assert_valid_amount(amount)
    for name in ("vendor_rate", "platform_rate", "affiliate_rate", "referral_rate"):
        _check_percentage(getattr(config, name), name)
    if config.vendor_rate + config.platform_rate <= 0:
        raise ValidationError("vendor_rate and platform_rate cannot both be zero", detail={"field": "vendor_rate"})

    remaining = amount
    affiliate_amount = 0
    referral_amount = 0
    if affiliate_id and config.affiliate_rate:
        affiliate_amount = min(remaining, percentage_of(amount, config.affiliate_rate))
        remaining -= affiliate_amount
    if referrer_id and config.referral_rate:
        referral_amount = min(remaining, percentage_of(amount, config.referral_rate))
        remaining -= referral_amount

    vendor_rate = _fraction(config.vendor_rate)
    vendor_amount = round_half_up(remaining * vendor_rate / (vendor_rate + _fraction(config.platform_rate)))
    return RevenueShares(
        vendor_amount=vendor_amount,
        platform_amount=remaining - vendor_amount,
        affiliate_amount=affiliate_amount,
        referral_amount=referral_amount,
    )


__all__ = [
    "MultiVendorSplitConfig",
    "MultiVendorSplitResult",
    "RevenueShareConfig",
    "RevenueShares",
    "SplitConfig",
    "SplitResult",
    "VendorShare",
    "VendorSplit",
    "calculate_multi_vendor_split",
    "calculate_platform_commission",
    "calculate_revenue_shares",
    "calculate_split",
    "calculate_vendor_amount",
]
