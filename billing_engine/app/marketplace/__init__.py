"""Vendor payment splits, commissions and payouts."""

from .models import (
    DEFAULT_COMMISSION_RATE,
    PayoutInterval,
    PayoutSchedule,
    PayoutStatus,
    Vendor,
    VendorPayout,
    VendorStatus,
)
from .payouts import (
    PAYOUT_TRANSITIONS,
    PayoutEligibility,
    PayoutPeriod,
    calculate_pending_earnings,
    calculate_vendor_earnings,
    check_payout_eligibility,
    create_payout,
    filter_payouts_by_date_range,
    filter_payouts_by_status,
    is_within_payout_period,
    mark_payout_failed,
    mark_payout_paid,
    mark_payout_processing,
    next_payout_date,
    payout_period,
)
from .splits import (
    MultiVendorSplitConfig,
    MultiVendorSplitResult,
    RevenueShareConfig,
    RevenueShares,
    SplitConfig,
    SplitResult,
    VendorShare,
    VendorSplit,
    calculate_multi_vendor_split,
    calculate_platform_commission,
    calculate_revenue_shares,
    calculate_split,
    calculate_vendor_amount,
)

__all__ = [
    "DEFAULT_COMMISSION_RATE",
    "MultiVendorSplitConfig",
    "MultiVendorSplitResult",
    "PAYOUT_TRANSITIONS",
    "PayoutEligibility",
    "PayoutInterval",
    "PayoutPeriod",
    "PayoutSchedule",
    "PayoutStatus",
    "RevenueShareConfig",
    "RevenueShares",
    "SplitConfig",
    "SplitResult",
    "Vendor",
    "VendorPayout",
    "VendorShare",
    "VendorSplit",
    "VendorStatus",
    "calculate_multi_vendor_split",
    "calculate_pending_earnings",
    "calculate_platform_commission",
    "calculate_revenue_shares",
    "calculate_split",
    "calculate_vendor_amount",
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
