"""Cents-based money arithmetic, proration and formatting."""

from .amounts import (
    CURRENCY_DECIMALS,
    add,
    apply_fixed_discount,
    apply_percentage_discount,
    assert_amount_safe,
    assert_valid_amount,
    calculate_invoice_total,
    from_decimal,
    get_currency_decimals,
    is_amount_safe,
    is_valid_amount,
    multiply_by_factor,
    percentage_of,
    prorate,
    round_half_up,
    safe_add,
    safe_multiply,
    split_amount,
    subtract,
    to_decimal,
)
from .formatting import format_money
from .proration import PeriodInfo, ProrationResult, calculate_plan_change_proration, get_period_info

__all__ = [
    "CURRENCY_DECIMALS",
    "PeriodInfo",
    "ProrationResult",
    "add",
    "apply_fixed_discount",
    "apply_percentage_discount",
    "assert_amount_safe",
    "assert_valid_amount",
    "calculate_invoice_total",
    "calculate_plan_change_proration",
    "format_money",
    "from_decimal",
    "get_currency_decimals",
    "get_period_info",
    "is_amount_safe",
    "is_valid_amount",
    "multiply_by_factor",
    "percentage_of",
    "prorate",
    "round_half_up",
    "safe_add",
    "safe_multiply",
    "split_amount",
    "subtract",
    "to_decimal",
]
