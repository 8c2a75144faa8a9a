"""Integer minor-unit arithmetic with overflow protection."""
from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, List, Union

from babel.numbers import get_currency_precision

from ...config import DEFAULT_MAX_SAFE_AMOUNT
from ..errors import AmountOverflowError, InvalidPeriodError, ValidationError

Number = Union[int, float, Decimal, Fraction]

DEFAULT_DECIMALS = 2

# Explicit table for the currencies we bill in; babel covers the rest.
CURRENCY_DECIMALS = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "ARS": 2,
    "BRL": 2,
    "MXN": 2,
    "COP": 2,
    "PEN": 2,
    "UYU": 2,
    "CLP": 0,
    "JPY": 0,
    "KRW": 0,
}


def get_currency_decimals(currency: str) -> int:
    code = currency.upper()
    if code in CURRENCY_DECIMALS:
        return CURRENCY_DECIMALS[code]
    try:
        return int(get_currency_precision(code))
    except (KeyError, ValueError):
        return DEFAULT_DECIMALS


def _exact(value: Number) -> Fraction:
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"Expected a finite number, got {value!r}")
        return Fraction(str(value))
    return Fraction(value)


def round_half_up(value: Number) -> int:
    """Round to the nearest integer, halves away from zero."""

    exact = _exact(value)
    if exact < 0:
        return -math.floor(-exact + Fraction(1, 2))
    return math.floor(exact + Fraction(1, 2))


def to_decimal(amount: int, currency: str) -> Decimal:
    """Convert minor units into the currency's decimal representation."""

    decimals = get_currency_decimals(currency)
    return (Decimal(amount) / (Decimal(10) ** decimals)).quantize(Decimal(1).scaleb(-decimals))


def from_decimal(amount: Number, currency: str) -> int:
    """Convert a decimal currency amount into integer minor units."""

    decimals = get_currency_decimals(currency)
    if isinstance(amount, float):
        amount = Decimal(str(amount))
    return round_half_up(Decimal(amount) * (Decimal(10) ** decimals))


def is_valid_amount(amount: object) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount >= 0


def assert_valid_amount(amount: object, name: str = "amount") -> int:
    if not is_valid_amount(amount):
        raise ValidationError(
            f"{name} must be a non-negative integer in minor units, got {amount!r}",
            detail={"field": name},
        )
    return amount  # type: ignore[return-value]


def add(a: int, b: int) -> int:
    return a + b


def subtract(a: int, b: int) -> int:
    return a - b


def multiply_by_factor(amount: int, factor: Number) -> int:
    return round_half_up(Fraction(amount) * _exact(factor))


def percentage_of(amount: int, percentage: Number) -> int:
    return round_half_up(Fraction(amount) * _exact(percentage) / 100)


def apply_percentage_discount(amount: int, percentage: Number) -> int:
    return max(0, amount - percentage_of(amount, percentage))


def apply_fixed_discount(amount: int, discount: int) -> int:
    return max(0, amount - discount)


def prorate(total_amount: int, total_days: Number, used_days: Number) -> int:
    """Return ``round(total_amount / total_days * used_days)``."""

    if total_days <= 0:
        raise InvalidPeriodError(
            f"Cannot prorate over a billing period of {total_days} days",
            total_days=float(total_days),
        )
    return round_half_up(Fraction(total_amount) / _exact(total_days) * _exact(used_days))


def split_amount(amount: int, parts: int) -> List[int]:
    """Split evenly; the remainder goes to the first shares one unit at a time."""

    if parts <= 0:
        raise ValidationError("parts must be >= 1", detail={"parts": parts})
    base, remainder = divmod(amount, parts)
    return [base + 1 if index < remainder else base for index in range(parts)]


def is_amount_safe(amount: Number, max_amount: int = DEFAULT_MAX_SAFE_AMOUNT) -> bool:
    if isinstance(amount, float) and not math.isfinite(amount):
        return False
    return 0 <= amount <= max_amount


def assert_amount_safe(
    amount: Number,
    *,
    operation: str = "calculate",
    operands: Iterable[Number] = (),
    context: str = "amount",
    max_amount: int = DEFAULT_MAX_SAFE_AMOUNT,
) -> None:
    if not is_amount_safe(amount, max_amount):
        raise AmountOverflowError(
            f"{context} {amount} exceeds the maximum safe amount {max_amount} during {operation}",
            operation=operation,
            operands=tuple(operands) or (amount,),
        )


def safe_add(a: int, b: int, *, max_amount: int = DEFAULT_MAX_SAFE_AMOUNT) -> int:
    operands = (a, b)
    assert_amount_safe(a, operation="add", operands=operands, context="first operand", max_amount=max_amount)
    assert_amount_safe(b, operation="add", operands=operands, context="second operand", max_amount=max_amount)
    result = a + b
    assert_amount_safe(result, operation="add", operands=operands, context="result", max_amount=max_amount)
    return result


def safe_multiply(amount: int, quantity: Number, *, max_amount: int = DEFAULT_MAX_SAFE_AMOUNT) -> int:
    operands = (amount, quantity)
    assert_amount_safe(amount, operation="multiply", operands=operands, context="unit amount", max_amount=max_amount)
    if quantity < 0 or (isinstance(quantity, float) and not math.isfinite(quantity)):
        raise ValidationError(
            f"quantity must be a finite non-negative number, got {quantity!r}",
            detail={"field": "quantity"},
        )
    result = multiply_by_factor(amount, quantity)
    assert_amount_safe(result, operation="multiply", operands=operands, context="result", max_amount=max_amount)
    return result


def calculate_invoice_total(amounts: Iterable[int], *, max_amount: int = DEFAULT_MAX_SAFE_AMOUNT) -> int:
    """Fold overflow-safe addition over line amounts."""

    total = 0
    for amount in amounts:
        total = safe_add(total, amount, max_amount=max_amount)
    return total


__all__ = [
    "CURRENCY_DECIMALS",
    "add",
    "apply_fixed_discount",
    "apply_percentage_discount",
    "assert_amount_safe",
    "assert_valid_amount",
    "calculate_invoice_total",
    "from_decimal",
    "get_currency_decimals",
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
