from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from billing_engine.app.errors import AmountOverflowError, InvalidPeriodError, ValidationError
from billing_engine.app.money import (
    CURRENCY_DECIMALS,
    apply_fixed_discount,
    apply_percentage_discount,
    calculate_invoice_total,
    calculate_plan_change_proration,
    format_money,
    from_decimal,
    get_currency_decimals,
    get_period_info,
    is_amount_safe,
    is_valid_amount,
    percentage_of,
    prorate,
    round_half_up,
    safe_add,
    safe_multiply,
    split_amount,
    to_decimal,
)
from billing_engine.config import DEFAULT_MAX_SAFE_AMOUNT


def test_round_half_up_rounds_halves_away_from_zero() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(-2.5) == -3
    assert round_half_up(Decimal("1.49")) == 1


def test_currency_decimals_use_table_then_babel() -> None:
    assert get_currency_decimals("usd") == 2
    assert get_currency_decimals("JPY") == 0
    assert get_currency_decimals("KWD") == 3


def test_decimal_conversion_respects_currency_precision() -> None:
    assert to_decimal(1999, "USD") == Decimal("19.99")
    assert to_decimal(500, "JPY") == Decimal("500")
    assert from_decimal(19.99, "USD") == 1999
    assert from_decimal(Decimal("0.015"), "USD") == 2
    assert from_decimal(1234, "CLP") == 1234


@pytest.mark.parametrize("currency", sorted(CURRENCY_DECIMALS) + ["KWD"])
@pytest.mark.parametrize("amount", [0, 1, 99, DEFAULT_MAX_SAFE_AMOUNT])
def test_decimal_conversion_round_trips(currency, amount) -> None:
    assert from_decimal(to_decimal(amount, currency), currency) == amount


def test_is_valid_amount_rejects_floats_negatives_and_bools() -> None:
    assert is_valid_amount(0) is True
    assert is_valid_amount(1999) is True
    assert is_valid_amount(19.99) is False
    assert is_valid_amount(-1) is False
    assert is_valid_amount(True) is False


def test_percentages_and_discounts() -> None:
    assert percentage_of(1999, 10) == 200
    assert apply_percentage_discount(1000, 15) == 850
    assert apply_percentage_discount(1000, 150) == 0
    assert apply_fixed_discount(500, 700) == 0


def test_split_amount_gives_remainder_to_first_parts() -> None:
    assert split_amount(100, 3) == [34, 33, 33]
    assert sum(split_amount(1001, 7)) == 1001

    with pytest.raises(ValidationError):
        split_amount(100, 0)


def test_prorate_scales_by_used_days() -> None:
    assert prorate(3000, 30, 10) == 1000
    assert prorate(1000, 3, 1) == 333
    assert prorate(1000, 3, 2) == 667


def test_prorate_rejects_empty_period() -> None:
    with pytest.raises(InvalidPeriodError) as exc:
        prorate(1000, 0, 5)

    assert exc.value.code == "invalid_period"
    assert exc.value.payload["total_days"] == 0


def test_safe_add_raises_on_overflow() -> None:
    assert safe_add(DEFAULT_MAX_SAFE_AMOUNT - 1, 1) == DEFAULT_MAX_SAFE_AMOUNT

    with pytest.raises(AmountOverflowError) as exc:
        safe_add(DEFAULT_MAX_SAFE_AMOUNT, 1)

    assert exc.value.operation == "add"
    assert exc.value.payload["operands"] == [DEFAULT_MAX_SAFE_AMOUNT, 1]


def test_safe_multiply_checks_quantity_and_result() -> None:
    assert safe_multiply(1900, 3) == 5700
    assert safe_multiply(1000, 0.5) == 500

    with pytest.raises(ValidationError):
        safe_multiply(1000, -1)

    with pytest.raises(AmountOverflowError):
        safe_multiply(1000, 10, max_amount=5000)


def test_invoice_total_folds_safe_addition() -> None:
    assert calculate_invoice_total([1900, 500, 99]) == 2499
    assert calculate_invoice_total([]) == 0

    with pytest.raises(AmountOverflowError):
        calculate_invoice_total([3000, 3000], max_amount=5000)


def test_is_amount_safe_rejects_non_finite_values() -> None:
    assert is_amount_safe(100) is True
    assert is_amount_safe(float("inf")) is False
    assert is_amount_safe(-(DEFAULT_MAX_SAFE_AMOUNT + 1)) is False


def test_negative_amounts_are_unsafe() -> None:
    assert is_amount_safe(-1) is False

    with pytest.raises(AmountOverflowError) as exc:
        safe_add(-5, 3)

    assert exc.value.payload["operands"] == [-5, 3]
    with pytest.raises(AmountOverflowError):
        safe_add(3, -5)


def test_format_money_uses_locale() -> None:
    assert format_money(1999, "USD") == "$19.99"
    assert format_money(1500, "JPY", locale="en_US") == "¥1,500"


def test_period_info_counts_partial_days() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 31, tzinfo=timezone.utc)

    info = get_period_info(start, end, datetime(2024, 1, 16, 6, tzinfo=timezone.utc))

    assert info.days_in_period == 30
    assert info.days_remaining == 15
    assert info.days_elapsed == 15
    assert info.percent_complete == 50.0


def test_upgrade_proration_charges_the_difference() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 31, tzinfo=timezone.utc)

    result = calculate_plan_change_proration(
        current_unit_amount=3000,
        new_unit_amount=6000,
        quantity=1,
        period_start=start,
        period_end=end,
        now=datetime(2024, 1, 16, tzinfo=timezone.utc),
    )

    assert result.unused_amount == 1500
    assert result.new_amount == 3000
    assert result.charge_amount == 1500
    assert result.credit_amount == 0
    assert result.net_amount == 1500
    assert result.to_dict()["days_remaining"] == 15


def test_downgrade_proration_credits_the_difference() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 31, tzinfo=timezone.utc)

    result = calculate_plan_change_proration(
        current_unit_amount=6000,
        new_unit_amount=3000,
        quantity=2,
        period_start=start,
        period_end=end,
        now=datetime(2024, 1, 16, tzinfo=timezone.utc),
    )

    assert result.credit_amount == 3000
    assert result.charge_amount == 0
    assert result.net_amount == -3000


def test_proration_after_period_end_is_zero() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 31, tzinfo=timezone.utc)

    result = calculate_plan_change_proration(
        current_unit_amount=3000,
        new_unit_amount=6000,
        quantity=1,
        period_start=start,
        period_end=end,
        now=datetime(2024, 2, 5, tzinfo=timezone.utc),
    )

    assert result.days_remaining == 0
    assert result.charge_amount == 0
    assert result.credit_amount == 0


def test_proration_over_zero_length_period_raises() -> None:
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)

    with pytest.raises(InvalidPeriodError):
        calculate_plan_change_proration(
            current_unit_amount=3000,
            new_unit_amount=6000,
            quantity=1,
            period_start=moment,
            period_end=moment,
            now=moment,
        )
