"""Locale-aware rendering of minor-unit amounts."""
from __future__ import annotations

from babel.numbers import format_currency

from .amounts import to_decimal


def format_money(amount: int, currency: str, locale: str = "en_US") -> str:
    """Render ``amount`` (minor units) for display, e.g. ``$19.00``."""

    return format_currency(to_decimal(amount, currency), currency.upper(), locale=locale)


__all__ = ["format_money"]
