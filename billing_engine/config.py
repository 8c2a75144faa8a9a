"""Billing engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
import os

from dotenv import dotenv_values


DEFAULT_MAX_SAFE_AMOUNT = 99_999_999_999
RETRY_EXHAUSTED_STATUSES = frozenset({"canceled", "unpaid"})


@dataclass(frozen=True)
class RetryPolicy:
    """Dunning policy applied to past-due subscriptions."""

    max_retries: int = 3
    retry_interval_days: int = 2
    exhausted_status: str = "canceled"


@dataclass(frozen=True)
class BillingConfig:
    """Construction-time settings for the billing engine."""

    default_currency: str = "USD"
    livemode: bool = False
    grace_period_days: int = 7
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    max_safe_amount: int = DEFAULT_MAX_SAFE_AMOUNT
    provider_max_attempts: int = 3
    provider_backoff_seconds: float = 0.5
    webhook_secret: Optional[str] = None
    database_url: Optional[str] = None

    def __post_init__(self) -> None:
        if len(self.default_currency) != 3:
            raise ValueError(f"default_currency must be an ISO 4217 code, got {self.default_currency!r}")
        object.__setattr__(self, "default_currency", self.default_currency.upper())
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days must be >= 0")
        if self.max_safe_amount <= 0:
            raise ValueError("max_safe_amount must be positive")
        if self.retry_policy.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_policy.retry_interval_days < 0:
            raise ValueError("retry_interval_days must be >= 0")
        if self.retry_policy.exhausted_status not in RETRY_EXHAUSTED_STATUSES:
            raise ValueError(
                f"exhausted_status must be one of {sorted(RETRY_EXHAUSTED_STATUSES)},"
                f" got {self.retry_policy.exhausted_status!r}"
            )


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _merged_environment(env: Optional[Mapping[str, str]], env_file: Optional[str]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    if env_file:
        merged.update({key: value for key, value in dotenv_values(env_file).items() if value is not None})
    merged.update(os.environ if env is None else env)
    return merged


def load_billing_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    env_file: Optional[str] = None,
) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables.

    Values from ``env_file`` are read with python-dotenv and are overridden by
    the process environment (or ``env`` when given).
    """

    env_mapping = _merged_environment(env, env_file)

    provider_key = env_mapping.get("STRIPE_SECRET_KEY") or ""
    livemode = _to_bool(
        env_mapping.get("BILLING_LIVEMODE"),
        default=provider_key.startswith("sk_live_"),
    )

    retry_policy = RetryPolicy(
        max_retries=_to_int(env_mapping.get("BILLING_MAX_RETRIES"), default=3),
        retry_interval_days=_to_int(env_mapping.get("BILLING_RETRY_INTERVAL_DAYS"), default=2),
        exhausted_status=(env_mapping.get("BILLING_RETRY_EXHAUSTED_STATUS") or "canceled").strip().lower(),
    )

    return BillingConfig(
        default_currency=(env_mapping.get("BILLING_DEFAULT_CURRENCY") or "USD").strip(),
        livemode=livemode,
        grace_period_days=_to_int(env_mapping.get("BILLING_GRACE_PERIOD_DAYS"), default=7),
        retry_policy=retry_policy,
        max_safe_amount=_to_int(env_mapping.get("BILLING_MAX_SAFE_AMOUNT"), default=DEFAULT_MAX_SAFE_AMOUNT),
        provider_max_attempts=max(1, _to_int(env_mapping.get("BILLING_PROVIDER_MAX_ATTEMPTS"), default=3)),
        provider_backoff_seconds=max(
            0.0, _to_float(env_mapping.get("BILLING_PROVIDER_BACKOFF_SECONDS"), default=0.5)
        ),
        webhook_secret=env_mapping.get("BILLING_WEBHOOK_SECRET") or None,
        database_url=env_mapping.get("BILLING_DATABASE_URL") or None,
    )


__all__ = ["BillingConfig", "DEFAULT_MAX_SAFE_AMOUNT", "RetryPolicy", "load_billing_config"]
