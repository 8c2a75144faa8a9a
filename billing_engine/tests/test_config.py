from __future__ import annotations

import pytest

from billing_engine.config import DEFAULT_MAX_SAFE_AMOUNT, BillingConfig, RetryPolicy, load_billing_config


def test_defaults_when_environment_is_empty() -> None:
    config = load_billing_config({})

    assert config == BillingConfig()
    assert config.default_currency == "USD"
    assert config.livemode is False
    assert config.retry_policy == RetryPolicy(max_retries=3, retry_interval_days=2, exhausted_status="canceled")
    assert config.max_safe_amount == DEFAULT_MAX_SAFE_AMOUNT
    assert config.webhook_secret is None


def test_values_are_read_from_environment() -> None:
    config = load_billing_config(
        {
            "BILLING_DEFAULT_CURRENCY": "eur",
            "BILLING_GRACE_PERIOD_DAYS": "3",
            "BILLING_MAX_RETRIES": "5",
            "BILLING_RETRY_INTERVAL_DAYS": "1",
            "BILLING_RETRY_EXHAUSTED_STATUS": "Unpaid",
            "BILLING_PROVIDER_MAX_ATTEMPTS": "0",
            "BILLING_PROVIDER_BACKOFF_SECONDS": "0.25",
            "BILLING_WEBHOOK_SECRET": "whsec_123",
            "BILLING_DATABASE_URL": "postgresql://localhost/billing",
        }
    )

    assert config.default_currency == "EUR"
    assert config.grace_period_days == 3
    assert config.retry_policy == RetryPolicy(max_retries=5, retry_interval_days=1, exhausted_status="unpaid")
    assert config.provider_max_attempts == 1
    assert config.provider_backoff_seconds == 0.25
    assert config.webhook_secret == "whsec_123"
    assert config.database_url == "postgresql://localhost/billing"


def test_livemode_follows_the_provider_key() -> None:
    assert load_billing_config({"STRIPE_SECRET_KEY": "sk_live_abc"}).livemode is True
    assert load_billing_config({"STRIPE_SECRET_KEY": "sk_test_abc"}).livemode is False
    assert load_billing_config({"STRIPE_SECRET_KEY": "sk_live_abc", "BILLING_LIVEMODE": "false"}).livemode is False
    assert load_billing_config({"BILLING_LIVEMODE": "yes"}).livemode is True


def test_env_file_is_overridden_by_environment(tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("BILLING_DEFAULT_CURRENCY=GBP\nBILLING_GRACE_PERIOD_DAYS=10\n")

    config = load_billing_config({"BILLING_GRACE_PERIOD_DAYS": "2"}, env_file=str(env_file))

    assert config.default_currency == "GBP"
    assert config.grace_period_days == 2


def test_bad_integer_raises() -> None:
    with pytest.raises(ValueError):
        load_billing_config({"BILLING_MAX_RETRIES": "many"})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"default_currency": "DOLLARS"},
        {"grace_period_days": -1},
        {"max_safe_amount": 0},
        {"retry_policy": RetryPolicy(exhausted_status="suspended")},
        {"retry_policy": RetryPolicy(max_retries=-1)},
    ],
)
def test_invalid_config_is_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        BillingConfig(**kwargs)
