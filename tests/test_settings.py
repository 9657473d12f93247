"""Tests for settings and billing configuration."""

import pytest

from oficaz.platform.billing.config import BillingConfig, get_billing_config, set_billing_config
from oficaz.platform.settings import Environment, Settings, get_settings, reset_settings

pytestmark = pytest.mark.unit


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.billing.default_trial_days == 14
        assert settings.billing.addon_cooldown_days == 30
        assert settings.billing.default_currency == "EUR"
        assert settings.billing.payment_timeout_seconds == 10.0

    def test_test_environment(self):
        settings = Settings()
        assert settings.environment is Environment.TEST
        assert settings.is_testing is True
        assert settings.is_production is False

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("BILLING__ADDON_COOLDOWN_DAYS", "45")
        monkeypatch.setenv("BILLING__STRIPE_API_KEY", "sk_test_env")

        settings = Settings()

        assert settings.billing.addon_cooldown_days == 45
        assert settings.billing.stripe_api_key == "sk_test_env"

    def test_environment_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "PRODUCTION")
        assert Settings().is_production is True

    def test_singleton_reset(self):
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first


class TestBillingConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setattr(
            "oficaz.platform.settings.settings",
            Settings(billing={"billing_period_days": 28, "trial_expiring_threshold_days": 5}),
        )

        config = BillingConfig.from_env()

        assert config.period.length_days == 28
        assert config.trial.expiring_threshold_days == 5
        assert config.payment.stripe_api_key is None
        assert config.currency.locale == "es_ES"

    def test_global_instance(self):
        config = BillingConfig(sweep_batch_size=10)
        set_billing_config(config)
        try:
            assert get_billing_config() is config
        finally:
            set_billing_config(None)

    def test_frozen(self):
        with pytest.raises(ValueError):
            BillingConfig().sweep_batch_size = 5

    def test_validation(self):
        with pytest.raises(ValueError):
            BillingConfig(period={"length_days": 0})
