"""
Billing module configuration
"""

from pydantic import BaseModel, ConfigDict, Field


class TrialConfig(BaseModel):
    """Trial configuration"""

    model_config = ConfigDict(frozen=True)

    default_duration_days: int = Field(14, ge=0, description="Trial length for new companies")
    expiring_threshold_days: int = Field(
        3, ge=0, description="Days remaining at which a trial is reported as expiring"
    )


class AddonConfig(BaseModel):
    """Add-on lifecycle configuration"""

    model_config = ConfigDict(frozen=True)

    cooldown_days: int = Field(
        30, ge=0, description="Days a cancelled add-on stays locked before repurchase"
    )


class PeriodConfig(BaseModel):
    """Billing period configuration"""

    model_config = ConfigDict(frozen=True)

    length_days: int = Field(30, gt=0, description="Length of a billing period in days")


class PaymentConfig(BaseModel):
    """Payment configuration"""

    model_config = ConfigDict(frozen=True)

    provider: str = Field("stripe", description="Payment provider")
    timeout_seconds: float = Field(10.0, gt=0, description="Timeout for processor calls")
    stripe_api_key: str | None = Field(None, description="Stripe secret key")


class CurrencyConfig(BaseModel):
    """Currency configuration - Single currency support"""

    model_config = ConfigDict(frozen=True)

    default_currency: str = Field("EUR", description="Default currency code")
    locale: str = Field("es_ES", description="Locale for formatting amounts")


class BillingConfig(BaseModel):
    """Main billing configuration"""

    model_config = ConfigDict(frozen=True)

    trial: TrialConfig = Field(default_factory=TrialConfig)
    addons: AddonConfig = Field(default_factory=AddonConfig)
    period: PeriodConfig = Field(default_factory=PeriodConfig)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)

    enable_promotional_codes: bool = Field(True, description="Enable trial promotional codes")
    sweep_batch_size: int = Field(200, gt=0, description="Companies per sweep batch")

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Create configuration from settings (environment and .env)"""
        from oficaz.platform.settings import settings

        billing = settings.billing
        return cls(
            trial=TrialConfig(
                default_duration_days=billing.default_trial_days,
                expiring_threshold_days=billing.trial_expiring_threshold_days,
            ),
            addons=AddonConfig(cooldown_days=billing.addon_cooldown_days),
            period=PeriodConfig(length_days=billing.billing_period_days),
            payment=PaymentConfig(
                provider=billing.payment_provider,
                timeout_seconds=billing.payment_timeout_seconds,
                stripe_api_key=billing.stripe_api_key or None,
            ),
            currency=CurrencyConfig(
                default_currency=billing.default_currency,
                locale=billing.default_locale,
            ),
            enable_promotional_codes=billing.enable_promotional_codes,
            sweep_batch_size=billing.sweep_batch_size,
        )


# Global configuration instance
_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get the global billing configuration instance"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_env()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set the global billing configuration instance"""
    global _billing_config
    _billing_config = config
