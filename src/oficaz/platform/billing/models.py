"""
Billing domain models and database tables.

Pydantic models are the snapshots every pure function works on; the
SQLAlchemy tables are only touched by the repository.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import (
    JSON,
    Boolean,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from oficaz.platform.db import Base, TimestampMixin, UTCDateTime

# ==========================================
# Enums
# ==========================================


class Plan(str, Enum):
    """Base subscription tier."""

    BASIC = "basic"
    PRO = "pro"
    MASTER = "master"
    OFICAZ = "oficaz"

    @property
    def rank(self) -> int:
        return _PLAN_RANK[self]

    @property
    def is_self_service(self) -> bool:
        return self is not Plan.OFICAZ


_PLAN_RANK = {Plan.BASIC: 0, Plan.PRO: 1, Plan.MASTER: 2, Plan.OFICAZ: 3}


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class CompanyAddonStatus(str, Enum):
    ACTIVE = "active"
    PENDING_CANCEL = "pending_cancel"
    CANCELLED = "cancelled"


class SeatRole(str, Enum):
    EMPLOYEES = "employees"
    MANAGERS = "managers"
    ADMINS = "admins"


class TrialPhase(str, Enum):
    """Coarse trial state shown to the company."""

    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    BLOCKED = "blocked"
    CONVERTED = "converted"


# ==========================================
# Domain models
# ==========================================


class BillingBaseModel(BaseModel):
    """Base model for billing snapshots."""

    model_config = ConfigDict(from_attributes=True)


class ExtraSeats(BaseModel):
    """Seats contracted beyond the plan defaults."""

    model_config = ConfigDict(frozen=True)

    employees: int = Field(0, ge=0)
    managers: int = Field(0, ge=0)
    admins: int = Field(0, ge=0)

    def count(self, role: SeatRole) -> int:
        return getattr(self, role.value)

    def items(self) -> list[tuple[SeatRole, int]]:
        return [(role, self.count(role)) for role in SeatRole]


class Subscription(BillingBaseModel):
    """One subscription per company."""

    company_id: int
    plan: Plan
    status: SubscriptionStatus

    # Trial
    trial_start_date: datetime
    trial_end_date: datetime
    trial_duration_days: int = Field(14, ge=0)
    promotional_code: str | None = None

    # Payment
    has_payment_method: bool = False
    payment_customer_id: str | None = None
    first_payment_date: datetime | None = None
    last_payment_date: datetime | None = None

    # Pricing
    base_monthly_price: Decimal
    custom_monthly_price: Decimal | None = None
    extra_seats: ExtraSeats = Field(default_factory=ExtraSeats)

    # Feature overrides
    use_custom_feature_overrides: bool = False
    custom_features: dict[str, bool] = Field(default_factory=dict)

    # Billing period
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    cancellation_effective_date: datetime | None = None
    next_plan: Plan | None = None
    plan_change_date: datetime | None = None

    @model_validator(mode="after")
    def _check_trial_window(self) -> "Subscription":
        expected = self.trial_start_date + timedelta(days=self.trial_duration_days)
        if self.trial_end_date != expected:
            raise ValueError("trial_end_date must equal trial_start_date + trial_duration_days")
        return self


class CompanyAddon(BillingBaseModel):
    """A company's purchase record for one add-on."""

    company_id: int
    addon_key: str
    status: CompanyAddonStatus
    activated_at: datetime
    cancelled_at: datetime | None = None
    cancellation_effective_date: datetime | None = None
    cooldown_ends_at: datetime | None = None
    last_charge_reference: str | None = None

    @property
    def grants_access(self) -> bool:
        return self.status in (CompanyAddonStatus.ACTIVE, CompanyAddonStatus.PENDING_CANCEL)


class SubscriptionOverride(BaseModel):
    """Operator changes to a subscription.

    Only fields that are explicitly set are applied, so passing
    ``custom_monthly_price=None`` clears the custom price while omitting it
    leaves the price alone.
    """

    model_config = ConfigDict(extra="forbid")

    plan: Plan | None = None
    custom_monthly_price: Decimal | None = Field(None, ge=0)
    use_custom_feature_overrides: bool | None = None
    custom_features: dict[str, bool] | None = None
    trial_duration_days: int | None = Field(None, ge=0)


class TrialStatus(BaseModel):
    """Read model for the trial banner and blocked-account overlay."""

    is_trial_active: bool
    days_remaining: int
    trial_end_date: datetime
    status: SubscriptionStatus
    plan: Plan
    has_payment_method: bool
    is_blocked: bool
    phase: TrialPhase


class CompanyAddonView(BaseModel):
    """Store entry for one add-on as seen by one company."""

    key: str
    name: str
    description: str
    short_description: str
    monthly_price: Decimal
    is_free_feature: bool
    icon: str | None = None
    status: CompanyAddonStatus | None = None
    is_purchased: bool = False
    is_pending_cancel: bool = False
    is_in_cooldown: bool = False
    cooldown_ends_at: datetime | None = None
    cancellation_effective_date: datetime | None = None


class InvoiceLine(BaseModel):
    description: str
    quantity: int = 1
    unit_price: Decimal
    amount: Decimal


class InvoicePreview(BaseModel):
    """What the next billing period will cost."""

    company_id: int
    period_start: datetime
    period_end: datetime
    currency: str
    lines: list[InvoiceLine] = Field(default_factory=list)
    total: Decimal
    formatted_total: str


class PurchaseResult(BaseModel):
    company_addon: CompanyAddon
    amount_charged: Decimal
    charge_reference: str | None = None


class PlanChangeResult(BaseModel):
    subscription: Subscription
    amount_charged: Decimal = Decimal("0.00")
    charge_reference: str | None = None
    scheduled: bool = False


class SeatChangeResult(BaseModel):
    subscription: Subscription
    amount_charged: Decimal = Decimal("0.00")
    charge_reference: str | None = None


class SweepResult(BaseModel):
    """What one sweep pass changed for one company."""

    company_id: int
    blocked: bool = False
    cancelled_addons: list[str] = Field(default_factory=list)
    periods_rolled: int = 0
    plan_changed_to: Plan | None = None
    subscription_cancelled: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.blocked
            or self.cancelled_addons
            or self.periods_rolled
            or self.plan_changed_to
            or self.subscription_cancelled
        )


# ==========================================
# Database tables
# ==========================================


class SubscriptionTable(Base, TimestampMixin):
    """SQLAlchemy table for company subscriptions."""

    __tablename__ = "billing_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Trial
    trial_start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    trial_end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    trial_duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=14)
    promotional_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Payment
    has_payment_method: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_payment_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_payment_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Pricing
    base_monthly_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    custom_monthly_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    extra_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extra_managers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extra_admins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Feature overrides
    use_custom_feature_overrides: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    custom_features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Billing period
    current_period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancellation_effective_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    next_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    plan_change_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_billing_subscriptions_status", "status"),
        Index("ix_billing_subscriptions_trial_end", "status", "trial_end_date"),
    )


class CompanyAddonTable(Base, TimestampMixin):
    """SQLAlchemy table for add-on purchases, one row per company and add-on."""

    __tablename__ = "billing_company_addons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    addon_key: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    activated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_effective_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    cooldown_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_charge_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "addon_key", name="uq_billing_company_addons_company_addon"),
        Index(
            "ix_billing_company_addons_status_effective", "status", "cancellation_effective_date"
        ),
    )


class PromotionalCodeTable(Base, TimestampMixin):
    """SQLAlchemy table for trial-extension promotional codes."""

    __tablename__ = "billing_promotional_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    trial_duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


__all__ = [
    "BillingBaseModel",
    "CompanyAddon",
    "CompanyAddonStatus",
    "CompanyAddonTable",
    "CompanyAddonView",
    "ExtraSeats",
    "InvoiceLine",
    "InvoicePreview",
    "Plan",
    "PlanChangeResult",
    "PromotionalCodeTable",
    "PurchaseResult",
    "SeatChangeResult",
    "SeatRole",
    "Subscription",
    "SubscriptionOverride",
    "SubscriptionStatus",
    "SubscriptionTable",
    "SweepResult",
    "TrialPhase",
    "TrialStatus",
]
