"""
Billing system module.

Provides subscription and entitlement capabilities including:
- Trial state machine
- Feature resolution
- Add-on lifecycle
- Proration
- Payment processor integration

``SubscriptionService`` is the entry point for everything that changes
state.
"""

from oficaz.platform.billing.exceptions import (
    AddonAlreadyActiveError,
    AddonError,
    AddonInCooldownError,
    AddonNotActiveError,
    AddonNotFoundError,
    BillingConfigurationError,
    BillingError,
    FeatureNotFoundError,
    InvalidSeatDeltaError,
    PaymentError,
    PaymentFailedError,
    PlanNotFoundError,
    PromotionalCodeError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from oficaz.platform.billing.features import FeatureKey, resolve_features
from oficaz.platform.billing.models import (
    CompanyAddon,
    CompanyAddonStatus,
    Plan,
    SeatRole,
    Subscription,
    SubscriptionOverride,
    SubscriptionStatus,
    TrialStatus,
)
from oficaz.platform.billing.proration import prorate
from oficaz.platform.billing.service import SubscriptionService
from oficaz.platform.billing.trial import trial_status

__all__ = [
    # Exceptions
    "BillingError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "SubscriptionStateError",
    "PlanNotFoundError",
    "InvalidSeatDeltaError",
    "FeatureNotFoundError",
    "PromotionalCodeError",
    "AddonError",
    "AddonNotFoundError",
    "AddonAlreadyActiveError",
    "AddonNotActiveError",
    "AddonInCooldownError",
    "BillingConfigurationError",
    "PaymentError",
    "PaymentFailedError",
    # Models
    "CompanyAddon",
    "CompanyAddonStatus",
    "Plan",
    "SeatRole",
    "Subscription",
    "SubscriptionOverride",
    "SubscriptionStatus",
    "TrialStatus",
    "FeatureKey",
    # Operations
    "SubscriptionService",
    "prorate",
    "resolve_features",
    "trial_status",
]
