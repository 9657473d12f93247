"""
Billing system exceptions.

Custom exceptions for subscription and entitlement operations with clear
error messages. Every error here is recoverable and user-facing: the
caller surfaces the message and the subscription state is unchanged.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class SubscriptionError(BillingError):
    """Subscription-related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "SUBSCRIPTION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class SubscriptionNotFoundError(SubscriptionError):
    """Subscription not found error."""

    def __init__(self, message: str, company_id: int | None = None) -> None:
        context = {}
        if company_id is not None:
            context["company_id"] = company_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the company ID and ensure the company has a subscription",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"
        self.status_code = 404


class SubscriptionStateError(SubscriptionError):
    """Invalid subscription state transition error."""

    def __init__(self, message: str, current_state: str, requested_state: str) -> None:
        super().__init__(
            message,
            context={"current_state": current_state, "requested_state": requested_state},
            recovery_hint=f"Cannot transition from {current_state} to {requested_state}. Check subscription status first.",
        )
        self.error_code = "INVALID_SUBSCRIPTION_STATE"
        self.status_code = 409


class PlanNotFoundError(SubscriptionError):
    """Subscription plan not found error."""

    def __init__(self, message: str, plan: str | None = None) -> None:
        context = {}
        if plan:
            context["plan"] = plan

        super().__init__(
            message,
            context=context,
            recovery_hint="Choose one of the self-service plans: basic, pro or master",
        )
        self.error_code = "PLAN_NOT_FOUND"
        self.status_code = 404


class InvalidSeatDeltaError(SubscriptionError):
    """Seat change would leave a negative seat count."""

    def __init__(self, message: str, role: str, current: int, delta: int) -> None:
        super().__init__(
            message,
            context={"role": role, "current": current, "delta": delta},
            recovery_hint="Seat counts cannot go below zero",
        )
        self.error_code = "INVALID_SEAT_DELTA"
        self.status_code = 422


class FeatureNotFoundError(SubscriptionError):
    """Unknown feature key."""

    def __init__(self, message: str, feature_key: str) -> None:
        super().__init__(
            message,
            context={"feature_key": feature_key},
            recovery_hint="Use one of the documented feature keys",
        )
        self.error_code = "FEATURE_NOT_FOUND"
        self.status_code = 404


class PromotionalCodeError(SubscriptionError):
    """Promotional code cannot be redeemed."""

    def __init__(self, message: str, code: str, reason: str) -> None:
        super().__init__(
            message,
            context={"code": code, "reason": reason},
            recovery_hint="Check the code spelling or register without a promotional code",
        )
        self.error_code = "PROMOTIONAL_CODE_INVALID"
        self.status_code = 422


class AddonError(BillingError):
    """Add-on related errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "ADDON_ERROR", status_code=400, context=context, recovery_hint=recovery_hint
        )


class AddonNotFoundError(AddonError):
    """Add-on not found error."""

    def __init__(self, message: str, addon_key: str | None = None) -> None:
        context = {}
        if addon_key:
            context["addon_key"] = addon_key

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the add-on key against the add-on catalog",
        )
        self.error_code = "ADDON_NOT_FOUND"
        self.status_code = 404


class AddonAlreadyActiveError(AddonError):
    """Add-on is already active or pending cancellation."""

    def __init__(self, message: str, addon_key: str, status: str) -> None:
        super().__init__(
            message,
            context={"addon_key": addon_key, "status": status},
            recovery_hint="The add-on is already part of your subscription",
        )
        self.error_code = "ADDON_ALREADY_ACTIVE"
        self.status_code = 409


class AddonNotActiveError(AddonError):
    """Add-on has no active or pending-cancel row to cancel."""

    def __init__(self, message: str, addon_key: str) -> None:
        super().__init__(
            message,
            context={"addon_key": addon_key},
            recovery_hint="Only active add-ons can be cancelled",
        )
        self.error_code = "ADDON_NOT_ACTIVE"
        self.status_code = 409


class AddonInCooldownError(AddonError):
    """Add-on was cancelled recently and cannot be repurchased yet."""

    def __init__(self, message: str, addon_key: str, cooldown_ends_at: datetime) -> None:
        super().__init__(
            message,
            context={"addon_key": addon_key, "cooldown_ends_at": cooldown_ends_at.isoformat()},
            recovery_hint=f"The add-on can be purchased again after {cooldown_ends_at:%Y-%m-%d}",
        )
        self.error_code = "ADDON_IN_COOLDOWN"
        self.status_code = 409
        self.cooldown_ends_at = cooldown_ends_at


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            status_code=500,
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )


class PaymentError(BillingError):
    """Payment processing errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "PAYMENT_ERROR", status_code=402, context=context, recovery_hint=recovery_hint
        )


class PaymentFailedError(PaymentError):
    """Charge was declined, errored, or timed out. Nothing was granted."""

    def __init__(
        self,
        message: str,
        amount: Decimal | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if amount is not None:
            context["amount"] = str(amount)
        if reason:
            context["reason"] = reason
        if reference:
            context["reference"] = reference

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the payment method is valid and has sufficient funds, then retry",
        )
        self.error_code = "PAYMENT_FAILED"
        self.reason = reason
