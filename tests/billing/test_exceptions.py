"""Tests for billing exceptions."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from oficaz.platform.billing.exceptions import (
    AddonInCooldownError,
    AddonNotFoundError,
    BillingConfigurationError,
    BillingError,
    InvalidSeatDeltaError,
    PaymentError,
    PaymentFailedError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)

pytestmark = pytest.mark.unit


class TestBillingError:
    def test_defaults(self):
        error = BillingError("Something went wrong")

        assert str(error) == "Something went wrong"
        assert error.to_dict() == {
            "error_code": "BILLING_ERROR",
            "message": "Something went wrong",
            "status_code": 400,
            "context": {},
            "recovery_hint": None,
        }

    def test_not_found(self):
        error = SubscriptionNotFoundError("No subscription", company_id=9)

        assert isinstance(error, SubscriptionError)
        assert error.error_code == "SUBSCRIPTION_NOT_FOUND"
        assert error.status_code == 404
        assert error.context == {"company_id": 9}

    def test_state_error(self):
        error = SubscriptionStateError("Blocked", current_state="blocked", requested_state="active")

        assert error.status_code == 409
        assert "blocked to active" in error.recovery_hint

    def test_seat_delta(self):
        error = InvalidSeatDeltaError("Too few", role="admins", current=1, delta=-2)
        assert error.to_dict()["context"] == {"role": "admins", "current": 1, "delta": -2}

    def test_addon_errors(self):
        assert AddonNotFoundError("Unknown", addon_key="fax").context == {"addon_key": "fax"}

        ends = datetime(2024, 3, 1, tzinfo=UTC)
        cooldown = AddonInCooldownError("Locked", addon_key="documents", cooldown_ends_at=ends)
        assert cooldown.cooldown_ends_at == ends
        assert cooldown.context["cooldown_ends_at"] == ends.isoformat()
        assert "2024-03-01" in cooldown.recovery_hint

    def test_configuration_error(self):
        error = BillingConfigurationError("No key", config_key="stripe_api_key")

        assert error.status_code == 500
        assert error.error_code == "BILLING_CONFIG_ERROR"
        assert error.context == {"config_key": "stripe_api_key"}


class TestPaymentFailedError:
    def test_context(self):
        error = PaymentFailedError(
            "Declined", amount=Decimal("3.33"), reason="card_declined", reference="pi_1"
        )

        assert isinstance(error, PaymentError)
        assert error.status_code == 402
        assert error.reason == "card_declined"
        assert error.context == {"amount": "3.33", "reason": "card_declined", "reference": "pi_1"}

    def test_minimal(self):
        error = PaymentFailedError("Timed out")

        assert error.reason is None
        assert error.context == {}
