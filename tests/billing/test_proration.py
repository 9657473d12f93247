"""Tests for the proration calculator."""

from datetime import timedelta
from decimal import Decimal

import pytest

from oficaz.platform.billing.models import SubscriptionStatus
from oficaz.platform.billing.proration import (
    calculate_proration,
    current_period_bounds,
    days_between,
    prorate,
)
from tests.billing.factories import T0, days, make_subscription

pytestmark = pytest.mark.unit

PERIOD_END = T0 + days(30)


class TestDaysBetween:
    def test_whole_days(self):
        assert days_between(T0, T0 + days(30)) == Decimal(30)

    def test_fractional_days(self):
        assert days_between(T0, T0 + timedelta(hours=12)) == Decimal("0.5")

    def test_reversed_is_negative(self):
        assert days_between(T0 + days(2), T0) == Decimal(-2)


class TestProrate:
    """prorate(price, start, end, effective_from, now)."""

    def test_addon_bought_on_day_twenty(self):
        """A 10.00 add-on with 10 of 30 days left costs 3.33."""
        day_20 = T0 + days(20)
        assert prorate(Decimal("10.00"), T0, PERIOD_END, day_20, day_20) == Decimal("3.33")

    def test_full_price_at_period_start(self):
        assert prorate(Decimal("19.00"), T0, PERIOD_END, T0, T0) == Decimal("19.00")

    def test_zero_at_period_end(self):
        assert prorate(Decimal("19.00"), T0, PERIOD_END, PERIOD_END, PERIOD_END) == Decimal("0.00")

    def test_never_negative_after_period_end(self):
        later = PERIOD_END + days(3)
        assert prorate(Decimal("19.00"), T0, PERIOD_END, later, later) == Decimal("0.00")

    def test_uses_later_of_effective_from_and_now(self):
        day_10 = T0 + days(10)
        day_20 = T0 + days(20)
        assert prorate(Decimal("30.00"), T0, PERIOD_END, day_10, day_20) == Decimal("10.00")
        assert prorate(Decimal("30.00"), T0, PERIOD_END, day_20, day_10) == Decimal("10.00")

    def test_never_exceeds_full_price(self):
        before = T0 - days(5)
        assert prorate(Decimal("30.00"), T0, PERIOD_END, before, before) == Decimal("30.00")

    def test_rounds_half_up(self):
        midpoint = T0 + days(1)
        assert prorate(Decimal("0.05"), T0, T0 + days(2), midpoint, midpoint) == Decimal("0.03")

    def test_accepts_strings_and_ints(self):
        day_15 = T0 + days(15)
        assert prorate("8", T0, PERIOD_END, day_15, day_15) == Decimal("4.00")
        assert prorate(8, T0, PERIOD_END, day_15, day_15) == Decimal("4.00")

    def test_empty_period_rejected(self):
        with pytest.raises(ValueError):
            prorate(Decimal("10.00"), T0, T0, T0, T0)


class TestCalculateProration:
    def test_result_records_inputs(self):
        day_20 = T0 + days(20)
        result = calculate_proration(Decimal("10.00"), T0, PERIOD_END, day_20, day_20)

        assert result.amount == Decimal("3.33")
        assert result.days_remaining == Decimal(10)
        assert result.total_days == Decimal(30)
        assert result.effective_from == day_20

        logged = result.to_log()
        assert logged["amount"] == "3.33"
        assert logged["days_remaining"] == "10.0000"
        assert logged["period_start"] == T0.isoformat()


class TestCurrentPeriodBounds:
    def test_trialing_uses_trial_window(self):
        sub = make_subscription()
        assert current_period_bounds(sub, T0 + days(5), 30) == (T0, T0 + days(14))

    def test_lapsed_trial_rolls_forward(self):
        sub = make_subscription()
        start, end = current_period_bounds(sub, T0 + days(20), 30)
        assert (start, end) == (T0 + days(14), T0 + days(44))

    def test_active_uses_stored_window(self):
        sub = make_subscription(status=SubscriptionStatus.ACTIVE)
        assert current_period_bounds(sub, T0 + days(20), 30) == (T0 + days(14), T0 + days(44))

    def test_active_rolls_forward_whole_periods(self):
        sub = make_subscription(status=SubscriptionStatus.ACTIVE)
        start, end = current_period_bounds(sub, T0 + days(80), 30)
        assert (start, end) == (T0 + days(74), T0 + days(104))

    def test_boundary_belongs_to_next_period(self):
        sub = make_subscription(status=SubscriptionStatus.ACTIVE)
        start, _ = current_period_bounds(sub, T0 + days(44), 30)
        assert start == T0 + days(44)

    def test_empty_stored_window_gets_default_length(self):
        sub = make_subscription(
            status=SubscriptionStatus.ACTIVE, current_period_start=T0, current_period_end=T0
        )
        assert current_period_bounds(sub, T0 + days(1), 30) == (T0, T0 + days(30))
