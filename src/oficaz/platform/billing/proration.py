"""
Proration calculator.

Charges for partial billing periods. Amounts are rounded half up to cents;
nothing in this module ever produces a refund.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from oficaz.platform.billing.models import Subscription, SubscriptionStatus
from oficaz.platform.billing.money_utils import round_half_up, to_decimal

_SECONDS_PER_DAY = Decimal(86400)


def days_between(start: datetime, end: datetime) -> Decimal:
    """Exact number of days from ``start`` to ``end`` (negative if reversed)."""
    delta = end - start
    seconds = Decimal(delta.days * 86400 + delta.seconds) + Decimal(delta.microseconds) / Decimal(
        1_000_000
    )
    return seconds / _SECONDS_PER_DAY


@dataclass(frozen=True)
class ProrationResult:
    """Inputs and output of one proration, kept for audit logs."""

    full_period_price: Decimal
    period_start: datetime
    period_end: datetime
    effective_from: datetime
    days_remaining: Decimal
    total_days: Decimal
    amount: Decimal

    def to_log(self) -> dict[str, str]:
        return {
            "full_period_price": str(self.full_period_price),
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "effective_from": self.effective_from.isoformat(),
            "days_remaining": str(round_half_up(self.days_remaining, 4)),
            "total_days": str(round_half_up(self.total_days, 4)),
            "amount": str(self.amount),
        }


def calculate_proration(
    full_period_price: Decimal | int | str,
    period_start: datetime,
    period_end: datetime,
    effective_from: datetime,
    now: datetime,
) -> ProrationResult:
    price = to_decimal(full_period_price)
    if period_end <= period_start:
        raise ValueError("period_end must be after period_start")

    start = max(effective_from, now, period_start)
    total = days_between(period_start, period_end)
    remaining = max(Decimal(0), days_between(start, period_end))

    amount = round_half_up(price * remaining / total)
    return ProrationResult(
        full_period_price=price,
        period_start=period_start,
        period_end=period_end,
        effective_from=start,
        days_remaining=remaining,
        total_days=total,
        amount=amount,
    )


def prorate(
    full_period_price: Decimal | int | str,
    period_start: datetime,
    period_end: datetime,
    effective_from: datetime,
    now: datetime,
) -> Decimal:
    """Charge for the rest of the period.

    ``price * days_remaining / total_days`` where the remaining window
    starts at the later of ``effective_from`` and ``now``, floored at zero
    and rounded half up to 2 decimals.

    Example:
        A 10.00 add-on bought on day 20 of a 30-day period costs 3.33.
    """
    result = calculate_proration(full_period_price, period_start, period_end, effective_from, now)
    return result.amount


def current_period_bounds(
    subscription: Subscription, now: datetime, period_days: int
) -> tuple[datetime, datetime]:
    """The billing window containing ``now``.

    The stored window is rolled forward in whole periods when the sweep has
    not run yet. Trialing companies are billed against their trial window,
    and against whole periods after it once it has lapsed.
    """
    if subscription.status is SubscriptionStatus.TRIALING:
        start, end = subscription.trial_start_date, subscription.trial_end_date
    else:
        start, end = subscription.current_period_start, subscription.current_period_end
    if end <= start:
        end = start + timedelta(days=period_days)
    length = timedelta(days=period_days)
    while end <= now:
        start, end = end, end + length
    return start, end


__all__ = [
    "ProrationResult",
    "calculate_proration",
    "current_period_bounds",
    "days_between",
    "prorate",
]
