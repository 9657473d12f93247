"""
Trial and subscription lifecycle state machine.

States: trialing, active, blocked, cancelled. Every "is it past date X"
check for the subscription lives here; the functions are pure and return
updated snapshots instead of mutating.
"""

import math
from datetime import datetime, timedelta

from oficaz.platform.billing.exceptions import SubscriptionStateError
from oficaz.platform.billing.models import (
    Subscription,
    SubscriptionStatus,
    TrialPhase,
    TrialStatus,
)
from oficaz.platform.billing.proration import current_period_bounds, days_between

DEFAULT_EXPIRING_THRESHOLD_DAYS = 3

_S = SubscriptionStatus


def trial_end_for(start: datetime, duration_days: int) -> datetime:
    return start + timedelta(days=duration_days)


def days_remaining(subscription: Subscription, now: datetime) -> int:
    """Whole days left in the trial, rounded up, never negative."""
    return max(0, math.ceil(days_between(now, subscription.trial_end_date)))


def trial_expired(subscription: Subscription, now: datetime) -> bool:
    return now > subscription.trial_end_date


def in_free_trial(subscription: Subscription, now: datetime) -> bool:
    """Changes are free only while the trial window is still open."""
    return subscription.status is _S.TRIALING and not trial_expired(subscription, now)


def should_block(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.status is _S.TRIALING
        and trial_expired(subscription, now)
        and not subscription.has_payment_method
    )


def cancellation_due(subscription: Subscription, now: datetime) -> bool:
    return (
        subscription.status is _S.ACTIVE
        and subscription.cancel_at_period_end
        and subscription.cancellation_effective_date is not None
        and subscription.cancellation_effective_date <= now
    )


def effective_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    """Status as of ``now``, whether or not the sweep has caught up."""
    if should_block(subscription, now):
        return _S.BLOCKED
    if cancellation_due(subscription, now):
        return _S.CANCELLED
    return subscription.status


def trial_status(
    subscription: Subscription,
    now: datetime,
    expiring_threshold_days: int = DEFAULT_EXPIRING_THRESHOLD_DAYS,
) -> TrialStatus:
    """Trial summary for the company. Pure; never mutates."""
    status = effective_status(subscription, now)
    remaining = days_remaining(subscription, now)
    is_blocked = status is _S.BLOCKED
    is_trial_active = status is _S.TRIALING and in_free_trial(subscription, now)

    if is_blocked:
        phase = TrialPhase.BLOCKED
    elif status is not _S.TRIALING:
        phase = TrialPhase.CONVERTED
    elif not is_trial_active:
        phase = TrialPhase.EXPIRED
    elif remaining <= expiring_threshold_days:
        phase = TrialPhase.EXPIRING
    else:
        phase = TrialPhase.ACTIVE

    return TrialStatus(
        is_trial_active=is_trial_active,
        days_remaining=remaining,
        trial_end_date=subscription.trial_end_date,
        status=status,
        plan=subscription.plan,
        has_payment_method=subscription.has_payment_method,
        is_blocked=is_blocked,
        phase=phase,
    )


def ensure_can_transact(subscription: Subscription, now: datetime, action: str) -> None:
    """Blocked and cancelled companies cannot buy or change anything.

    Raises:
        SubscriptionStateError: when the effective status forbids ``action``
    """
    status = effective_status(subscription, now)
    if status in (_S.BLOCKED, _S.CANCELLED):
        raise SubscriptionStateError(
            f"Cannot {action} while the subscription is {status.value}",
            current_state=status.value,
            requested_state=action,
        )


# ==========================================
# Transitions
# ==========================================


def block(subscription: Subscription) -> Subscription:
    """trialing -> blocked."""
    return subscription.model_copy(update={"status": _S.BLOCKED})


def activate(subscription: Subscription, now: datetime, period_days: int) -> Subscription:
    """Record a confirmed payment.

    trialing/blocked -> active starts a fresh billing period at ``now``; an
    already active subscription only records the payment date.

    Raises:
        SubscriptionStateError: for cancelled subscriptions
    """
    if subscription.status is _S.CANCELLED:
        raise SubscriptionStateError(
            "Cancelled subscriptions cannot take payments",
            current_state=_S.CANCELLED.value,
            requested_state=_S.ACTIVE.value,
        )

    update: dict[str, object] = {"last_payment_date": now}
    if subscription.first_payment_date is None:
        update["first_payment_date"] = now
    if subscription.status is not _S.ACTIVE:
        update.update(
            status=_S.ACTIVE,
            current_period_start=now,
            current_period_end=now + timedelta(days=period_days),
        )
    return subscription.model_copy(update=update)


def request_cancellation(
    subscription: Subscription, now: datetime, period_days: int
) -> Subscription:
    """Cancel the subscription.

    Paying subscriptions run to the end of the current period; trialing and
    blocked ones are not being billed and cancel at once.

    Raises:
        SubscriptionStateError: if already cancelled or already scheduled
    """
    status = effective_status(subscription, now)
    if status is _S.CANCELLED:
        raise SubscriptionStateError(
            "Subscription is already cancelled",
            current_state=status.value,
            requested_state=_S.CANCELLED.value,
        )
    if status is _S.ACTIVE:
        if subscription.cancel_at_period_end:
            raise SubscriptionStateError(
                "Subscription is already scheduled for cancellation",
                current_state="pending_cancel",
                requested_state=_S.CANCELLED.value,
            )
        _, period_end = current_period_bounds(subscription, now, period_days)
        return subscription.model_copy(
            update={"cancel_at_period_end": True, "cancellation_effective_date": period_end}
        )
    return subscription.model_copy(
        update={
            "status": _S.CANCELLED,
            "cancel_at_period_end": False,
            "cancellation_effective_date": now,
            "next_plan": None,
            "plan_change_date": None,
        }
    )


def resume(subscription: Subscription, now: datetime) -> Subscription:
    """Withdraw a scheduled cancellation before it takes effect.

    Raises:
        SubscriptionStateError: if nothing is scheduled
    """
    status = effective_status(subscription, now)
    if status is not _S.ACTIVE or not subscription.cancel_at_period_end:
        raise SubscriptionStateError(
            "No scheduled cancellation to withdraw",
            current_state=status.value,
            requested_state=_S.ACTIVE.value,
        )
    return subscription.model_copy(
        update={"cancel_at_period_end": False, "cancellation_effective_date": None}
    )


def with_trial_duration(
    subscription: Subscription, duration_days: int, now: datetime
) -> Subscription:
    """Change the trial length, keeping the end date consistent.

    A blocked company whose new trial end lies in the future is trialing
    again.
    """
    trial_end = trial_end_for(subscription.trial_start_date, duration_days)
    update: dict[str, object] = {
        "trial_duration_days": duration_days,
        "trial_end_date": trial_end,
    }
    if subscription.status is _S.TRIALING:
        update.update(
            current_period_start=subscription.trial_start_date, current_period_end=trial_end
        )
    elif subscription.status is _S.BLOCKED and trial_end >= now:
        update.update(
            status=_S.TRIALING,
            current_period_start=subscription.trial_start_date,
            current_period_end=trial_end,
        )
    return subscription.model_copy(update=update)


__all__ = [
    "activate",
    "block",
    "cancellation_due",
    "days_remaining",
    "effective_status",
    "in_free_trial",
    "ensure_can_transact",
    "request_cancellation",
    "resume",
    "should_block",
    "trial_end_for",
    "trial_expired",
    "trial_status",
    "with_trial_duration",
]
