"""Billing fixtures built on the global database and service fixtures."""

import pytest_asyncio

from oficaz.platform.billing.models import Plan, SubscriptionStatus
from tests.billing.factories import T0, days


@pytest_asyncio.fixture
async def trialing_company(subscription_service):
    """Company 1, trialing on the basic plan since 2024-01-01."""
    await subscription_service.create_subscription(1)
    return 1


@pytest_asyncio.fixture
async def active_company(subscription_service, clock):
    """Company 1, paying on the basic plan with a period starting 2024-01-01."""
    await subscription_service.create_subscription(1, plan=Plan.BASIC)
    await subscription_service.add_payment_method(1, "cus_test")
    subscription = await subscription_service.record_payment(1, reference="pi_initial")
    assert subscription.status is SubscriptionStatus.ACTIVE
    assert subscription.current_period_end == clock.now() + days(30)
    return 1


@pytest_asyncio.fixture
async def lapsed_trial_company(subscription_service, clock):
    """Company 1 with a card on file, six days past its 14-day trial and not yet paid.

    Its billing window is the period after the trial, T0+14 to T0+44, with
    24 of 30 days left.
    """
    await subscription_service.create_subscription(1, plan=Plan.BASIC)
    await subscription_service.add_payment_method(1, "cus_test")
    clock.set(T0 + days(20))
    return 1
