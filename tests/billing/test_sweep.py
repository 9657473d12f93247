"""
Integration tests for the periodic sweep.
"""

import pytest

from oficaz.platform.billing.models import Plan, SubscriptionStatus
from oficaz.platform.billing.service import SubscriptionService
from tests.billing.factories import T0, days

pytestmark = pytest.mark.integration


async def create_paying_company(service: SubscriptionService, company_id: int) -> None:
    await service.create_subscription(company_id)
    await service.add_payment_method(company_id, f"cus_{company_id}")
    await service.record_payment(company_id)


class TestSweepCompany:
    async def test_second_run_changes_nothing(
        self, subscription_service, clock, trialing_company
    ):
        await subscription_service.purchase_addon(trialing_company, "documents")
        await subscription_service.cancel_addon(trialing_company, "documents")
        clock.advance(days=16)

        first = await subscription_service.sweep_company(trialing_company)
        state = await subscription_service.get_subscription(trialing_company)
        second = await subscription_service.sweep_company(trialing_company)

        assert first.changed is True
        assert first.blocked is True
        assert first.cancelled_addons == ["documents"]
        assert second.changed is False
        after = await subscription_service.get_subscription(trialing_company)
        assert after.model_dump() == state.model_dump()

    async def test_rolls_several_periods(self, subscription_service, clock, active_company):
        clock.set(T0 + days(95))

        result = await subscription_service.sweep_company(active_company)

        assert result.periods_rolled == 3
        subscription = await subscription_service.get_subscription(active_company)
        assert subscription.current_period_start == T0 + days(90)
        assert subscription.current_period_end == T0 + days(120)

    async def test_makes_no_processor_calls(
        self, subscription_service, payment_processor, clock, active_company
    ):
        clock.set(T0 + days(65))
        await subscription_service.sweep_company(active_company)

        assert payment_processor.charges == []
        assert payment_processor.proration_items == []

    async def test_scheduled_downgrade_then_cancellation(
        self, subscription_service, clock, active_company
    ):
        await subscription_service.change_plan(active_company, "pro")
        await subscription_service.change_plan(active_company, "basic")
        clock.set(T0 + days(35))
        await subscription_service.cancel_subscription(active_company)

        clock.set(T0 + days(61))
        result = await subscription_service.sweep_company(active_company)

        assert result.subscription_cancelled is True
        subscription = await subscription_service.get_subscription(active_company)
        assert subscription.status is SubscriptionStatus.CANCELLED
        assert subscription.plan is Plan.BASIC


class TestSweepAll:
    async def test_processes_only_due_companies(self, subscription_service, clock):
        await subscription_service.create_subscription(1)
        await subscription_service.create_subscription(2)
        await subscription_service.add_payment_method(2, "cus_2")
        await create_paying_company(subscription_service, 3)
        await subscription_service.create_subscription(4, trial_duration_days=60)
        clock.set(T0 + days(31))

        results = await subscription_service.sweep_all(batch_size=1)

        assert [r.company_id for r in results] == [1, 3]
        assert results[0].blocked is True
        assert results[1].periods_rolled == 1
        assert await subscription_service.sweep_all() == []

    async def test_failure_is_isolated(self, subscription_service, clock, monkeypatch):
        await subscription_service.create_subscription(1)
        await subscription_service.create_subscription(2)
        clock.set(T0 + days(20))
        original = subscription_service.sweep_company

        async def flaky(company_id):
            if company_id == 1:
                raise RuntimeError("lock timeout")
            return await original(company_id)

        monkeypatch.setattr(subscription_service, "sweep_company", flaky)

        results = await subscription_service.sweep_all()

        assert [r.company_id for r in results] == [2]
        assert (await subscription_service.get_subscription(2)).status is SubscriptionStatus.BLOCKED
        assert (await subscription_service.get_subscription(1)).status is SubscriptionStatus.TRIALING
