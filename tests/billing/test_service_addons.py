"""
Integration tests for add-on purchases, cancellation and cooldown.
"""

import asyncio
from decimal import Decimal
from unittest.mock import patch

import pytest

from oficaz.platform.billing.exceptions import (
    AddonAlreadyActiveError,
    AddonError,
    AddonInCooldownError,
    AddonNotActiveError,
    AddonNotFoundError,
    PaymentFailedError,
    SubscriptionStateError,
)
from oficaz.platform.billing.features import FeatureKey
from oficaz.platform.billing.models import CompanyAddonStatus, TrialPhase
from oficaz.platform.billing.repository import SubscriptionRepository
from tests.billing.factories import T0, days

pytestmark = pytest.mark.integration


async def addon_views(service, company_id):
    return {v.key: v for v in await service.list_company_addons(company_id)}


class TestPurchaseAddon:
    async def test_prorated_charge_on_day_twenty(
        self, subscription_service, payment_processor, clock, active_company
    ):
        """10.00 add-on with 10 of 30 days left costs 3.33."""
        clock.advance(days=20)

        result = await subscription_service.purchase_addon(active_company, "documents")

        assert result.amount_charged == Decimal("3.33")
        assert result.charge_reference == "pi_test_1"
        assert result.company_addon.status is CompanyAddonStatus.ACTIVE
        assert result.company_addon.activated_at == clock.now()
        assert [c.amount for c in payment_processor.charges] == [Decimal("3.33")]
        assert payment_processor.charges[0].customer_ref == "cus_test"
        assert await subscription_service.has_access(active_company, "documents") is True

        views = await addon_views(subscription_service, active_company)
        assert views["documents"].is_purchased is True

    async def test_trial_purchase_is_free(
        self, subscription_service, payment_processor, trialing_company
    ):
        result = await subscription_service.purchase_addon(trialing_company, "messages")

        assert result.amount_charged == Decimal("0.00")
        assert result.charge_reference is None
        assert payment_processor.charges == []
        assert await subscription_service.has_access(trialing_company, "messages") is True

    async def test_lapsed_trial_purchase_is_charged(
        self, subscription_service, payment_processor, lapsed_trial_company
    ):
        """A card on file keeps an overdue trial unblocked, but it is no longer free."""
        status = await subscription_service.trial_status(lapsed_trial_company)
        assert status.phase is TrialPhase.EXPIRED

        result = await subscription_service.purchase_addon(lapsed_trial_company, "ai_assistant")

        assert result.amount_charged == Decimal("12.00")
        assert [c.amount for c in payment_processor.charges] == [Decimal("12.00")]
        assert await subscription_service.has_access(lapsed_trial_company, "ai_assistant") is True

    async def test_lapsed_trial_decline_grants_nothing(
        self, subscription_service, payment_processor, lapsed_trial_company
    ):
        payment_processor.decline = True

        with pytest.raises(PaymentFailedError):
            await subscription_service.purchase_addon(lapsed_trial_company, "ai_assistant")

        assert await subscription_service.has_access(lapsed_trial_company, "ai_assistant") is False

    async def test_purchase_grants_only_that_feature(
        self, subscription_service, trialing_company
    ):
        before = await subscription_service.resolve_features(trialing_company)
        await subscription_service.purchase_addon(trialing_company, "ai_assistant")
        after = await subscription_service.resolve_features(trialing_company)

        changed = {key for key in FeatureKey if before[key] != after[key]}
        assert changed == {FeatureKey.AI_ASSISTANT}

    async def test_already_active(self, subscription_service, payment_processor, active_company):
        await subscription_service.purchase_addon(active_company, "documents")

        with pytest.raises(AddonAlreadyActiveError):
            await subscription_service.purchase_addon(active_company, "documents")
        assert len(payment_processor.charges) == 1

    async def test_unknown_and_free_addons(self, subscription_service, active_company):
        with pytest.raises(AddonNotFoundError):
            await subscription_service.purchase_addon(active_company, "fax_machine")
        with pytest.raises(AddonError):
            await subscription_service.purchase_addon(active_company, "employees")

    async def test_declined_charge_grants_nothing(
        self, subscription_service, payment_processor, active_company
    ):
        payment_processor.decline = True

        with pytest.raises(PaymentFailedError):
            await subscription_service.purchase_addon(active_company, "documents")

        views = await addon_views(subscription_service, active_company)
        assert views["documents"].status is None
        assert await subscription_service.has_access(active_company, "documents") is False

    async def test_timed_out_charge_grants_nothing(
        self, subscription_service, payment_processor, active_company
    ):
        payment_processor.delay = 1.0

        with pytest.raises(PaymentFailedError) as exc_info:
            await subscription_service.purchase_addon(active_company, "documents")

        assert exc_info.value.reason == "timeout"
        assert await subscription_service.has_access(active_company, "documents") is False

    async def test_failure_after_charge_rolls_back(
        self, subscription_service, payment_processor, active_company
    ):
        with patch.object(
            SubscriptionRepository,
            "save_company_addons",
            side_effect=RuntimeError("disk full"),
        ):
            with pytest.raises(RuntimeError):
                await subscription_service.purchase_addon(active_company, "documents")

        assert len(payment_processor.charges) == 1
        views = await addon_views(subscription_service, active_company)
        assert views["documents"].status is None

    async def test_concurrent_purchases_charge_once(
        self, subscription_service, payment_processor, active_company
    ):
        payment_processor.delay = 0.05

        results = await asyncio.gather(
            subscription_service.purchase_addon(active_company, "reminders"),
            subscription_service.purchase_addon(active_company, "reminders"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], AddonAlreadyActiveError)
        assert len(payment_processor.charges) == 1

    async def test_blocked_company_cannot_purchase(
        self, subscription_service, payment_processor, clock, trialing_company
    ):
        clock.advance(days=15)

        with pytest.raises(SubscriptionStateError):
            await subscription_service.purchase_addon(trialing_company, "documents")
        assert payment_processor.charges == []


class TestCancelAddon:
    async def test_cancellation_and_cooldown_cycle(
        self, subscription_service, payment_processor, clock, active_company
    ):
        await subscription_service.purchase_addon(active_company, "documents")
        assert payment_processor.charges[-1].amount == Decimal("10.00")

        clock.set(T0 + days(10))
        row = await subscription_service.cancel_addon(active_company, "documents")
        assert row.status is CompanyAddonStatus.PENDING_CANCEL
        assert row.cancellation_effective_date == T0 + days(30)
        assert await subscription_service.has_access(active_company, "documents") is True

        clock.set(T0 + days(31))
        result = await subscription_service.sweep_company(active_company)
        assert result.cancelled_addons == ["documents"]
        assert await subscription_service.has_access(active_company, "documents") is False

        views = await addon_views(subscription_service, active_company)
        assert views["documents"].is_in_cooldown is True
        assert views["documents"].cooldown_ends_at == T0 + days(61)

        clock.set(T0 + days(40))
        with pytest.raises(AddonInCooldownError):
            await subscription_service.purchase_addon(active_company, "documents")

        clock.set(T0 + days(61))
        purchase = await subscription_service.purchase_addon(active_company, "documents")
        assert purchase.amount_charged == Decimal("9.67")
        assert purchase.company_addon.cooldown_ends_at is None

    async def test_not_active(self, subscription_service, active_company):
        with pytest.raises(AddonNotActiveError):
            await subscription_service.cancel_addon(active_company, "documents")

    async def test_cancel_pending_is_unchanged(self, subscription_service, clock, active_company):
        await subscription_service.purchase_addon(active_company, "documents")
        first = await subscription_service.cancel_addon(active_company, "documents")
        clock.advance(days=5)
        second = await subscription_service.cancel_addon(active_company, "documents")

        assert second.model_dump() == first.model_dump()

    async def test_cancel_allowed_while_blocked(
        self, subscription_service, clock, trialing_company
    ):
        await subscription_service.purchase_addon(trialing_company, "documents")
        clock.advance(days=15)

        row = await subscription_service.cancel_addon(trialing_company, "documents")
        assert row.status is CompanyAddonStatus.PENDING_CANCEL

    async def test_list_addons_is_catalog(self, subscription_service):
        keys = [a.key for a in subscription_service.list_addons()]
        assert "documents" in keys
        assert "employees" in keys
