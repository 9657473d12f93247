"""Tests for trial-extension promotional codes."""

import pytest
import pytest_asyncio

from oficaz.platform.billing.config import BillingConfig
from oficaz.platform.billing.exceptions import (
    PromotionalCodeError,
    SubscriptionNotFoundError,
)
from oficaz.platform.billing.promotions import (
    PromotionalCode,
    check_redeemable,
    create_promotional_code,
    normalize_code,
)
from oficaz.platform.billing.repository import SubscriptionRepository
from oficaz.platform.billing.service import SubscriptionService
from tests.billing.factories import T0, days


async def store_code(session_maker, promo: PromotionalCode) -> PromotionalCode:
    async with session_maker() as session:
        created = await create_promotional_code(SubscriptionRepository(session), promo)
        await session.commit()
    return created


async def uses_of(session_maker, code: str) -> int:
    async with session_maker() as session:
        row = await SubscriptionRepository(session).get_promotional_code(code)
    return row.current_uses


@pytest_asyncio.fixture
async def promo_code(session_maker):
    return await store_code(
        session_maker,
        PromotionalCode(code=" oficaz60 ", trial_duration_days=60, max_uses=1),
    )


@pytest.mark.unit
class TestCheckRedeemable:
    def test_valid(self):
        check_redeemable(PromotionalCode(code="A"), T0)

    @pytest.mark.parametrize(
        ("fields", "reason"),
        [
            ({"is_active": False}, "inactive"),
            ({"valid_from": T0 + days(1)}, "not_yet_valid"),
            ({"valid_until": T0 - days(1)}, "expired"),
            ({"max_uses": 3, "current_uses": 3}, "exhausted"),
        ],
    )
    def test_rejections(self, fields, reason):
        with pytest.raises(PromotionalCodeError) as exc_info:
            check_redeemable(PromotionalCode(code="A", **fields), T0)
        assert exc_info.value.context["reason"] == reason

    def test_normalize_code(self):
        assert normalize_code("  oficaz60\n") == "OFICAZ60"


@pytest.mark.integration
class TestRedeemOnRegistration:
    async def test_code_sets_trial_length(self, subscription_service, session_maker, promo_code):
        assert promo_code.code == "OFICAZ60"

        subscription = await subscription_service.create_subscription(
            1, promotional_code="oficaz60"
        )

        assert subscription.trial_duration_days == 60
        assert subscription.trial_end_date == T0 + days(60)
        assert subscription.promotional_code == "OFICAZ60"
        assert await uses_of(session_maker, "OFICAZ60") == 1

    async def test_exhausted_code_creates_nothing(
        self, subscription_service, session_maker, promo_code
    ):
        await subscription_service.create_subscription(1, promotional_code="OFICAZ60")

        with pytest.raises(PromotionalCodeError) as exc_info:
            await subscription_service.create_subscription(2, promotional_code="OFICAZ60")

        assert exc_info.value.context["reason"] == "exhausted"
        with pytest.raises(SubscriptionNotFoundError):
            await subscription_service.get_subscription(2)
        assert await uses_of(session_maker, "OFICAZ60") == 1

    async def test_unknown_code(self, subscription_service):
        with pytest.raises(PromotionalCodeError) as exc_info:
            await subscription_service.create_subscription(1, promotional_code="NOPE")
        assert exc_info.value.context["reason"] == "not_found"

    async def test_duplicate_code(self, session_maker, promo_code):
        with pytest.raises(PromotionalCodeError) as exc_info:
            await store_code(session_maker, PromotionalCode(code="OFICAZ60"))
        assert exc_info.value.context["reason"] == "duplicate"

    async def test_codes_disabled(
        self, session_maker, payment_gateway, clock, promo_code
    ):
        service = SubscriptionService(
            session_maker=session_maker,
            gateway=payment_gateway,
            clock=clock,
            config=BillingConfig(enable_promotional_codes=False),
        )

        subscription = await service.create_subscription(1, promotional_code="OFICAZ60")

        assert subscription.trial_duration_days == 14
        assert subscription.promotional_code is None
        assert await uses_of(session_maker, "OFICAZ60") == 0
