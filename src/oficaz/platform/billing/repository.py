"""
Persistence for subscriptions, add-on purchases and promotional codes.

Translates between the SQLAlchemy tables and the pydantic snapshots the
billing logic works on. Transaction boundaries belong to the caller.
"""

import asyncio
import weakref
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from oficaz.platform.billing.exceptions import SubscriptionNotFoundError
from oficaz.platform.billing.models import (
    CompanyAddon,
    CompanyAddonStatus,
    CompanyAddonTable,
    ExtraSeats,
    Plan,
    PromotionalCodeTable,
    Subscription,
    SubscriptionStatus,
    SubscriptionTable,
)


class CompanyLockRegistry:
    """One ``asyncio.Lock`` per company for this process.

    Serialises writers inside the process; the row lock taken by
    ``SubscriptionRepository.get_row(for_update=True)`` covers other
    processes. Entries are weak: a lock nobody holds or waits on is
    dropped, so the registry does not grow with every company ever seen.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, company_id: int) -> asyncio.Lock:
        lock = self._locks.get(company_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[company_id] = lock
        return lock


# ==========================================
# Row <-> snapshot mapping
# ==========================================


def to_subscription(row: SubscriptionTable) -> Subscription:
    return Subscription(
        company_id=row.company_id,
        plan=Plan(row.plan),
        status=SubscriptionStatus(row.status),
        trial_start_date=row.trial_start_date,
        trial_end_date=row.trial_end_date,
        trial_duration_days=row.trial_duration_days,
        promotional_code=row.promotional_code,
        has_payment_method=row.has_payment_method,
        payment_customer_id=row.payment_customer_id,
        first_payment_date=row.first_payment_date,
        last_payment_date=row.last_payment_date,
        base_monthly_price=row.base_monthly_price,
        custom_monthly_price=row.custom_monthly_price,
        extra_seats=ExtraSeats(
            employees=row.extra_employees,
            managers=row.extra_managers,
            admins=row.extra_admins,
        ),
        use_custom_feature_overrides=row.use_custom_feature_overrides,
        custom_features=dict(row.custom_features or {}),
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=row.cancel_at_period_end,
        cancellation_effective_date=row.cancellation_effective_date,
        next_plan=Plan(row.next_plan) if row.next_plan else None,
        plan_change_date=row.plan_change_date,
    )


def apply_subscription(row: SubscriptionTable, subscription: Subscription) -> SubscriptionTable:
    row.company_id = subscription.company_id
    row.plan = subscription.plan.value
    row.status = subscription.status.value
    row.trial_start_date = subscription.trial_start_date
    row.trial_end_date = subscription.trial_end_date
    row.trial_duration_days = subscription.trial_duration_days
    row.promotional_code = subscription.promotional_code
    row.has_payment_method = subscription.has_payment_method
    row.payment_customer_id = subscription.payment_customer_id
    row.first_payment_date = subscription.first_payment_date
    row.last_payment_date = subscription.last_payment_date
    row.base_monthly_price = subscription.base_monthly_price
    row.custom_monthly_price = subscription.custom_monthly_price
    row.extra_employees = subscription.extra_seats.employees
    row.extra_managers = subscription.extra_seats.managers
    row.extra_admins = subscription.extra_seats.admins
    row.use_custom_feature_overrides = subscription.use_custom_feature_overrides
    row.custom_features = dict(subscription.custom_features)
    row.current_period_start = subscription.current_period_start
    row.current_period_end = subscription.current_period_end
    row.cancel_at_period_end = subscription.cancel_at_period_end
    row.cancellation_effective_date = subscription.cancellation_effective_date
    row.next_plan = subscription.next_plan.value if subscription.next_plan else None
    row.plan_change_date = subscription.plan_change_date
    return row


def to_company_addon(row: CompanyAddonTable) -> CompanyAddon:
    return CompanyAddon(
        company_id=row.company_id,
        addon_key=row.addon_key,
        status=CompanyAddonStatus(row.status),
        activated_at=row.activated_at,
        cancelled_at=row.cancelled_at,
        cancellation_effective_date=row.cancellation_effective_date,
        cooldown_ends_at=row.cooldown_ends_at,
        last_charge_reference=row.last_charge_reference,
    )


def apply_company_addon(row: CompanyAddonTable, addon: CompanyAddon) -> CompanyAddonTable:
    row.company_id = addon.company_id
    row.addon_key = addon.addon_key
    row.status = addon.status.value
    row.activated_at = addon.activated_at
    row.cancelled_at = addon.cancelled_at
    row.cancellation_effective_date = addon.cancellation_effective_date
    row.cooldown_ends_at = addon.cooldown_ends_at
    row.last_charge_reference = addon.last_charge_reference
    return row


# ==========================================
# Repository
# ==========================================


class SubscriptionRepository:
    """Queries for one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Subscriptions

    async def get_row(self, company_id: int, *, for_update: bool = False) -> SubscriptionTable:
        stmt = select(SubscriptionTable).where(SubscriptionTable.company_id == company_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise SubscriptionNotFoundError(
                f"No subscription for company {company_id}", company_id=company_id
            )
        return row

    async def get(self, company_id: int) -> Subscription:
        return to_subscription(await self.get_row(company_id))

    async def exists(self, company_id: int) -> bool:
        stmt = select(SubscriptionTable.id).where(SubscriptionTable.company_id == company_id)
        return (await self.session.execute(stmt)).first() is not None

    async def add(self, subscription: Subscription) -> SubscriptionTable:
        row = apply_subscription(SubscriptionTable(), subscription)
        self.session.add(row)
        await self.session.flush()
        return row

    async def save(self, row: SubscriptionTable, subscription: Subscription) -> None:
        apply_subscription(row, subscription)
        await self.session.flush()

    # Add-on purchases

    async def get_addon_rows(
        self, company_id: int, *, for_update: bool = False
    ) -> list[CompanyAddonTable]:
        stmt = (
            select(CompanyAddonTable)
            .where(CompanyAddonTable.company_id == company_id)
            .order_by(CompanyAddonTable.addon_key)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_company_addons(self, company_id: int) -> list[CompanyAddon]:
        return [to_company_addon(row) for row in await self.get_addon_rows(company_id)]

    async def save_company_addons(
        self, rows: Sequence[CompanyAddonTable], addons: Sequence[CompanyAddon]
    ) -> None:
        """Write snapshots back, inserting rows for first purchases."""
        by_key = {row.addon_key: row for row in rows}
        for addon in addons:
            row = by_key.get(addon.addon_key)
            if row is None:
                row = CompanyAddonTable()
                self.session.add(row)
            apply_company_addon(row, addon)
        await self.session.flush()

    # Sweep

    async def company_ids_due_for_sweep(
        self, now: datetime, *, after_company_id: int = 0, limit: int = 200
    ) -> list[int]:
        """Companies with a pending trial block, cancellation or period rollover."""
        due_addons = select(CompanyAddonTable.company_id).where(
            CompanyAddonTable.status == CompanyAddonStatus.PENDING_CANCEL.value,
            CompanyAddonTable.cancellation_effective_date <= now,
        )
        stmt = (
            select(SubscriptionTable.company_id)
            .where(SubscriptionTable.company_id > after_company_id)
            .where(
                or_(
                    and_(
                        SubscriptionTable.status == SubscriptionStatus.TRIALING.value,
                        SubscriptionTable.trial_end_date < now,
                        SubscriptionTable.has_payment_method.is_(False),
                    ),
                    and_(
                        SubscriptionTable.status == SubscriptionStatus.ACTIVE.value,
                        SubscriptionTable.current_period_end <= now,
                    ),
                    SubscriptionTable.company_id.in_(due_addons),
                )
            )
            .order_by(SubscriptionTable.company_id)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    # Promotional codes

    async def get_promotional_code(
        self, code: str, *, for_update: bool = False
    ) -> PromotionalCodeTable | None:
        stmt = select(PromotionalCodeTable).where(PromotionalCodeTable.code == code)
        if for_update:
            stmt = stmt.with_for_update()
        return (await self.session.execute(stmt)).scalar_one_or_none()


__all__ = [
    "CompanyLockRegistry",
    "SubscriptionRepository",
    "apply_company_addon",
    "apply_subscription",
    "to_company_addon",
    "to_subscription",
]
