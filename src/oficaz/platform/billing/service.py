"""
Subscription service.

The single entry point for everything a company can do with its
subscription. Reads are lock-free; every mutation runs as one unit under
the company's lock and a row lock: load, validate, charge, write, commit.
Any exception rolls the whole unit back, so a failed charge never grants
anything and a granted add-on is never left unbilled.
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oficaz.platform.billing import addons as addon_lifecycle
from oficaz.platform.billing import trial
from oficaz.platform.billing.catalog import ADDON_CATALOG, Addon
from oficaz.platform.billing.clock import Clock, SystemClock
from oficaz.platform.billing.config import BillingConfig, get_billing_config
from oficaz.platform.billing.exceptions import (
    AddonNotFoundError,
    InvalidSeatDeltaError,
    PlanNotFoundError,
    SubscriptionError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from oficaz.platform.billing.features import (
    EffectiveFeatureSet,
    FeatureKey,
    normalize_feature_map,
)
from oficaz.platform.billing.features import has_access as feature_has_access
from oficaz.platform.billing.features import resolve_features as resolve_feature_set
from oficaz.platform.billing.models import (
    CompanyAddon,
    CompanyAddonView,
    ExtraSeats,
    InvoicePreview,
    Plan,
    PlanChangeResult,
    PurchaseResult,
    SeatChangeResult,
    SeatRole,
    Subscription,
    SubscriptionOverride,
    SubscriptionStatus,
    SubscriptionTable,
    SweepResult,
    TrialStatus,
)
from oficaz.platform.billing.money_utils import create_money, format_money
from oficaz.platform.billing.payments import (
    ChargeRequest,
    PaymentGateway,
    build_payment_processor,
)
from oficaz.platform.billing.pricing import (
    PLAN_PRICES,
    SEAT_PRICES,
    invoice_lines,
    monthly_total,
    parse_plan,
)
from oficaz.platform.billing.promotions import redeem_promotional_code
from oficaz.platform.billing.proration import calculate_proration, current_period_bounds
from oficaz.platform.billing.repository import (
    CompanyLockRegistry,
    SubscriptionRepository,
    to_company_addon,
    to_subscription,
)
from oficaz.platform.db import get_async_session_maker
from oficaz.platform.logging import company_context, log_audit_event

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


@dataclass
class _UnitOfWork:
    """State shared by one locked mutation."""

    repository: SubscriptionRepository
    row: SubscriptionTable
    subscription: Subscription
    charge_references: list[str] = field(default_factory=list)

    async def save(self, subscription: Subscription) -> Subscription:
        await self.repository.save(self.row, subscription)
        self.subscription = subscription
        return subscription


class SubscriptionService:
    """
    Service for company subscriptions, add-ons and entitlements.

    Handles:
    - Trial lifecycle and blocking
    - Feature resolution and access checks
    - Add-on purchase, cancellation and cooldown
    - Seat and plan changes with proration
    - Operator overrides
    - The periodic sweep
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        gateway: PaymentGateway | None = None,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        catalog: Mapping[str, Addon] = ADDON_CATALOG,
        locks: CompanyLockRegistry | None = None,
    ):
        self.session_maker = session_maker or get_async_session_maker()
        self.config = config or get_billing_config()
        self.clock = clock or SystemClock()
        self.catalog = catalog
        self.locks = locks or CompanyLockRegistry()
        self._gateway = gateway

    @property
    def gateway(self) -> PaymentGateway:
        # Built on first charge so sweep-only workers need no processor credentials.
        if self._gateway is None:
            self._gateway = PaymentGateway(
                build_payment_processor(self.config.payment),
                timeout_seconds=self.config.payment.timeout_seconds,
            )
        return self._gateway

    @property
    def period_days(self) -> int:
        return self.config.period.length_days

    @property
    def currency(self) -> str:
        return self.config.currency.default_currency

    # ==================== Transactions ====================

    @asynccontextmanager
    async def _company_transaction(self, company_id: int) -> AsyncIterator[_UnitOfWork]:
        with company_context(company_id):
            async with self.locks.lock_for(company_id), self.session_maker() as session:
                uow: _UnitOfWork | None = None
                try:
                    repository = SubscriptionRepository(session)
                    row = await repository.get_row(company_id, for_update=True)
                    uow = _UnitOfWork(repository, row, to_subscription(row))
                    yield uow
                    await session.commit()
                except Exception:
                    await session.rollback()
                    if uow is not None and uow.charge_references:
                        logger.critical(
                            "billing.transaction.rolled_back_after_charge",
                            company_id=company_id,
                            charge_references=uow.charge_references,
                        )
                    raise

    @asynccontextmanager
    async def _read_session(self) -> AsyncIterator[SubscriptionRepository]:
        async with self.session_maker() as session:
            yield SubscriptionRepository(session)

    async def _snapshot(self, company_id: int) -> tuple[Subscription, list[CompanyAddon]]:
        async with self._read_session() as repository:
            subscription = await repository.get(company_id)
            company_addons = await repository.list_company_addons(company_id)
        return subscription, company_addons

    def _get_addon(self, addon_key: str) -> Addon:
        addon = self.catalog.get(addon_key)
        if addon is None:
            raise AddonNotFoundError(f"Add-on '{addon_key}' does not exist", addon_key=addon_key)
        return addon

    def _period(self, subscription: Subscription, now: datetime) -> tuple[datetime, datetime]:
        return current_period_bounds(subscription, now, self.period_days)

    def _charge_request(
        self, subscription: Subscription, amount: Decimal, description: str, key: str, now: datetime
    ) -> ChargeRequest:
        return ChargeRequest(
            company_id=subscription.company_id,
            amount=amount,
            currency=self.currency,
            description=description,
            idempotency_key=f"{subscription.company_id}:{key}:{int(now.timestamp())}",
            customer_ref=subscription.payment_customer_id,
            metadata={"operation": key.split(":", 1)[0]},
        )

    # ==================== Subscription lifecycle ====================

    async def create_subscription(
        self,
        company_id: int,
        plan: Plan | str = Plan.BASIC,
        trial_duration_days: int | None = None,
        promotional_code: str | None = None,
    ) -> Subscription:
        """
        Start the trial for a newly registered company.

        Args:
            company_id: Company being registered
            plan: Initial plan
            trial_duration_days: Trial length; defaults to the configured trial
            promotional_code: Code whose trial length replaces the default

        Returns:
            The new subscription
        """
        plan = parse_plan(plan)
        now = self.clock.now()

        async with self.locks.lock_for(company_id):
            async with self.session_maker() as session:
                try:
                    repository = SubscriptionRepository(session)
                    if await repository.exists(company_id):
                        raise SubscriptionError(
                            f"Company {company_id} already has a subscription",
                            context={"company_id": company_id},
                        )

                    duration = (
                        trial_duration_days
                        if trial_duration_days is not None
                        else self.config.trial.default_duration_days
                    )
                    code = None
                    if promotional_code and self.config.enable_promotional_codes:
                        promo = await redeem_promotional_code(repository, promotional_code, now)
                        duration = promo.trial_duration_days
                        code = promo.code

                    trial_end = trial.trial_end_for(now, duration)
                    subscription = Subscription(
                        company_id=company_id,
                        plan=plan,
                        status=SubscriptionStatus.TRIALING,
                        trial_start_date=now,
                        trial_end_date=trial_end,
                        trial_duration_days=duration,
                        promotional_code=code,
                        base_monthly_price=PLAN_PRICES[plan],
                        current_period_start=now,
                        current_period_end=trial_end,
                    )
                    await repository.add(subscription)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        log_audit_event(
            "billing.subscription.created",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            plan=plan.value,
            trial_duration_days=duration,
            promotional_code=code,
        )
        return subscription

    async def get_subscription(self, company_id: int) -> Subscription:
        async with self._read_session() as repository:
            return await repository.get(company_id)

    async def cancel_subscription(self, company_id: int) -> Subscription:
        """Cancel at period end (paying) or immediately (trialing/blocked)."""
        now = self.clock.now()
        async with self._company_transaction(company_id) as uow:
            subscription = await uow.save(
                trial.request_cancellation(uow.subscription, now, self.period_days)
            )

        log_audit_event(
            "billing.subscription.cancellation_requested",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            status=subscription.status.value,
            effective_date=subscription.cancellation_effective_date.isoformat()
            if subscription.cancellation_effective_date
            else None,
        )
        return subscription

    async def resume_subscription(self, company_id: int) -> Subscription:
        now = self.clock.now()
        async with self._company_transaction(company_id) as uow:
            subscription = await uow.save(trial.resume(uow.subscription, now))

        log_audit_event(
            "billing.subscription.resumed",
            "billing",
            company_id=company_id,
            resource_type="subscription",
        )
        return subscription

    # ==================== Trial & payments ====================

    async def trial_status(self, company_id: int) -> TrialStatus:
        subscription = await self.get_subscription(company_id)
        return trial.trial_status(
            subscription, self.clock.now(), self.config.trial.expiring_threshold_days
        )

    async def add_payment_method(self, company_id: int, customer_ref: str) -> Subscription:
        """
        Attach a payment method.

        A blocked company is charged for the coming period straight away and
        becomes active; if that charge fails nothing is stored and it stays
        blocked.
        """
        now = self.clock.now()
        async with self._company_transaction(company_id) as uow:
            status = trial.effective_status(uow.subscription, now)
            if status is SubscriptionStatus.CANCELLED:
                raise SubscriptionStateError(
                    "Cancelled subscriptions cannot add a payment method",
                    current_state=status.value,
                    requested_state="add_payment_method",
                )

            updated = uow.subscription.model_copy(
                update={"has_payment_method": True, "payment_customer_id": customer_ref}
            )
            if status is SubscriptionStatus.BLOCKED:
                updated = await self._charge_and_activate(uow, updated, now)
            subscription = await uow.save(updated)

        log_audit_event(
            "billing.payment_method.added",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            status=subscription.status.value,
        )
        return subscription

    async def remove_payment_method(self, company_id: int) -> Subscription:
        async with self._company_transaction(company_id) as uow:
            subscription = await uow.save(
                uow.subscription.model_copy(
                    update={"has_payment_method": False, "payment_customer_id": None}
                )
            )

        log_audit_event(
            "billing.payment_method.removed",
            "billing",
            company_id=company_id,
            resource_type="subscription",
        )
        return subscription

    async def reactivate(self, company_id: int, customer_ref: str | None = None) -> Subscription:
        """
        Charge a blocked or lapsed-trial company and make it active.

        Args:
            company_id: Company to reactivate
            customer_ref: Payment method to attach first, if not already on file

        Returns:
            The active subscription
        """
        now = self.clock.now()
        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription
            status = trial.effective_status(subscription, now)
            lapsed_trial = status is SubscriptionStatus.TRIALING and trial.trial_expired(
                subscription, now
            )
            if status is not SubscriptionStatus.BLOCKED and not lapsed_trial:
                raise SubscriptionStateError(
                    "Only blocked or expired-trial subscriptions can be reactivated",
                    current_state=status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )
            if customer_ref:
                subscription = subscription.model_copy(
                    update={"has_payment_method": True, "payment_customer_id": customer_ref}
                )
            if not subscription.has_payment_method:
                raise SubscriptionStateError(
                    "Add a payment method before reactivating",
                    current_state=status.value,
                    requested_state=SubscriptionStatus.ACTIVE.value,
                )
            subscription = await uow.save(await self._charge_and_activate(uow, subscription, now))

        log_audit_event(
            "billing.subscription.reactivated",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            charge_references=uow.charge_references,
        )
        return subscription

    async def _charge_and_activate(
        self, uow: _UnitOfWork, subscription: Subscription, now: datetime
    ) -> Subscription:
        rows = await uow.repository.get_addon_rows(subscription.company_id)
        company_addons = [to_company_addon(row) for row in rows]
        amount = monthly_total(subscription, company_addons, self.catalog)
        result = await self.gateway.charge(
            self._charge_request(subscription, amount, "Suscripción Oficaz", "activation", now)
        )
        if result.reference:
            uow.charge_references.append(result.reference)
        return trial.activate(subscription, now, self.period_days)

    async def record_payment(
        self, company_id: int, reference: str | None = None, amount: Decimal | None = None
    ) -> Subscription:
        """
        Record a payment confirmed by the processor.

        trialing and blocked subscriptions become active with a fresh
        billing period; active ones only update their payment dates.
        """
        now = self.clock.now()
        async with self._company_transaction(company_id) as uow:
            previous = uow.subscription.status
            subscription = await uow.save(trial.activate(uow.subscription, now, self.period_days))

        log_audit_event(
            "billing.payment.recorded",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            reference=reference,
            amount=str(amount) if amount is not None else None,
            previous_status=previous.value,
            status=subscription.status.value,
        )
        return subscription

    # ==================== Features ====================

    async def resolve_features(self, company_id: int) -> EffectiveFeatureSet:
        """Entitlements from plan, overrides and add-ons. Recomputed every call."""
        subscription, company_addons = await self._snapshot(company_id)
        return resolve_feature_set(subscription, company_addons, self.catalog)

    async def has_access(self, company_id: int, feature_key: str | FeatureKey) -> bool:
        """Whether the company may use ``feature_key`` right now."""
        try:
            subscription, company_addons = await self._snapshot(company_id)
        except SubscriptionNotFoundError:
            logger.info("billing.access.no_subscription", company_id=company_id)
            return False
        status = trial.effective_status(subscription, self.clock.now())
        return feature_has_access(subscription, company_addons, feature_key, status, self.catalog)

    # ==================== Add-ons ====================

    def list_addons(self) -> list[Addon]:
        return list(self.catalog.values())

    async def list_company_addons(self, company_id: int) -> list[CompanyAddonView]:
        async with self._read_session() as repository:
            company_addons = await repository.list_company_addons(company_id)
        return addon_lifecycle.company_addon_views(company_addons, self.clock.now(), self.catalog)

    async def purchase_addon(self, company_id: int, addon_key: str) -> PurchaseResult:
        """
        Buy an add-on for the rest of the current billing period.

        The row is only written once the prorated charge is confirmed.

        Raises:
            AddonNotFoundError, AddonAlreadyActiveError, AddonInCooldownError,
            SubscriptionStateError, PaymentFailedError
        """
        addon = self._get_addon(addon_key)
        now = self.clock.now()

        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription
            trial.ensure_can_transact(subscription, now, "purchase add-ons")

            rows = await uow.repository.get_addon_rows(company_id, for_update=True)
            existing = addon_lifecycle.find_row([to_company_addon(r) for r in rows], addon.key)
            addon_lifecycle.check_purchase(addon, existing, now)

            amount = ZERO
            reference = None
            if not trial.in_free_trial(subscription, now):
                period_start, period_end = self._period(subscription, now)
                proration = calculate_proration(
                    addon.monthly_price, period_start, period_end, now, now
                )
                logger.debug("billing.addon.proration", addon_key=addon.key, **proration.to_log())
                amount = proration.amount
                result = await self.gateway.charge(
                    self._charge_request(
                        subscription, amount, f"Complemento {addon.name}", f"addon:{addon.key}", now
                    )
                )
                reference = result.reference
                if reference:
                    uow.charge_references.append(reference)

            company_addon = addon_lifecycle.activate(company_id, addon, existing, now, reference)
            await uow.repository.save_company_addons(rows, [company_addon])

        log_audit_event(
            "billing.addon.purchased",
            "billing",
            company_id=company_id,
            resource_type="company_addon",
            resource_id=addon.key,
            amount=str(amount),
            charge_reference=reference,
        )
        return PurchaseResult(
            company_addon=company_addon, amount_charged=amount, charge_reference=reference
        )

    async def cancel_addon(self, company_id: int, addon_key: str) -> CompanyAddon:
        """Schedule cancellation at period end; access is kept until then."""
        addon = self._get_addon(addon_key)
        now = self.clock.now()

        async with self._company_transaction(company_id) as uow:
            rows = await uow.repository.get_addon_rows(company_id, for_update=True)
            existing = addon_lifecycle.find_row([to_company_addon(r) for r in rows], addon.key)
            _, period_end = self._period(uow.subscription, now)
            company_addon = addon_lifecycle.request_cancel(addon, existing, now, period_end)
            await uow.repository.save_company_addons(rows, [company_addon])

        log_audit_event(
            "billing.addon.cancellation_requested",
            "billing",
            company_id=company_id,
            resource_type="company_addon",
            resource_id=addon.key,
            effective_date=company_addon.cancellation_effective_date.isoformat()
            if company_addon.cancellation_effective_date
            else None,
        )
        return company_addon

    # ==================== Seats & plans ====================

    async def change_seats(
        self, company_id: int, employees: int = 0, managers: int = 0, admins: int = 0
    ) -> SeatChangeResult:
        """
        Add or remove extra seats.

        Increases are billed as a prorated invoice item; decreases apply at
        once without credit.

        Args:
            company_id: Company changing seats
            employees: Change in extra employee seats
            managers: Change in extra manager seats
            admins: Change in extra admin seats

        Returns:
            Updated subscription and the amount invoiced
        """
        deltas = {
            SeatRole.EMPLOYEES: employees,
            SeatRole.MANAGERS: managers,
            SeatRole.ADMINS: admins,
        }
        now = self.clock.now()

        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription
            trial.ensure_can_transact(subscription, now, "change seats")

            counts = {}
            for role, delta in deltas.items():
                current = subscription.extra_seats.count(role)
                if current + delta < 0:
                    raise InvalidSeatDeltaError(
                        f"Cannot remove {-delta} {role.value} seats; only {current} contracted",
                        role=role.value,
                        current=current,
                        delta=delta,
                    )
                counts[role.value] = current + delta

            increase = sum(
                (SEAT_PRICES[role] * delta for role, delta in deltas.items() if delta > 0), ZERO
            )
            amount = ZERO
            reference = None
            if increase > 0 and not trial.in_free_trial(subscription, now):
                period_start, period_end = self._period(subscription, now)
                amount = calculate_proration(increase, period_start, period_end, now, now).amount
                result = await self.gateway.create_proration_item(
                    self._charge_request(subscription, amount, "Usuarios adicionales", "seats", now)
                )
                reference = result.reference
                if reference:
                    uow.charge_references.append(reference)

            subscription = await uow.save(
                subscription.model_copy(update={"extra_seats": ExtraSeats(**counts)})
            )

        log_audit_event(
            "billing.seats.changed",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            deltas={role.value: delta for role, delta in deltas.items()},
            amount=str(amount),
            charge_reference=reference,
        )
        return SeatChangeResult(
            subscription=subscription, amount_charged=amount, charge_reference=reference
        )

    async def change_plan(self, company_id: int, plan: Plan | str) -> PlanChangeResult:
        """
        Move to another self-service plan.

        Upgrades apply immediately and charge the prorated price difference;
        downgrades are scheduled for the end of the billing period. While the
        trial is running any change applies immediately at no charge; once
        it has lapsed without payment, upgrades are charged and downgrades
        apply at once.

        Raises:
            PlanNotFoundError: unknown plan, or the operator-only plan
        """
        target = parse_plan(plan)
        if not target.is_self_service:
            raise PlanNotFoundError(f"Plan '{target.value}' is not available", plan=target.value)
        now = self.clock.now()

        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription
            trial.ensure_can_transact(subscription, now, "change plan")

            amount = ZERO
            reference = None
            scheduled = False
            immediate = {
                "plan": target,
                "base_monthly_price": PLAN_PRICES[target],
                "next_plan": None,
                "plan_change_date": None,
            }

            if target is subscription.plan:
                # Same plan withdraws any scheduled downgrade.
                updated = subscription.model_copy(
                    update={"next_plan": None, "plan_change_date": None}
                )
            elif trial.in_free_trial(subscription, now):
                updated = subscription.model_copy(update=immediate)
            elif target.rank > subscription.plan.rank:
                difference = max(ZERO, PLAN_PRICES[target] - subscription.base_monthly_price)
                period_start, period_end = self._period(subscription, now)
                amount = calculate_proration(difference, period_start, period_end, now, now).amount
                result = await self.gateway.charge(
                    self._charge_request(
                        subscription,
                        amount,
                        f"Cambio a plan {target.value}",
                        f"plan:{target.value}",
                        now,
                    )
                )
                reference = result.reference
                if reference:
                    uow.charge_references.append(reference)
                updated = subscription.model_copy(update=immediate)
            elif subscription.status is SubscriptionStatus.TRIALING:
                # Lapsed trial: nothing paid yet, so a downgrade has no period to wait out.
                updated = subscription.model_copy(update=immediate)
            else:
                _, period_end = self._period(subscription, now)
                updated = subscription.model_copy(
                    update={"next_plan": target, "plan_change_date": period_end}
                )
                scheduled = True

            subscription = await uow.save(updated)

        log_audit_event(
            "billing.plan.scheduled" if scheduled else "billing.plan.changed",
            "billing",
            company_id=company_id,
            resource_type="subscription",
            plan=target.value,
            amount=str(amount),
            charge_reference=reference,
        )
        return PlanChangeResult(
            subscription=subscription,
            amount_charged=amount,
            charge_reference=reference,
            scheduled=scheduled,
        )

    async def update_override(
        self, company_id: int, override: SubscriptionOverride, actor: str | None = None
    ) -> Subscription:
        """
        Apply an operator override.

        Only fields set on ``override`` are changed. A plan set here applies
        immediately, including the operator-only plan.
        """
        now = self.clock.now()
        fields = override.model_fields_set
        custom_features = (
            normalize_feature_map(override.custom_features)
            if override.custom_features is not None
            else None
        )

        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription
            update: dict[str, object] = {}
            if override.plan is not None:
                update.update(
                    plan=override.plan,
                    base_monthly_price=PLAN_PRICES[override.plan],
                    next_plan=None,
                    plan_change_date=None,
                )
            if "custom_monthly_price" in fields:
                update["custom_monthly_price"] = override.custom_monthly_price
            if override.use_custom_feature_overrides is not None:
                update["use_custom_feature_overrides"] = override.use_custom_feature_overrides
            if custom_features is not None:
                update["custom_features"] = custom_features

            subscription = subscription.model_copy(update=update)
            if override.trial_duration_days is not None:
                subscription = trial.with_trial_duration(
                    subscription, override.trial_duration_days, now
                )
            subscription = await uow.save(subscription)

        log_audit_event(
            "billing.subscription.overridden",
            "billing",
            company_id=company_id,
            actor=actor,
            resource_type="subscription",
            fields=sorted(fields),
        )
        return subscription

    async def invoice_preview(self, company_id: int) -> InvoicePreview:
        """What the next billing period will cost."""
        subscription, company_addons = await self._snapshot(company_id)
        _, period_end = self._period(subscription, self.clock.now())
        lines = invoice_lines(subscription, company_addons, self.catalog)
        total = sum((line.amount for line in lines), ZERO)
        return InvoicePreview(
            company_id=company_id,
            period_start=period_end,
            period_end=period_end + timedelta(days=self.period_days),
            currency=self.currency,
            lines=lines,
            total=total,
            formatted_total=format_money(
                create_money(total, self.currency), self.config.currency.locale
            ),
        )

    # ==================== Sweep ====================

    async def sweep_company(self, company_id: int) -> SweepResult:
        """
        Apply every time-based transition that is due for one company.

        Blocks lapsed trials, completes due add-on cancellations, rolls the
        billing period forward (applying scheduled downgrades and
        cancellations). Running it again with the same clock changes
        nothing. No processor calls are made.
        """
        now = self.clock.now()
        result = SweepResult(company_id=company_id)

        async with self._company_transaction(company_id) as uow:
            subscription = uow.subscription

            if trial.should_block(subscription, now):
                subscription = trial.block(subscription)
                result.blocked = True

            rows = await uow.repository.get_addon_rows(company_id, for_update=True)
            completed = addon_lifecycle.sweep(
                [to_company_addon(r) for r in rows], now, self.config.addons.cooldown_days
            )
            if completed:
                await uow.repository.save_company_addons(rows, completed)
                result.cancelled_addons = [a.addon_key for a in completed]

            length = timedelta(days=self.period_days)
            while (
                subscription.status is SubscriptionStatus.ACTIVE
                and subscription.current_period_end <= now
            ):
                boundary = subscription.current_period_end
                if trial.cancellation_due(subscription, boundary):
                    subscription = subscription.model_copy(
                        update={
                            "status": SubscriptionStatus.CANCELLED,
                            "cancel_at_period_end": False,
                            "next_plan": None,
                            "plan_change_date": None,
                        }
                    )
                    result.subscription_cancelled = True
                    break
                update: dict[str, object] = {
                    "current_period_start": boundary,
                    "current_period_end": boundary + length,
                }
                if subscription.next_plan is not None:
                    update.update(
                        plan=subscription.next_plan,
                        base_monthly_price=PLAN_PRICES[subscription.next_plan],
                        next_plan=None,
                        plan_change_date=None,
                    )
                    result.plan_changed_to = subscription.next_plan
                subscription = subscription.model_copy(update=update)
                result.periods_rolled += 1

            if subscription != uow.subscription:
                await uow.save(subscription)

        if result.changed:
            log_audit_event(
                "billing.sweep.applied",
                "billing",
                company_id=company_id,
                resource_type="subscription",
                **result.model_dump(exclude={"company_id"}, mode="json"),
            )
        return result

    async def sweep_all(self, batch_size: int | None = None) -> list[SweepResult]:
        """
        Sweep every company with a transition due.

        Companies are processed one at a time behind their own lock; a
        failure for one company is logged and does not stop the rest.
        """
        batch_size = batch_size or self.config.sweep_batch_size
        now = self.clock.now()
        results: list[SweepResult] = []
        failures = 0
        after = 0

        while True:
            async with self._read_session() as repository:
                company_ids = await repository.company_ids_due_for_sweep(
                    now, after_company_id=after, limit=batch_size
                )
            if not company_ids:
                break

            for company_id in company_ids:
                try:
                    results.append(await self.sweep_company(company_id))
                except Exception:
                    failures += 1
                    logger.exception("billing.sweep.company_failed", company_id=company_id)
            after = company_ids[-1]

        logger.info(
            "billing.sweep.completed",
            companies=len(results),
            changed=sum(1 for r in results if r.changed),
            failures=failures,
        )
        return results


__all__ = ["SubscriptionService"]
