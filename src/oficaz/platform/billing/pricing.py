"""
Pricing table.

Static plan and seat prices plus the monthly total that drives renewals
and the invoice preview.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from types import MappingProxyType

from oficaz.platform.billing.catalog import ADDON_CATALOG, Addon
from oficaz.platform.billing.exceptions import PlanNotFoundError
from oficaz.platform.billing.models import (
    CompanyAddon,
    CompanyAddonStatus,
    InvoiceLine,
    Plan,
    SeatRole,
    Subscription,
)
from oficaz.platform.billing.money_utils import round_half_up

PLAN_PRICES: MappingProxyType[Plan, Decimal] = MappingProxyType(
    {
        Plan.BASIC: Decimal("19.00"),
        Plan.PRO: Decimal("39.00"),
        Plan.MASTER: Decimal("79.00"),
        Plan.OFICAZ: Decimal("0.00"),
    }
)

SEAT_PRICES: MappingProxyType[SeatRole, Decimal] = MappingProxyType(
    {
        SeatRole.EMPLOYEES: Decimal("2.00"),
        SeatRole.MANAGERS: Decimal("4.00"),
        SeatRole.ADMINS: Decimal("6.00"),
    }
)

_SEAT_LABELS = {
    SeatRole.EMPLOYEES: "Empleados adicionales",
    SeatRole.MANAGERS: "Managers adicionales",
    SeatRole.ADMINS: "Administradores adicionales",
}


def parse_plan(value: str | Plan) -> Plan:
    """Coerce a plan name to ``Plan``.

    Raises:
        PlanNotFoundError: for unknown plan names
    """
    if isinstance(value, Plan):
        return value
    try:
        return Plan(value.strip().lower())
    except ValueError:
        raise PlanNotFoundError(f"Plan '{value}' does not exist", plan=str(value)) from None


def renewing_addons(
    company_addons: Iterable[CompanyAddon],
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> list[Addon]:
    """Paid add-ons billed again next period.

    ``pending_cancel`` rows keep access until their effective date but are
    not renewed.
    """
    renewing = []
    for row in company_addons:
        if row.status is not CompanyAddonStatus.ACTIVE:
            continue
        addon = catalog.get(row.addon_key)
        if addon is None or addon.is_free_feature:
            continue
        renewing.append(addon)
    return sorted(renewing, key=lambda a: a.key)


def invoice_lines(
    subscription: Subscription,
    company_addons: Iterable[CompanyAddon],
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> list[InvoiceLine]:
    """Break the next period's charge into lines.

    A scheduled downgrade is already priced at the next plan.
    """
    plan = subscription.next_plan or subscription.plan
    if subscription.custom_monthly_price is not None:
        base = subscription.custom_monthly_price
        label = f"Plan {plan.value} (precio personalizado)"
    elif subscription.next_plan is not None:
        base = PLAN_PRICES[subscription.next_plan]
        label = f"Plan {plan.value}"
    else:
        base = subscription.base_monthly_price
        label = f"Plan {plan.value}"

    lines = [InvoiceLine(description=label, unit_price=base, amount=round_half_up(base))]

    for role, count in subscription.extra_seats.items():
        if count:
            unit = SEAT_PRICES[role]
            lines.append(
                InvoiceLine(
                    description=_SEAT_LABELS[role],
                    quantity=count,
                    unit_price=unit,
                    amount=round_half_up(unit * count),
                )
            )

    for addon in renewing_addons(company_addons, catalog):
        lines.append(
            InvoiceLine(
                description=addon.name,
                unit_price=addon.monthly_price,
                amount=round_half_up(addon.monthly_price),
            )
        )
    return lines


def monthly_total(
    subscription: Subscription,
    company_addons: Iterable[CompanyAddon],
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> Decimal:
    return sum(
        (line.amount for line in invoice_lines(subscription, company_addons, catalog)),
        Decimal("0.00"),
    )


__all__ = [
    "PLAN_PRICES",
    "SEAT_PRICES",
    "invoice_lines",
    "monthly_total",
    "parse_plan",
    "renewing_addons",
]
