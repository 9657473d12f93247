"""
Add-on lifecycle.

active -> pending_cancel (cancel) -> cancelled (sweep, once the
cancellation date has passed) -> active (purchase, once the cooldown has
elapsed). Functions here validate and return new snapshots; charging and
persistence belong to the subscription service.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

import structlog

from oficaz.platform.billing.catalog import ADDON_CATALOG, Addon
from oficaz.platform.billing.exceptions import (
    AddonAlreadyActiveError,
    AddonError,
    AddonInCooldownError,
    AddonNotActiveError,
)
from oficaz.platform.billing.models import CompanyAddon, CompanyAddonStatus, CompanyAddonView

logger = structlog.get_logger(__name__)

DEFAULT_COOLDOWN_DAYS = 30


def find_row(company_addons: Iterable[CompanyAddon], addon_key: str) -> CompanyAddon | None:
    for row in company_addons:
        if row.addon_key == addon_key:
            return row
    return None


def in_cooldown(row: CompanyAddon | None, now: datetime) -> bool:
    return row is not None and row.cooldown_ends_at is not None and row.cooldown_ends_at > now


def check_purchase(addon: Addon, existing: CompanyAddon | None, now: datetime) -> None:
    """Validate a purchase before anything is charged.

    Raises:
        AddonError: free-feature add-ons are not sold
        AddonAlreadyActiveError: an active or pending-cancel row exists
        AddonInCooldownError: the add-on was cancelled too recently
    """
    if addon.is_free_feature:
        raise AddonError(
            f"'{addon.name}' is included in every plan and cannot be purchased",
            context={"addon_key": addon.key},
        )
    if existing is not None and existing.grants_access:
        raise AddonAlreadyActiveError(
            f"'{addon.name}' is already active", addon_key=addon.key, status=existing.status.value
        )
    if existing is not None and existing.cooldown_ends_at and existing.cooldown_ends_at > now:
        raise AddonInCooldownError(
            f"'{addon.name}' was cancelled recently and cannot be purchased yet",
            addon_key=addon.key,
            cooldown_ends_at=existing.cooldown_ends_at,
        )


def activate(
    company_id: int,
    addon: Addon,
    existing: CompanyAddon | None,
    now: datetime,
    charge_reference: str | None = None,
) -> CompanyAddon:
    """Create or reactivate the purchase row. Call only after a confirmed charge."""
    fields = {
        "status": CompanyAddonStatus.ACTIVE,
        "activated_at": now,
        "cancelled_at": None,
        "cancellation_effective_date": None,
        "cooldown_ends_at": None,
        "last_charge_reference": charge_reference,
    }
    if existing is None:
        return CompanyAddon(company_id=company_id, addon_key=addon.key, **fields)
    return existing.model_copy(update=fields)


def request_cancel(
    addon: Addon, existing: CompanyAddon | None, now: datetime, period_end: datetime
) -> CompanyAddon:
    """Schedule cancellation at the end of the current billing period.

    Access is kept until then. Cancelling an add-on that is already
    pending cancellation leaves it as is.

    Raises:
        AddonError: free-feature add-ons cannot be cancelled
        AddonNotActiveError: no active or pending-cancel row
    """
    if addon.is_free_feature:
        raise AddonError(
            f"'{addon.name}' is included in every plan and cannot be cancelled",
            context={"addon_key": addon.key},
        )
    if existing is None or not existing.grants_access:
        raise AddonNotActiveError(f"'{addon.name}' is not active", addon_key=addon.key)
    if existing.status is CompanyAddonStatus.PENDING_CANCEL:
        return existing
    return existing.model_copy(
        update={
            "status": CompanyAddonStatus.PENDING_CANCEL,
            "cancelled_at": now,
            "cancellation_effective_date": period_end,
        }
    )


def sweep(
    company_addons: Iterable[CompanyAddon],
    now: datetime,
    cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
) -> list[CompanyAddon]:
    """Finish due cancellations and start their cooldown.

    Returns only the rows that changed, so a second call with the same
    ``now`` returns nothing.
    """
    changed = []
    for row in company_addons:
        if row.status is not CompanyAddonStatus.PENDING_CANCEL:
            continue
        if row.cancellation_effective_date is None or row.cancellation_effective_date > now:
            continue
        changed.append(
            row.model_copy(
                update={
                    "status": CompanyAddonStatus.CANCELLED,
                    "cooldown_ends_at": now + timedelta(days=cooldown_days),
                }
            )
        )
        logger.debug(
            "billing.addon.cancellation_completed",
            company_id=row.company_id,
            addon_key=row.addon_key,
        )
    return changed


def company_addon_views(
    company_addons: Iterable[CompanyAddon],
    now: datetime,
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> list[CompanyAddonView]:
    """Catalog entries annotated with one company's purchase state."""
    rows = {row.addon_key: row for row in company_addons}
    views = []
    for addon in catalog.values():
        row = rows.get(addon.key)
        views.append(
            CompanyAddonView(
                key=addon.key,
                name=addon.name,
                description=addon.description,
                short_description=addon.short_description,
                monthly_price=addon.monthly_price,
                is_free_feature=addon.is_free_feature,
                icon=addon.icon,
                status=row.status if row else None,
                is_purchased=addon.is_free_feature or bool(row and row.grants_access),
                is_pending_cancel=bool(row and row.status is CompanyAddonStatus.PENDING_CANCEL),
                is_in_cooldown=in_cooldown(row, now),
                cooldown_ends_at=row.cooldown_ends_at if row else None,
                cancellation_effective_date=row.cancellation_effective_date if row else None,
            )
        )
    return views


__all__ = [
    "DEFAULT_COOLDOWN_DAYS",
    "activate",
    "check_purchase",
    "company_addon_views",
    "find_row",
    "in_cooldown",
    "request_cancel",
    "sweep",
]
