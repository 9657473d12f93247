"""
Feature resolution.

A single pure function turns a subscription snapshot plus its add-on rows
into the effective feature set. Nothing here is cached: callers resolve
again on every access check.
"""

from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType

import structlog

from oficaz.platform.billing.catalog import ADDON_CATALOG, Addon
from oficaz.platform.billing.exceptions import FeatureNotFoundError
from oficaz.platform.billing.models import CompanyAddon, Plan, Subscription, SubscriptionStatus

logger = structlog.get_logger(__name__)


class FeatureKey(str, Enum):
    """Every feature the platform can gate."""

    EMPLOYEES = "employees"
    TIME_TRACKING = "time_tracking"
    VACATION = "vacation"
    SCHEDULES = "schedules"
    MESSAGES = "messages"
    REMINDERS = "reminders"
    DOCUMENTS = "documents"
    WORK_REPORTS = "work_reports"
    AI_ASSISTANT = "ai_assistant"
    INVENTORY = "inventory"
    LOGO_UPLOAD = "logo_upload"
    EMPLOYEE_TIME_EDIT_PERMISSION = "employee_time_edit_permission"


EffectiveFeatureSet = Mapping[FeatureKey, bool]


def _plan_map(enabled: set[FeatureKey]) -> MappingProxyType[FeatureKey, bool]:
    return MappingProxyType({key: key in enabled for key in FeatureKey})


_BASIC = {
    FeatureKey.EMPLOYEES,
    FeatureKey.TIME_TRACKING,
    FeatureKey.VACATION,
    FeatureKey.SCHEDULES,
    FeatureKey.MESSAGES,
}
_PRO = _BASIC | {
    FeatureKey.REMINDERS,
    FeatureKey.DOCUMENTS,
    FeatureKey.LOGO_UPLOAD,
    FeatureKey.EMPLOYEE_TIME_EDIT_PERMISSION,
}

PLAN_DEFAULT_FEATURES: MappingProxyType[Plan, MappingProxyType[FeatureKey, bool]] = (
    MappingProxyType(
        {
            Plan.BASIC: _plan_map(_BASIC),
            Plan.PRO: _plan_map(_PRO),
            Plan.MASTER: _plan_map(set(FeatureKey)),
            Plan.OFICAZ: _plan_map(set(FeatureKey)),
        }
    )
)

# Keys still sent by older clients and stored in old override maps.
LEGACY_FEATURE_ALIASES: MappingProxyType[str, FeatureKey] = MappingProxyType(
    {
        "timeTracking": FeatureKey.TIME_TRACKING,
        "reports": FeatureKey.WORK_REPORTS,
        "analytics": FeatureKey.WORK_REPORTS,
        "logoUpload": FeatureKey.LOGO_UPLOAD,
        "timeEditingPermissions": FeatureKey.EMPLOYEE_TIME_EDIT_PERMISSION,
        "workReports": FeatureKey.WORK_REPORTS,
        "aiAssistant": FeatureKey.AI_ASSISTANT,
    }
)

_RESTRICTION_NAMES = {
    FeatureKey.EMPLOYEES: "Empleados",
    FeatureKey.TIME_TRACKING: "Fichajes",
    FeatureKey.VACATION: "Vacaciones",
    FeatureKey.SCHEDULES: "Cuadrante",
    FeatureKey.MESSAGES: "Mensajes",
    FeatureKey.REMINDERS: "Recordatorios",
    FeatureKey.DOCUMENTS: "Documentos",
    FeatureKey.WORK_REPORTS: "Partes de trabajo",
    FeatureKey.AI_ASSISTANT: "Asistente IA",
    FeatureKey.INVENTORY: "Inventario",
    FeatureKey.LOGO_UPLOAD: "Logo de empresa",
    FeatureKey.EMPLOYEE_TIME_EDIT_PERMISSION: "Edición de fichajes por empleados",
}

ACCESS_STATUSES = frozenset({SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE})


def normalize_feature_key(key: str | FeatureKey) -> FeatureKey:
    """Map a canonical or legacy key to ``FeatureKey``.

    Raises:
        FeatureNotFoundError: for keys that are neither
    """
    if isinstance(key, FeatureKey):
        return key
    alias = LEGACY_FEATURE_ALIASES.get(key)
    if alias is not None:
        return alias
    try:
        return FeatureKey(key)
    except ValueError:
        raise FeatureNotFoundError(f"Unknown feature '{key}'", feature_key=key) from None


def normalize_feature_map(features: Mapping[str, bool]) -> dict[str, bool]:
    """Canonicalise an override map for storage.

    Raises:
        FeatureNotFoundError: if any key is unknown
    """
    return {normalize_feature_key(k).value: bool(v) for k, v in features.items()}


def _override_map(custom_features: Mapping[str, bool]) -> dict[FeatureKey, bool]:
    resolved = {key: False for key in FeatureKey}
    for raw_key, enabled in custom_features.items():
        try:
            key = normalize_feature_key(raw_key)
        except FeatureNotFoundError:
            logger.warning("billing.features.unknown_override_key", feature_key=raw_key)
            continue
        resolved[key] = bool(enabled)
    return resolved


def resolve_features(
    subscription: Subscription,
    company_addons: Iterable[CompanyAddon],
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> EffectiveFeatureSet:
    """Compute the effective feature set for one company.

    Order of precedence:

    1. Plan defaults.
    2. The custom override map, which replaces the defaults in full.
    3. Paid add-ons are on only with an ``active`` or ``pending_cancel`` row;
       a purchase can turn a feature on but never off.
    4. Free-feature add-ons are always on.

    This is entitlement only; whether the company may use anything at all
    depends on its status (see ``has_access``).
    """
    if subscription.use_custom_feature_overrides:
        features = _override_map(subscription.custom_features)
        overridden = True
    else:
        features = dict(PLAN_DEFAULT_FEATURES[subscription.plan])
        overridden = False

    purchased = {row.addon_key for row in company_addons if row.grants_access}

    for addon in catalog.values():
        try:
            key = FeatureKey(addon.key)
        except ValueError:
            continue
        if addon.is_free_feature:
            features[key] = True
        elif addon.key in purchased:
            features[key] = True
        elif not overridden:
            features[key] = False

    return MappingProxyType(features)


def has_access(
    subscription: Subscription,
    company_addons: Iterable[CompanyAddon],
    feature_key: str | FeatureKey,
    status: SubscriptionStatus | None = None,
    catalog: Mapping[str, Addon] = ADDON_CATALOG,
) -> bool:
    """Feature check consulted before any protected page or action.

    ``status`` is the effective status at request time; it defaults to the
    stored one. Unknown keys are denied.
    """
    if (status or subscription.status) not in ACCESS_STATUSES:
        return False
    try:
        key = normalize_feature_key(feature_key)
    except FeatureNotFoundError:
        logger.info("billing.features.unknown_key", feature_key=str(feature_key))
        return False
    return resolve_features(subscription, company_addons, catalog)[key]


def feature_restriction_message(feature_key: str | FeatureKey) -> str:
    """User-facing text shown when a feature is not available."""
    try:
        key = normalize_feature_key(feature_key)
    except FeatureNotFoundError:
        return "Esta funcionalidad no está disponible en tu plan actual."
    name = _RESTRICTION_NAMES[key]
    if key.value in ADDON_CATALOG and not ADDON_CATALOG[key.value].is_free_feature:
        return f"{name} es un complemento de pago. Actívalo desde la tienda de complementos."
    return f"{name} no está disponible en tu plan actual. Mejora tu plan para acceder."


__all__ = [
    "ACCESS_STATUSES",
    "EffectiveFeatureSet",
    "FeatureKey",
    "LEGACY_FEATURE_ALIASES",
    "PLAN_DEFAULT_FEATURES",
    "feature_restriction_message",
    "has_access",
    "normalize_feature_key",
    "normalize_feature_map",
    "resolve_features",
]
