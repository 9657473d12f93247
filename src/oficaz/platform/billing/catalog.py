"""
Add-on catalog.

Immutable reference data: every add-on a company can see in the store,
its monthly price and whether it is bundled for free.
"""

from decimal import Decimal
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from oficaz.platform.billing.exceptions import AddonNotFoundError


class Addon(BaseModel):
    """Catalog entry for an add-on."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Stable add-on key, equal to its feature key")
    name: str
    description: str = ""
    short_description: str = ""
    monthly_price: Decimal = Field(ge=0, description="Monthly price in EUR")
    is_free_feature: bool = Field(
        False, description="Bundled functionality shown in the store but never billed"
    )
    icon: str | None = None


_ADDONS: tuple[Addon, ...] = (
    Addon(
        key="employees",
        name="Empleados",
        short_description="Gestión de empleados",
        description="Alta, baja y fichas de los empleados de la empresa.",
        monthly_price=Decimal("0.00"),
        is_free_feature=True,
        icon="Users",
    ),
    Addon(
        key="time_tracking",
        name="Fichajes",
        short_description="Control horario",
        description="Registro de entradas, salidas y pausas con informes de horas.",
        monthly_price=Decimal("3.00"),
        icon="Clock",
    ),
    Addon(
        key="vacation",
        name="Vacaciones",
        short_description="Solicitudes de vacaciones",
        description="Solicitud y aprobación de vacaciones y ausencias.",
        monthly_price=Decimal("3.00"),
        icon="CalendarDays",
    ),
    Addon(
        key="schedules",
        name="Cuadrante",
        short_description="Turnos de trabajo",
        description="Planificación de turnos y cuadrantes semanales.",
        monthly_price=Decimal("3.00"),
        icon="CalendarClock",
    ),
    Addon(
        key="messages",
        name="Mensajes",
        short_description="Mensajería interna",
        description="Mensajes entre la empresa y sus empleados.",
        monthly_price=Decimal("5.00"),
        icon="MessageSquare",
    ),
    Addon(
        key="reminders",
        name="Recordatorios",
        short_description="Recordatorios y tareas",
        description="Recordatorios personales y asignados a empleados.",
        monthly_price=Decimal("5.00"),
        icon="Bell",
    ),
    Addon(
        key="documents",
        name="Documentos",
        short_description="Gestión documental",
        description="Envío, firma y archivo de nóminas y documentos.",
        monthly_price=Decimal("10.00"),
        icon="FileText",
    ),
    Addon(
        key="work_reports",
        name="Partes de trabajo",
        short_description="Partes de obra",
        description="Partes de trabajo con firma del cliente y exportación a PDF.",
        monthly_price=Decimal("8.00"),
        icon="ClipboardList",
    ),
    Addon(
        key="ai_assistant",
        name="Asistente IA",
        short_description="Asistente inteligente",
        description="Asistente que automatiza tareas de gestión habituales.",
        monthly_price=Decimal("15.00"),
        icon="Sparkles",
    ),
)

ADDON_CATALOG: MappingProxyType[str, Addon] = MappingProxyType({a.key: a for a in _ADDONS})


def get_addon(key: str) -> Addon:
    """Look up an add-on by key.

    Raises:
        AddonNotFoundError: if the key is not in the catalog
    """
    try:
        return ADDON_CATALOG[key]
    except KeyError:
        raise AddonNotFoundError(f"Add-on '{key}' does not exist", addon_key=key) from None


def list_addons() -> list[Addon]:
    return list(ADDON_CATALOG.values())


def paid_addon_keys() -> frozenset[str]:
    return frozenset(a.key for a in ADDON_CATALOG.values() if not a.is_free_feature)


def free_addon_keys() -> frozenset[str]:
    return frozenset(a.key for a in ADDON_CATALOG.values() if a.is_free_feature)


__all__ = [
    "ADDON_CATALOG",
    "Addon",
    "free_addon_keys",
    "get_addon",
    "list_addons",
    "paid_addon_keys",
]
