"""
Trial-extension promotional codes.

A valid code replaces the default trial length when a company registers.
"""

from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field

from oficaz.platform.billing.exceptions import PromotionalCodeError
from oficaz.platform.billing.models import PromotionalCodeTable
from oficaz.platform.billing.repository import SubscriptionRepository

logger = structlog.get_logger(__name__)


class PromotionalCode(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    description: str | None = None
    trial_duration_days: int = Field(60, ge=1)
    is_active: bool = True
    max_uses: int | None = Field(None, ge=1)
    current_uses: int = 0
    valid_from: datetime | None = None
    valid_until: datetime | None = None


def normalize_code(code: str) -> str:
    return code.strip().upper()


def check_redeemable(promo: PromotionalCode, now: datetime) -> None:
    """Raises ``PromotionalCodeError`` naming why the code cannot be used."""
    reason = None
    if not promo.is_active:
        reason = "inactive"
    elif promo.valid_from is not None and now < promo.valid_from:
        reason = "not_yet_valid"
    elif promo.valid_until is not None and now > promo.valid_until:
        reason = "expired"
    elif promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        reason = "exhausted"

    if reason is not None:
        raise PromotionalCodeError(
            f"Promotional code '{promo.code}' cannot be used ({reason})",
            code=promo.code,
            reason=reason,
        )


async def redeem_promotional_code(
    repository: SubscriptionRepository, code: str, now: datetime
) -> PromotionalCode:
    """Validate a code and count one use. Runs inside the caller's transaction."""
    normalized = normalize_code(code)
    row = await repository.get_promotional_code(normalized, for_update=True)
    if row is None:
        raise PromotionalCodeError(
            f"Promotional code '{normalized}' does not exist", code=normalized, reason="not_found"
        )

    promo = PromotionalCode.model_validate(row)
    check_redeemable(promo, now)

    row.current_uses = promo.current_uses + 1
    await repository.session.flush()
    logger.info(
        "billing.promotional_code.redeemed",
        code=normalized,
        trial_duration_days=promo.trial_duration_days,
        current_uses=row.current_uses,
    )
    return promo.model_copy(update={"current_uses": row.current_uses})


async def create_promotional_code(
    repository: SubscriptionRepository, promo: PromotionalCode
) -> PromotionalCode:
    """Store a new code (operator action)."""
    normalized = normalize_code(promo.code)
    if await repository.get_promotional_code(normalized) is not None:
        raise PromotionalCodeError(
            f"Promotional code '{normalized}' already exists", code=normalized, reason="duplicate"
        )
    row = PromotionalCodeTable(
        code=normalized,
        description=promo.description,
        trial_duration_days=promo.trial_duration_days,
        is_active=promo.is_active,
        max_uses=promo.max_uses,
        current_uses=promo.current_uses,
        valid_from=promo.valid_from,
        valid_until=promo.valid_until,
    )
    repository.session.add(row)
    await repository.session.flush()
    logger.info("billing.promotional_code.created", code=normalized)
    return PromotionalCode.model_validate(row)


__all__ = [
    "PromotionalCode",
    "check_redeemable",
    "create_promotional_code",
    "normalize_code",
    "redeem_promotional_code",
]
