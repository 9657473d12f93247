"""
Central task registration module for Celery.
"""

import asyncio
from typing import Any

import structlog

from oficaz.platform.billing.service import SubscriptionService
from oficaz.platform.celery_app import celery_app
from oficaz.platform.db import get_async_engine

logger = structlog.get_logger(__name__)


async def _sweep_subscriptions(batch_size: int | None = None) -> dict[str, Any]:
    service = SubscriptionService()
    try:
        results = await service.sweep_all(batch_size=batch_size)
    finally:
        # Pooled connections belong to this event loop
        await get_async_engine().dispose()
    changed = [r for r in results if r.changed]
    return {
        "status": "ok",
        "companies_swept": len(results),
        "companies_changed": len(changed),
        "blocked": sum(1 for r in changed if r.blocked),
        "addons_cancelled": sum(len(r.cancelled_addons) for r in changed),
        "subscriptions_cancelled": sum(1 for r in changed if r.subscription_cancelled),
    }


@celery_app.task(name="billing.sweep_subscriptions")
def sweep_subscriptions_task(batch_size: int | None = None) -> dict[str, Any]:
    """Periodic task applying due trial, add-on and billing-period transitions."""
    summary = asyncio.run(_sweep_subscriptions(batch_size))
    logger.info("billing.sweep_subscriptions.finished", **summary)
    return summary


__all__ = ["sweep_subscriptions_task"]
