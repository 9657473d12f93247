"""
Celery application configuration.

Runs the periodic billing sweep that applies time-based subscription
transitions (trial blocking, add-on cooldowns, period rollover).
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from oficaz.platform.settings import settings

logger = structlog.get_logger(__name__)

# Create Celery application
celery_app = Celery(
    "oficaz_platform",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["oficaz.platform.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    # Task routing
    task_routes={
        "billing.*": {"queue": "billing"},
    },
    # Queue configuration
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("billing", routing_key="billing"),
    ),
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    # Task result settings
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=settings.celery.task_time_limit,
    task_soft_time_limit=settings.celery.task_soft_time_limit,
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the billing sweep schedule."""
    from oficaz.platform.tasks import sweep_subscriptions_task

    # Full sweep daily at 00:05 UTC, just after most periods roll over
    sender.add_periodic_task(
        crontab(hour=0, minute=5),
        sweep_subscriptions_task.s(),
        name="billing-sweep-subscriptions-daily",
    )

    # Light sweep hourly so trial blocks and cancellations land promptly
    sender.add_periodic_task(
        3600.0,
        sweep_subscriptions_task.s(),
        name="billing-sweep-subscriptions-hourly",
    )

    logger.info("celery.periodic_tasks.registered", tasks=["billing.sweep_subscriptions"])


__all__ = ["celery_app"]
