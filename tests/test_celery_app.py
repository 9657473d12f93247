"""Tests for the Celery application and the sweep task."""

from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from celery import Celery

from oficaz.platform.billing.models import SweepResult
from oficaz.platform.celery_app import celery_app, setup_periodic_tasks
from oficaz.platform.tasks import sweep_subscriptions_task


@pytest.mark.unit
class TestCeleryApp:
    """Test the Celery application configuration."""

    def test_celery_app_creation(self):
        assert isinstance(celery_app, Celery)
        assert celery_app.main == "oficaz_platform"

    def test_celery_app_configuration(self):
        assert celery_app.conf.task_serializer == "json"
        assert "json" in celery_app.conf.accept_content
        assert celery_app.conf.enable_utc is True
        assert celery_app.conf.task_acks_late is True

    def test_billing_tasks_routed_to_billing_queue(self):
        queue_names = [q.name for q in celery_app.conf.task_queues]

        assert "billing" in queue_names
        assert celery_app.conf.task_routes["billing.*"] == {"queue": "billing"}

    def test_periodic_sweep_registered(self):
        sender = Mock()

        setup_periodic_tasks(sender)

        names = [c.kwargs["name"] for c in sender.add_periodic_task.call_args_list]
        assert names == [
            "billing-sweep-subscriptions-daily",
            "billing-sweep-subscriptions-hourly",
        ]


@pytest.mark.unit
class TestSweepSubscriptionsTask:
    """The task runs the sweep in its own event loop and summarises it."""

    def test_summary(self):
        results = [
            SweepResult(company_id=1, blocked=True),
            SweepResult(company_id=2, cancelled_addons=["documents", "messages"]),
            SweepResult(company_id=3, periods_rolled=1, subscription_cancelled=True),
            SweepResult(company_id=4),
        ]
        service = MagicMock()
        service.sweep_all = AsyncMock(return_value=results)
        engine = MagicMock()
        engine.dispose = AsyncMock()

        with (
            patch("oficaz.platform.tasks.SubscriptionService", return_value=service),
            patch("oficaz.platform.tasks.get_async_engine", return_value=engine),
        ):
            summary = sweep_subscriptions_task(batch_size=50)

        service.sweep_all.assert_awaited_once_with(batch_size=50)
        engine.dispose.assert_awaited_once()
        assert summary == {
            "status": "ok",
            "companies_swept": 4,
            "companies_changed": 3,
            "blocked": 1,
            "addons_cancelled": 2,
            "subscriptions_cancelled": 1,
        }

    def test_engine_disposed_on_failure(self):
        service = MagicMock()
        service.sweep_all = AsyncMock(side_effect=RuntimeError("database unavailable"))
        engine = MagicMock()
        engine.dispose = AsyncMock()

        with (
            patch("oficaz.platform.tasks.SubscriptionService", return_value=service),
            patch("oficaz.platform.tasks.get_async_engine", return_value=engine),
        ):
            with pytest.raises(RuntimeError):
                sweep_subscriptions_task()

        engine.dispose.assert_awaited_once()
