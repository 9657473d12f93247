"""Tests for structured logging helpers."""

import pytest
import structlog
from structlog.testing import capture_logs

from oficaz.platform.logging import company_context, get_logger, log_audit_event, setup_logging
from oficaz.platform.settings import settings

pytestmark = pytest.mark.unit


def test_audit_event_fields():
    with capture_logs() as logs:
        log_audit_event(
            "billing.addon.purchased",
            category="billing",
            company_id=1,
            resource_type="addon",
            resource_id="documents",
            amount="3.33",
        )

    assert logs == [
        {
            "event": "billing.addon.purchased",
            "log_level": "info",
            "audit_category": "billing",
            "audit_company_id": 1,
            "audit_actor": None,
            "audit_resource_type": "addon",
            "audit_resource_id": "documents",
            "amount": "3.33",
        }
    ]


def test_get_logger_binds_context():
    with capture_logs() as logs:
        get_logger("oficaz.test").bind(company_id=7).warning("billing.sweep.company_failed")

    assert logs[0]["company_id"] == 7
    assert logs[0]["log_level"] == "warning"


def test_company_context_is_scoped():
    with company_context(42):
        assert structlog.contextvars.get_contextvars()["company_id"] == 42

    assert "company_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.parametrize("enabled", [True, False])
def test_thread_name_processor_follows_setting(monkeypatch, enabled):
    monkeypatch.setattr(settings.observability, "log_thread_name", enabled)
    try:
        setup_logging()
        processors = structlog.get_config()["processors"]
        has_thread_name = any(
            isinstance(p, structlog.processors.CallsiteParameterAdder) for p in processors
        )
        assert has_thread_name is enabled
    finally:
        monkeypatch.undo()
        setup_logging()
