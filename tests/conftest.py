"""
Global pytest configuration and fixtures for the Oficaz platform tests.

Every test runs against an in-memory SQLite database and a fake payment
processor; nothing reaches the network.
"""

import os

# Settings are read at import time; pin them before anything imports oficaz.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")
os.environ.pop("DATABASE__URL", None)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from oficaz.platform.billing.clock import FrozenClock  # noqa: E402
from oficaz.platform.billing.config import BillingConfig, set_billing_config  # noqa: E402
from oficaz.platform.billing.payments import PaymentGateway  # noqa: E402
from oficaz.platform.billing.service import SubscriptionService  # noqa: E402
from oficaz.platform.db import create_all_tables_async  # noqa: E402
from tests.billing.fakes import FakePaymentProcessor  # noqa: E402

TRIAL_START = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at the start of the reference trial."""
    return FrozenClock(TRIAL_START)


@pytest.fixture
def billing_config() -> BillingConfig:
    config = BillingConfig()
    set_billing_config(config)
    yield config
    set_billing_config(None)


@pytest_asyncio.fixture
async def async_db_engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all_tables_async(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_db_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def payment_processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def payment_gateway(payment_processor) -> PaymentGateway:
    return PaymentGateway(payment_processor, timeout_seconds=0.2)


@pytest.fixture
def subscription_service(session_maker, payment_gateway, clock, billing_config):
    """Service wired to the test database, fake processor and frozen clock."""
    return SubscriptionService(
        session_maker=session_maker,
        gateway=payment_gateway,
        clock=clock,
        config=billing_config,
    )
