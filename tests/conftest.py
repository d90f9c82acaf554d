import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("METRICS_ENABLED", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from booking_funnel.infra.db import Base, get_db_session
from booking_funnel.infra.stripe_resilience import stripe_circuit
from booking_funnel.main import app
from booking_funnel.settings import settings
from tests.factories import FakeCommunicationAdapter, FakeEmailAdapter


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    fields = (
        "app_env",
        "testing",
        "service_role_key",
        "manager_email",
        "metrics_enabled",
        "metrics_token",
        "stripe_secret_key",
        "stripe_webhook_secret",
        "stripe_webhook_allow_unverified",
        "sms_mode",
        "email_mode",
        "twilio_account_sid",
        "twilio_auth_token",
        "twilio_sms_from",
        "twilio_validate_signature",
        "outbox_max_attempts",
        "outbox_base_backoff_seconds",
        "deposit_percent",
        "email_from",
        "resend_api_key",
        "email_http_max_attempts",
    )
    original = {field: getattr(settings, field) for field in fields}
    yield
    for field, value in original.items():
        setattr(settings, field, value)


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.service_role_key = None
    settings.manager_email = None
    yield


@pytest.fixture(autouse=True)
def restore_app_state():
    """Drop per-test provider overrides so the next lifespan starts from the defaults."""
    yield
    for name in ("stripe_client", "email_adapter", "communication_adapter"):
        if hasattr(app.state, name):
            setattr(app.state, name, None)


@pytest.fixture(autouse=True)
def reset_circuits():
    stripe_circuit.reset()
    yield
    stripe_circuit.reset()


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def sms_adapter():
    adapter = FakeCommunicationAdapter()
    app.state.communication_adapter = adapter
    return adapter


@pytest.fixture()
def email_adapter():
    adapter = FakeEmailAdapter()
    app.state.email_adapter = adapter
    return adapter


@pytest.fixture()
def client(async_session_maker):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


@pytest.fixture()
def client_no_raise(async_session_maker):
    """Test client that returns HTTP responses instead of raising server exceptions."""

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
