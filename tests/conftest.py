"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pulse_dispatch.core.config import Settings, get_settings
from pulse_dispatch.core.database import get_session
from pulse_dispatch.models import (
    Base,
    Channel,
    NotificationFlow,
    NotificationTemplate,
    User,
)


def enable_sqlite_savepoints(engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT/ROLLBACK TO behave under aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment: no outbound HTTP."""
    return Settings(
        _env_file=None,
        email_service_url=None,
        sentiment_service_url=None,
        slack_alerts_webhook_url=None,
        alert_webhook_url=None,
        channel_timeout_seconds=1.0,
    )


@pytest.fixture
async def client(session, settings) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the test session."""
    from pulse_dispatch.main import app

    async def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
async def citizen(session) -> User:
    user = User(email="amina@example.cm", name="Amina Njoya")
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def petition_template(session) -> NotificationTemplate:
    template = NotificationTemplate(
        name="Petition signed",
        subject="Thanks for signing {{ petition_title }}",
        content="Hello {{ name }}, your signature on {{ petition_title }} was recorded.",
        variables=["petition_title", "name"],
    )
    session.add(template)
    await session.flush()
    return template


@pytest.fixture
def make_flow(session, petition_template):
    """Factory for flows on the petition template."""

    async def _make_flow(
        channel: Channel,
        priority: int = 0,
        event_type: str = "petition_signed",
        recipient_type: str = "citizen",
        is_active: bool = True,
    ) -> NotificationFlow:
        flow = NotificationFlow(
            event_type=event_type,
            recipient_type=recipient_type,
            channel=channel,
            template=petition_template,
            priority=priority,
            is_active=is_active,
        )
        session.add(flow)
        await session.flush()
        return flow

    return _make_flow
