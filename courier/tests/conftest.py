"""
Test fixtures for the courier dispatch tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- A fake SMS/WhatsApp sender and a notifier wired to the test database
- Zone, rider and order fixtures (factories live in factories.py)
"""
# IMPORTANT: Set environment variables BEFORE any other imports
import os

TEST_API_KEY = "test-staff-key"

# DB settings required by Settings validation (tests use SQLite, these are not actually used)
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development mode for tests (disables ALLOWED_ORIGINS requirement)
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["ADMIN_API_KEY"] = TEST_API_KEY
os.environ["TRACKING_BASE_URL"] = "https://track.test/t"
os.environ["RELEASE_RETRY_ATTEMPTS"] = "3"
os.environ["RELEASE_RETRY_BACKOFF_SECONDS"] = "0"

from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from courier.app.core.base import Base
from courier.app.main import app
from courier.app.api.deps import get_session, get_session_factory, get_notifier
from courier.app.models.delivery_zone import DeliveryZone
from courier.app.models.rider import Rider
from courier.app.models.order import DeliveryOrder
from courier.app.models.delivery_assignment import DeliveryAssignment  # noqa: F401
from courier.app.models.notification_event import OrderEvent  # noqa: F401
from courier.app.services.notifications import NotificationDispatcher
from courier.tests.factories import (
    ACCRA_RING,
    FakeMessageSender,
    make_order,
    make_rider,
    make_zone,
)


# Test database URL - SQLite in-memory
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Create test engine with StaticPool for in-memory SQLite
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    """Factory for code that opens its own sessions (audit rows, compensating releases)."""
    return TestSessionLocal


@pytest.fixture
def fake_sender() -> FakeMessageSender:
    return FakeMessageSender()


@pytest.fixture
def notifier(fake_sender: FakeMessageSender) -> NotificationDispatcher:
    """WhatsApp-first notifier auditing into the test database."""
    return NotificationDispatcher(fake_sender, TestSessionLocal, prefer_whatsapp=True)


@pytest.fixture
async def client(
    test_session: AsyncSession,
    notifier: NotificationDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database, session factory and notifier dependencies.

    Note: We create a fresh session for each API call to avoid
    transaction conflicts with the test_session used for fixtures.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Api-Key": TEST_API_KEY},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def zone(test_session: AsyncSession) -> DeliveryZone:
    return await make_zone(test_session, ring=ACCRA_RING)


@pytest.fixture
async def rider(test_session: AsyncSession) -> Rider:
    return await make_rider(test_session)


@pytest.fixture
async def order(test_session: AsyncSession) -> DeliveryOrder:
    return await make_order(test_session, tracking_code="TRK23456")
