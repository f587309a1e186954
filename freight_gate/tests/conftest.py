"""
Centralized Test Configuration.
"""

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from freight_gate.app.main import app
from freight_gate.app.core.jwt import create_access_token
from freight_gate.app.db.session import get_db, Base
from freight_gate.app.models.enums import UserRole
from freight_gate.app.services.counterparty_directory import ShipmentRecordDirectory
from freight_gate.app.services.event_fanout import EventFanout, InMemoryBroker, get_event_fanout
from freight_gate.app.services.obligation_tracker import RatingObligationTracker, get_obligation_tracker
from freight_gate.app.services.shipment_locking import ShipmentLockRegistry
from freight_gate.app.services.shipment_service import ShipmentService
from freight_gate.app.services.trip_progression import TripProgressionService, get_trip_progression
import freight_gate.app.models.registry  # noqa: F401

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CARRIER_ID = 42
OTHER_CARRIER_ID = 43
ADMIN_ID = 1
SHIPPER_ID = 77

# Fixed clock for code issue/expiry scenarios
T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def fanout():
    return EventFanout(InMemoryBroker())


@pytest.fixture
def tracker():
    return RatingObligationTracker(directory=ShipmentRecordDirectory())


@pytest.fixture
def progression(fanout, tracker):
    """Progression service with its own broker and lock registry per test."""
    return TripProgressionService(fanout=fanout, locks=ShipmentLockRegistry(), obligations=tracker)


@pytest.fixture(autouse=True)
def apply_overrides(progression, fanout, tracker):
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_trip_progression] = lambda: progression
    app.dependency_overrides[get_event_fanout] = lambda: fanout
    app.dependency_overrides[get_obligation_tracker] = lambda: tracker
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
async def shipment(db_session):
    """Shipment assigned to CARRIER_ID with the shipper already known."""
    created = await ShipmentService.create_shipment(
        db_session, load_id=500, carrier_id=CARRIER_ID, shipper_id=SHIPPER_ID, actor_id=ADMIN_ID
    )
    await db_session.commit()
    await db_session.refresh(created)
    return created


@pytest.fixture
async def unresolved_shipment(db_session):
    """Shipment whose shipper the marketplace has not reported yet."""
    created = await ShipmentService.create_shipment(
        db_session, load_id=501, carrier_id=CARRIER_ID, actor_id=ADMIN_ID
    )
    await db_session.commit()
    await db_session.refresh(created)
    return created


def make_token(user_id: int, role: UserRole) -> str:
    return create_access_token(data={"sub": f"{role.value.lower()}_{user_id}", "user_id": user_id, "role": role.value})


def auth_headers(user_id: int, role: UserRole) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def carrier_headers():
    return auth_headers(CARRIER_ID, UserRole.CARRIER)


@pytest.fixture
def other_carrier_headers():
    return auth_headers(OTHER_CARRIER_ID, UserRole.CARRIER)


@pytest.fixture
def admin_headers():
    return auth_headers(ADMIN_ID, UserRole.ADMIN)
