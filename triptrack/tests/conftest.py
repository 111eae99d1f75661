"""
Centralized Test Configuration.
"""

import pytest
from datetime import timedelta
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from triptrack.app.main import app
from triptrack.app.db.session import get_db, get_session_factory, Base
from triptrack.app.core.clock import utcnow
from triptrack.app.core.exceptions import RoutingUnavailableError
from triptrack.app.core.jwt import create_access_token
from triptrack.app.core.redis_client import get_redis
from triptrack.app.models.booking import Booking
from triptrack.app.models.driver import Driver, DriverAssignment
from triptrack.app.models.route import Route
from triptrack.app.models.stop import Stop
from triptrack.app.models.trip import Trip
from triptrack.app.models.trip_enums import BookingStatus, StopKind, TripStatus, TripType
from triptrack.app.services.cache import CacheService
from triptrack.app.services.directions import DirectionsResult, Leg
from triptrack.app.services.eta_engine import EtaEngine, get_eta_engine
from triptrack.app.services.realtime import InMemoryChangeFeed, get_change_feed

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

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
    engine, class_=AsyncSession, expire_on_commit=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeDirections:
    """
    Stand-in for the directions provider.

    Records every call; `fail` makes the next calls raise, `legs` sets the
    returned legs.
    """

    def __init__(self):
        self.calls = []
        self.fail = False
        self.legs = [Leg(duration_seconds=600, distance_meters=5000)]
        self.gate = None

    async def route(self, origin, destination, waypoints=()):
        self.calls.append((origin, destination, list(waypoints)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RoutingUnavailableError("provider down")
        return DirectionsResult(legs=list(self.legs), renderable_path="encoded-path")


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture
def change_feed():
    return InMemoryChangeFeed()


@pytest.fixture
def directions():
    return FakeDirections()


@pytest.fixture
def eta_engine(directions):
    return EtaEngine(client=directions)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture(autouse=True)
def apply_overrides(redis_client_session, change_feed, eta_engine):
    """Point the app at the test database, feed and ETA engine."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_change_feed] = lambda: change_feed
    app.dependency_overrides[get_eta_engine] = lambda: eta_engine
    yield

    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    await CacheService.clear()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


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


# Tokens are issued by the auth service; tests mint them directly
def auth_headers(role: str, user_id: int, username: str = None) -> dict:
    token = create_access_token({
        "sub": username or f"{role.lower()}{user_id}",
        "user_id": user_id,
        "role": role,
    })
    return {"Authorization": f"Bearer {token}"}


STAFF_USER_ID = 1
PASSENGER_USER_ID = 20
OTHER_PASSENGER_USER_ID = 21
DRIVER_USER_ID = 30


@pytest.fixture
def make_headers():
    return auth_headers


@pytest.fixture
def staff_headers():
    return auth_headers("STAFF", STAFF_USER_ID)


@pytest.fixture
def passenger_headers():
    return auth_headers("PASSENGER", PASSENGER_USER_ID)


@pytest.fixture
def other_passenger_headers():
    return auth_headers("PASSENGER", OTHER_PASSENGER_USER_ID)


@pytest.fixture
def driver_headers():
    return auth_headers("DRIVER", DRIVER_USER_ID)


@pytest.fixture
def staff_user():
    return {"sub": "staff1", "user_id": STAFF_USER_ID, "role": "STAFF"}


@pytest.fixture
def passenger_user():
    return {"sub": "passenger20", "user_id": PASSENGER_USER_ID, "role": "PASSENGER"}


@pytest.fixture
async def topology(db_session):
    """
    One route with three stops and two trips on it, tomorrow:

        A (order 0, PICKUP)   at (1.0, 1.0)
        B (order 1, BOTH)     at (1.5, 1.5)
        C (order 2, DROPOFF)  at (2.0, 2.0)

    Start anchor (0, 0), end anchor (3, 3). The arrival trip has one
    active driver linked to DRIVER_USER_ID.
    """
    route = Route(
        name="Border Line",
        start_name="Depot", start_lat=0.0, start_lng=0.0,
        end_name="Facility", end_lat=3.0, end_lng=3.0,
    )
    db_session.add(route)
    await db_session.flush()

    stop_a = Stop(route_id=route.id, name="A", lat=1.0, lng=1.0, order_index=0, kind=StopKind.PICKUP)
    stop_b = Stop(route_id=route.id, name="B", lat=1.5, lng=1.5, order_index=1, kind=StopKind.BOTH)
    stop_c = Stop(route_id=route.id, name="C", lat=2.0, lng=2.0, order_index=2, kind=StopKind.DROPOFF)
    db_session.add_all([stop_a, stop_b, stop_c])

    tomorrow = utcnow().date() + timedelta(days=1)
    trips = {}
    for trip_type in (TripType.ARRIVAL, TripType.DEPARTURE):
        trip = Trip(
            route_id=route.id,
            trip_type=trip_type,
            trip_date=tomorrow,
            start_name="Depot", start_lat=0.0, start_lng=0.0,
            end_name="Facility", end_lat=3.0, end_lng=3.0,
            status=TripStatus.SCHEDULED,
        )
        db_session.add(trip)
        trips[trip_type] = trip

    driver = Driver(user_id=DRIVER_USER_ID, name="Dana Driver")
    db_session.add(driver)
    await db_session.flush()

    db_session.add(DriverAssignment(
        trip_id=trips[TripType.ARRIVAL].id,
        driver_id=driver.id,
        is_active=True,
        assigned_at=utcnow(),
    ))
    await db_session.commit()

    return SimpleNamespace(
        route_id=route.id,
        stop_a=stop_a.id,
        stop_b=stop_b.id,
        stop_c=stop_c.id,
        arrival_trip_id=trips[TripType.ARRIVAL].id,
        departure_trip_id=trips[TripType.DEPARTURE].id,
        driver_id=driver.id,
        trip_date=tomorrow,
    )


@pytest.fixture
async def booking(db_session, topology):
    """Request 100 confirmed on the arrival trip, dropping off at C."""
    row = Booking(
        request_id=100,
        passenger_user_id=PASSENGER_USER_ID,
        trip_id=topology.arrival_trip_id,
        selected_dropoff_stop_id=topology.stop_c,
        status=BookingStatus.CONFIRMED,
    )
    db_session.add(row)
    await db_session.commit()
    return row
