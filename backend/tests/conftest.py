"""
Pytest fixtures for test database, client, clock and authentication.

Each test gets its own SQLite file database. Sessions open transactions
with BEGIN IMMEDIATE, so concurrent sessions in a test really queue on
the database lock the way PostgreSQL sessions queue on the event row.

A session that has only read still holds that lock until it commits or
closes, so tests that mix sessions create their fixtures first.
"""

import os

# Must be set before the app reads its settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "log")
os.environ.setdefault("HOLD_SWEEP_ENABLED", "false")
os.environ.setdefault("DB_READ_RETRY_BACKOFF_SECONDS", "0")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.main import app
from app.api.deps import get_clock
from app.core.config import Settings
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import create_engine_for_url, create_session_factory, get_db
from app.models.event import Event, EventCoHost, EventStatus
from app.models.join_request import JoinRequest
from app.models.participant import Participant
from app.services.interfaces.notifier import Notifier
from app.services.join_request_service import JoinRequestService
from app.services.notifier_factory import get_notifier

HOST_ID = 1
COHOST_ID = 2
GUEST_ID = 100
OTHER_GUEST_ID = 101


class FakeClock:
    """Controllable time source for hold deadlines."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 6, 1, 18, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: list[tuple[str, int, str]] = []

    async def notify(self, event_type: str, request: JoinRequest) -> None:
        self.sent.append((event_type, request.id, request.status))

    def types(self) -> list[str]:
        return [event_type for event_type, _, _ in self.sent]


class FailingNotifier(Notifier):
    async def notify(self, event_type: str, request: JoinRequest) -> None:
        raise ConnectionError("push gateway down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        REDIS_ENABLED=False,
        NOTIFIER_BACKEND="log",
        HOLD_SWEEP_ENABLED=False,
        WAITLIST_AUTO_PROMOTE=True,
        WAITLIST_PROMOTION_POLICY="fifo",
        DB_READ_RETRY_BACKOFF_SECONDS=0,
    )


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh schema in a per-test SQLite file."""
    test_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'join_requests.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def make_event(session_factory):
    """Insert an event (and optional co-hosts) in its own committed session."""

    async def _make(
        capacity: int = 10,
        status: str = EventStatus.PUBLISHED.value,
        host_id: int = HOST_ID,
        cohosts: tuple = (),
    ) -> Event:
        async with session_factory() as session:
            event = Event(title="Rooftop Dinner", host_id=host_id, capacity_total=capacity, status=status)
            session.add(event)
            await session.flush()
            for user_id in cohosts:
                session.add(EventCoHost(event_id=event.id, user_id=user_id))
            await session.commit()
            return event

    return _make


@pytest_asyncio.fixture
async def event(make_event) -> Event:
    """Published event with 10 seats and a co-host."""
    return await make_event(capacity=10, cohosts=(COHOST_ID,))


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(db_session, settings, notifier, clock) -> JoinRequestService:
    return JoinRequestService(db_session, settings=settings, notifier=notifier, clock=clock)


@pytest.fixture
def make_service(session_factory, settings, notifier, clock):
    """Build a service on a caller-owned session, for tests that need several sessions."""

    def _make(session: AsyncSession, **overrides) -> JoinRequestService:
        options = {"settings": settings, "notifier": notifier, "clock": clock}
        options.update(overrides)
        return JoinRequestService(session, **options)

    return _make


async def fetch_participants(session: AsyncSession, event_id: int) -> list[Participant]:
    result = await session.execute(select(Participant).where(Participant.event_id == event_id))
    return list(result.scalars().all())


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, clock, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a per-request session, the fake clock and the recording notifier."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers_for(user_id: int) -> dict:
    """Authorization headers with a Bearer token for `user_id`."""
    token = create_access_token(data={"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def host_headers() -> dict:
    return auth_headers_for(HOST_ID)


@pytest.fixture
def cohost_headers() -> dict:
    return auth_headers_for(COHOST_ID)


@pytest.fixture
def guest_headers() -> dict:
    return auth_headers_for(GUEST_ID)


@pytest.fixture
def other_guest_headers() -> dict:
    return auth_headers_for(OTHER_GUEST_ID)
