"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite file through aiosqlite, so conditional
UPDATEs, the partial unique index and concurrent requests behave like they
do on PostgreSQL. Redis is disabled; the messaging gateway is a recorder.
"""

import os

os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_BACKEND"] = "database"

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.main import app
from app.clients.api import EventApiClient
from app.db.base import Base
from app.db.session import get_db
from app.core.security import create_access_token, hash_password
from app.infrastructure.messaging import MessagingGateway, SendResult, get_messaging_gateway
from app.models.user import User
from app.models.event import Event
from app.models.slot import Slot


class RecordingGateway(MessagingGateway):
    """Keeps every code and link it was asked to deliver."""

    def __init__(self):
        self.configured = True
        self.fail = False
        self.sent: list[tuple[str, str, str]] = []
        self.links: list[tuple[str, str]] = []
        self.links_fail = False

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def send_otp(self, phone: str, code: str, locale: str = "he") -> SendResult:
        if self.fail:
            return SendResult(success=False, method="whatsapp", error="gateway down")
        self.sent.append((phone, code, locale))
        return SendResult(success=True, method="whatsapp", message_id=str(len(self.sent)))

    async def send_access_link(
        self,
        phone: str,
        link: str,
        guest_name: str = "",
        event_title: str = "",
        locale: str = "he",
    ) -> SendResult:
        if self.links_fail:
            return SendResult(success=False, method="whatsapp", error="template paused")
        self.links.append((phone, link))
        return SendResult(success=True, method="whatsapp")

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


class ManualTimer:
    def __init__(self, when: float, callback: Callable):
        self.when = when
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Deterministic clock for the client state machines."""

    def __init__(self):
        self.time = 0.0
        self.timers: list[ManualTimer] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable) -> ManualTimer:
        timer = ManualTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled()]

    def advance(self, seconds: float) -> None:
        self.time += seconds
        for timer in sorted(self.pending, key=lambda t: t.when):
            if timer.when <= self.time and not timer.cancelled():
                timer.cancel()
                timer.callback()


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite file per test, tables created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client; every request gets its own session, like production."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_messaging_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create an operator in the database."""
    user = User(
        email="test@example.com",
        username="testuser",
        hashed_password=hash_password("testpassword123"),
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def auth_token(test_user: User) -> str:
    """Generate a JWT token for the test operator."""
    return create_access_token(data={"sub": str(test_user.id)})


@pytest_asyncio.fixture
async def auth_headers(auth_token: str) -> dict:
    """Authorization headers with Bearer token."""
    return {"Authorization": f"Bearer {auth_token}"}


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession, test_user: User) -> Event:
    """An event with a 2-seat slot and an unlimited slot."""
    event = Event(
        title="Test Party",
        description="A test event",
        date=datetime.now(timezone.utc) + timedelta(days=30),
        location="Test Venue",
        organizer_id=test_user.id,
    )
    db_session.add(event)
    await db_session.flush()

    start = datetime.now(timezone.utc) + timedelta(days=30)
    db_session.add_all([
        Slot(event_id=event.id, title="Small", starts_at=start, ends_at=start + timedelta(hours=1), capacity=2),
        Slot(event_id=event.id, title="Open", starts_at=start, ends_at=start + timedelta(hours=3), capacity=0),
    ])
    await db_session.commit()
    await db_session.refresh(event)
    return event


async def _slot_id(db_session: AsyncSession, event: Event, capacity: int) -> int:
    return await db_session.scalar(
        select(Slot.id).where(Slot.event_id == event.id, Slot.capacity == capacity)
    )


@pytest_asyncio.fixture
async def small_slot_id(db_session: AsyncSession, test_event: Event) -> int:
    return await _slot_id(db_session, test_event, 2)


@pytest_asyncio.fixture
async def open_slot_id(db_session: AsyncSession, test_event: Event) -> int:
    return await _slot_id(db_session, test_event, 0)


@pytest.fixture
def register(client: AsyncClient, test_event: Event):
    """POST a registration into the test event; returns the response."""

    async def _register(slot_id: int, phone: str = "0501234567", count: int = 1, name: str = "Dana"):
        return await client.post(
            f"/api/v1/events/{test_event.id}/registrations",
            json={"slotId": slot_id, "name": name, "phone": phone, "count": count},
        )

    return _register


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest_asyncio.fixture
async def guest_api(client: AsyncClient) -> EventApiClient:
    return EventApiClient(client=client)


@pytest_asyncio.fixture
async def operator_api(client: AsyncClient, auth_token: str) -> EventApiClient:
    return EventApiClient(client=client, access_token=auth_token)
