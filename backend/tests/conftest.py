"""Shared test fixtures for the calendar holds tests.

Every test gets its own file-backed SQLite database (through aiosqlite),
a controllable clock and a couple of registered calendars.

Usage:
    async def test_something(store, cal_a):
        hold = await store.create(cal_a.calendar_email, ...)
"""

import uuid
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from calendar_holds.core.config import Settings
from calendar_holds.core.database import Base, build_engine, build_session_factory
from calendar_holds.core.locks import KeyedLocks
from calendar_holds.integrations.google_calendar import CredentialCipher
from calendar_holds.main import create_app
from calendar_holds.services import CalendarAccountService, HoldStore
import calendar_holds.models  # noqa: F401


# Monday 2 March 2026, 08:00 UTC
START_OF_DAY = datetime(2026, 3, 2, 8, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    """Naive UTC datetime on the test week (2 March 2026 is a Monday)."""
    return datetime(2026, 3, day, hour, minute)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'holds.db'}",
        hold_lock_timeout_seconds=5.0,
        hold_sweeper_enabled=False,
        encryption_key=Fernet.generate_key().decode(),
        default_timezone="UTC",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_OF_DAY)


@pytest.fixture
def locks(settings: Settings) -> KeyedLocks:
    return KeyedLocks(settings.hold_lock_timeout_seconds)


@pytest.fixture
def cipher(settings: Settings) -> CredentialCipher:
    return CredentialCipher(settings.encryption_key)


@pytest.fixture
def inquiry_id() -> uuid.UUID:
    return uuid.uuid4()


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(settings: Settings):
    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def accounts(session, cipher, clock) -> CalendarAccountService:
    return CalendarAccountService(session, cipher, clock=clock)


@pytest.fixture
def store(session, locks, clock) -> HoldStore:
    return HoldStore(session, locks, clock=clock)


@pytest_asyncio.fixture
async def cal_a(accounts):
    return await accounts.connect(
        "owner@example.com", "cal-a@example.com", priority=10, calendar_type="native"
    )


@pytest_asyncio.fixture
async def cal_b(accounts):
    return await accounts.connect(
        "partner@example.com", "cal-b@example.com", priority=5, calendar_type="native"
    )


# ─────────────────────────────────────────────────────────────────────────────
# API Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def app(settings: Settings, clock: FakeClock):
    app = create_app(settings)
    app.state.clock = clock
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
