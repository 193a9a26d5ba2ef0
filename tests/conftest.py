"""
Shared test fixtures.

The tracker is exercised against an ``AsyncMock`` dispatch client, an
in-memory ride store and a recording notifier, so tests run without the
dispatch API, PostgreSQL or Redis.  Repository tests use an in-memory
SQLite database (via aiosqlite).
"""

import asyncio
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ride_relay.domain.entities import Ride
from ride_relay.domain.enums import RideState
from ride_relay.domain.notifications import NotificationSink, PushMessage
from ride_relay.domain.store import RideStore
from ride_relay.infrastructure.database import Base, init_models
from ride_relay.infrastructure.dispatch_client import DispatchClient
from ride_relay.workers.tracker import RideTracker


# ── Test doubles ──────────────────────────────────────────────────────


class InMemoryRideStore(RideStore):
    def __init__(self):
        self.records: dict[int, Ride] = {}
        self.deleted: list[int] = []

    async def save(self, ride: Ride) -> None:
        self.records[ride.id] = ride

    async def delete(self, ride_id: int) -> None:
        self.records.pop(ride_id, None)
        self.deleted.append(ride_id)

    async def load_open(self, limit: int) -> list[Ride]:
        rides = [r for r in self.records.values() if r.state != RideState.FINISHED]
        rides.sort(key=lambda r: r.created_at, reverse=True)
        return rides[:limit]

    async def get(self, ride_id: int) -> Optional[Ride]:
        return self.records.get(ride_id)


class RecordingNotifier(NotificationSink):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.alerts: list[int] = []
        self.messages: list[PushMessage] = []

    def alert(self, ride: Ride) -> None:
        self.alerts.append(ride.id)

    async def broadcast(self, message: PushMessage) -> int:
        self.messages.append(message)
        if self.fail:
            raise RuntimeError("push service unreachable")
        return 1


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def dispatch() -> AsyncMock:
    client = AsyncMock(spec=DispatchClient)
    client.create.return_value = {"Resultado": {"resultado": {"SolicitacaoID": 101}}}
    client.query_stage.return_value = {}
    client.query_status.return_value = {}
    client.query_record.return_value = {}
    client.cancel.return_value = {"Sucesso": True}
    return client


@pytest.fixture
def store() -> InMemoryRideStore:
    return InMemoryRideStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def tracker(dispatch, notifier, store) -> AsyncGenerator[RideTracker, None]:
    """Tracker with a long interval: only the immediate first tick fires."""
    t = RideTracker(dispatch, notifier, store, poll_interval_seconds=3600)
    yield t
    await t.shutdown()


@pytest.fixture
def make_ride():
    def _make(ride_id: int = 101, **kwargs) -> Ride:
        kwargs.setdefault("origin", "Rua A, 10")
        kwargs.setdefault("destination", "Rua B, 20")
        return Ride(id=ride_id, **kwargs)

    return _make


@pytest.fixture
def wait_until():
    """Yield to the event loop until *predicate* holds (or give up)."""

    async def _wait(predicate, attempts: int = 200) -> bool:
        for _ in range(attempts):
            if predicate():
                return True
            await asyncio.sleep(0)
        return predicate()

    return _wait


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables, yield a session factory, then drop everything."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    await init_models(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
