"""Shared test fixtures.

Every test gets its own SQLite database file (aiosqlite) with the schema
created from the ORM metadata and the tier catalog seeded.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# Keep tests off real providers regardless of the developer's .env
os.environ.setdefault("VIPSYNC_PAYMENT_PROVIDER", "fake")
os.environ.setdefault("VIPSYNC_LOG_FORMAT", "console")

from vipsync.config import get_settings  # noqa: E402
from vipsync.database import get_session  # noqa: E402
from vipsync.db.base import Base  # noqa: E402
from vipsync.db import models  # noqa: E402, F401
from vipsync.locks import KeyedLock  # noqa: E402
from vipsync.main import create_app  # noqa: E402
from vipsync.notifications.notifier import NotificationDispatcher  # noqa: E402
from vipsync.payments.fake import InMemoryPaymentGateway  # noqa: E402
from vipsync.vip.seed import seed_tiers  # noqa: E402
from vipsync.votes.dedup import VoteDedupGate  # noqa: E402
from vipsync.votes.scheduler import VoteResetScheduler  # noqa: E402
from vipsync.votes.service import VoteService  # noqa: E402

VOTE_SECRET = "topgg-test-secret"


class RecordingNotifier:
    """Collects messages instead of posting them."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    async def notify(self, message: str) -> None:
        self.messages.append(message)


class FailingNotifier:
    """Simulates the chat webhook being down."""

    def __init__(self) -> None:
        self.attempts = 0

    async def notify(self, message: str) -> None:
        self.attempts += 1
        raise httpx.ConnectError("notifier unreachable")


class FakeRedisLock:
    def __init__(self, store: FakeRedis, name: str) -> None:
        self.store = store
        self.name = name

    async def acquire(self) -> bool:
        if self.name in self.store.held:
            return False
        self.store.held.add(self.name)
        return True

    async def release(self) -> None:
        self.store.held.discard(self.name)


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the sweep lock."""

    def __init__(self) -> None:
        self.held: set[str] = set()

    def lock(self, name: str, timeout: float | None = None, blocking: bool = True) -> FakeRedisLock:
        return FakeRedisLock(self, name)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vipsync.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        await seed_tiers(db)
    return factory


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A direct session for arranging state and asserting on it."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> InMemoryPaymentGateway:
    return InMemoryPaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier: RecordingNotifier) -> NotificationDispatcher:
    return NotificationDispatcher(notifier)


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def vote_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[VoteResetScheduler, None]:
    scheduler = VoteResetScheduler(session_factory, delay_seconds=3600)
    yield scheduler
    await scheduler.close()


@pytest.fixture
def vote_service(
    vote_scheduler: VoteResetScheduler,
    dispatcher: NotificationDispatcher,
    locks: KeyedLock,
) -> VoteService:
    return VoteService(VoteDedupGate(), vote_scheduler, VOTE_SECRET, dispatcher, locks)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: InMemoryPaymentGateway,
    dispatcher: NotificationDispatcher,
    vote_service: VoteService,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app, wired to the per-test database and fakes."""
    get_settings.cache_clear()
    app = create_app()
    app.state.gateway = gateway
    app.state.dispatcher = dispatcher
    app.state.vote_service = vote_service

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session_override

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await dispatcher.drain()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()
