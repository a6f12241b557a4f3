"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory SQLite database and a local-only
broadcaster. WebSocket transports are replaced by ``AsyncMock`` objects whose
``send_text`` calls are decoded by :func:`sent_frames`.
"""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import meeting_protocols.protocols.models  # noqa: F401
import meeting_protocols.tasks.models  # noqa: F401
from meeting_protocols.auth.dependencies import CurrentUser, get_current_user
from meeting_protocols.core.database import Base, get_db
from meeting_protocols.main import app
from meeting_protocols.protocols.services import ProtocolService
from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.registry import Connection, ConnectionRegistry
from meeting_protocols.realtime.session import CollaborationSession

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def sent_frames(connection: Connection) -> list[dict]:
    """Decode every frame sent to a connection with a mocked transport."""
    return [json.loads(call.args[0]) for call in connection.transport.send_text.await_args_list]


def frames_named(connection: Connection, event: str) -> list[dict]:
    """Payloads of the frames of one event name."""
    return [frame["data"] for frame in sent_frames(connection) if frame["event"] == event]


class ActingUser:
    """Identity returned by the overridden auth dependency; tests may swap it."""

    def __init__(self, user: CurrentUser):
        self.user = user


# =============================================================================
# Identities
# =============================================================================


@pytest.fixture
def alice() -> CurrentUser:
    return CurrentUser(id="user-alice", name="Alice", email="alice@example.org", group_id="group-a")


@pytest.fixture
def bob() -> CurrentUser:
    return CurrentUser(id="user-bob", name="Bob", email="bob@example.org", group_id="group-a")


@pytest.fixture
def mallory() -> CurrentUser:
    """A user of another group."""
    return CurrentUser(id="user-mallory", name="Mallory", group_id="group-b")


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


# =============================================================================
# Real-time
# =============================================================================


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry: ConnectionRegistry) -> Broadcaster:
    return Broadcaster(registry, redis_enabled=False)


@pytest.fixture
def session(broadcaster: Broadcaster) -> CollaborationSession:
    return CollaborationSession(broadcaster)


@pytest.fixture
def make_connection(registry: ConnectionRegistry):
    """Factory for registered connections with a mocked transport."""

    def factory(connection_id: str | None = None, *rooms: str) -> Connection:
        connection = Connection(AsyncMock(), connection_id)
        registry.register(connection)
        for room in rooms:
            registry.join(connection.id, room)
        return connection

    return factory


# =============================================================================
# Services & HTTP
# =============================================================================


@pytest.fixture
def service(db: AsyncSession, broadcaster: Broadcaster) -> ProtocolService:
    return ProtocolService(db, broadcaster)


@pytest.fixture
def acting(alice: CurrentUser) -> ActingUser:
    return ActingUser(alice)


@pytest.fixture
async def client(
    session_maker: async_sessionmaker[AsyncSession],
    broadcaster: Broadcaster,
    acting: ActingUser,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with test storage and identity."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: acting.user
    app.state.broadcaster = broadcaster
    app.state.collaboration = CollaborationSession(broadcaster)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
