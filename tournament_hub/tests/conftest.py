"""
Shared pytest configuration for tournament hub tests.

Service tests run against a throwaway SQLite file database per test, using
the same BEGIN IMMEDIATE locking the app applies to SQLite so concurrent
sessions serialize the way they would in development.
"""

import os

# Must be set before the app and database modules are imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from tournament_hub.database import db  # noqa: E402
from tournament_hub.database.db import Base, build_engine  # noqa: E402
from tournament_hub.database.models import (  # noqa: E402
    User,
    Tournament,
    UserRole,
    TournamentStatus,
    TOURNAMENT_TYPE_TEAM_SIZE,
)
from tournament_hub.services import settings_service  # noqa: E402


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Tests never talk to a real Redis; the settings cache reads as empty."""
    monkeypatch.setattr(settings_service, "get_redis_client", AsyncMock(return_value=None))


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a fresh SQLite database for one test."""
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,  # each session gets its own connection
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (audit log) must hit the test database
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_engine):
    """Session factory bound to the test database."""
    return db.AsyncSessionLocal


@pytest_asyncio.fixture
async def db_session(session_maker):
    """A session on the test database, rolled back and closed afterwards."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def make_user(db_session):
    """Factory creating committed users."""
    counter = {"n": 0}

    async def _make_user(role=UserRole.PLAYER.value, banned=False, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            external_auth_id=kwargs.pop("external_auth_id", f"google-{n}"),
            email=kwargs.pop("email", f"user{n}@example.com"),
            name=kwargs.pop("name", f"User {n}"),
            role=role,
            banned=banned,
            minecraft_ign=kwargs.pop("minecraft_ign", f"Miner{n}"),
            discord_username=kwargs.pop("discord_username", f"discord{n}"),
            **kwargs,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def make_tournament(db_session):
    """Factory creating committed tournaments (open for registration by default)."""
    counter = {"n": 0}

    async def _make_tournament(
        status=TournamentStatus.REGISTRATION_OPEN.value,
        max_teams=8,
        type="squad",
        **kwargs,
    ):
        counter["n"] += 1
        n = counter["n"]
        tournament = Tournament(
            name=kwargs.pop("name", f"Cup {n}"),
            type=type,
            date=kwargs.pop("date", "2030-01-15"),
            start_time=kwargs.pop("start_time", "18:00"),
            registration_deadline=kwargs.pop("registration_deadline", "2030-01-14 23:59"),
            max_teams=max_teams,
            team_size=kwargs.pop("team_size", TOURNAMENT_TYPE_TEAM_SIZE[type]),
            registered_teams=kwargs.pop("registered_teams", 0),
            status=status,
            is_closed=kwargs.pop("is_closed", False),
            **kwargs,
        )
        db_session.add(tournament)
        await db_session.commit()
        return tournament

    return _make_tournament
