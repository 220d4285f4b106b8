"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pingcaset.clock import FixedClock
from pingcaset.database import get_session
from pingcaset.db.base import Base
from pingcaset.db.models import Profile
from pingcaset.dependencies import get_clock
from pingcaset.errors import StateConflictError
from pingcaset.leaderboard.ranker import LeaderboardPeriod, LeaderboardRanker
from pingcaset.leaderboard.service import fetch_leaderboard_rows
from pingcaset.main import create_app
from pingcaset.users.service import create_profile

# Wednesday, mid-day UTC: far enough from both day and week boundaries.
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)

ProfileFactory = Callable[..., Awaitable[Profile]]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pingcaset.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def race(session_factory):
    """Run callables at once, each in its own session, then commit.

    Each callable takes the session. Returns the sorted outcomes, "ok" or
    "conflict" (StateConflictError), one per callable.
    """

    async def _one(call: Callable[[AsyncSession], Awaitable[object]]) -> str:
        async with session_factory() as session:
            try:
                await call(session)
            except StateConflictError:
                return "conflict"
            await session.commit()
            return "ok"

    async def _race(*calls: Callable[[AsyncSession], Awaitable[object]]) -> list[str]:
        return sorted(await asyncio.gather(*(_one(call) for call in calls)))

    return _race


@pytest.fixture
def make_profile(db_session: AsyncSession) -> ProfileFactory:
    """Create and commit a profile. Keyword args override Profile columns."""

    async def _make(
        display_name: str = "Miner",
        balance: float = 0.0,
        created_at: datetime | None = None,
        **columns: object,
    ) -> Profile:
        profile = await create_profile(
            db_session,
            display_name=display_name,
            balance=balance,
            created_at=created_at or NOW - timedelta(days=30),
        )
        for key, value in columns.items():
            setattr(profile, key, value)
        await db_session.commit()
        return profile

    return _make


@pytest_asyncio.fixture
async def app(session_factory, clock):
    """App wired to the SQLite database and a fixed clock. The lifespan does not run."""
    app = create_app()

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _fetch_from_db(period: LeaderboardPeriod):
        async with session_factory() as session:
            return await fetch_leaderboard_rows(session, period, clock.now())

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.leaderboard = LeaderboardRanker(_fetch_from_db)
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client (no lifespan: no Postgres or Redis needed)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

