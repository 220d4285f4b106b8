"""Integration tests for leaderboard reads, Redis snapshots and the refresh worker."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pingcaset.database import close_db, get_engine, init_db
from pingcaset.db.base import Base
from pingcaset.db.models import MiningSession
from pingcaset.errors import TransientFetchError
from pingcaset.leaderboard.ranker import LeaderboardPeriod, LeaderboardRanker, rank_entries
from pingcaset.leaderboard.service import (
    fetch_leaderboard_rows,
    publish_snapshot,
    read_snapshot,
    redis_snapshot_fetcher,
)
from pingcaset.redis_client import snapshot_key
from pingcaset.workers.leaderboard import refresh_leaderboards, refresh_period

pytestmark = pytest.mark.asyncio


def _claimed_session(user_id, claimed_at, amount=10.0):
    return MiningSession(
        user_id=user_id,
        started_at=claimed_at - timedelta(hours=6),
        ends_at=claimed_at,
        earned_amount=amount,
        is_active=False,
        is_claimed=True,
        claimed_at=claimed_at,
    )


class TestFetchRows:
    async def test_all_time_orders_by_total_then_age(self, db_session, make_profile, clock):
        old = await make_profile(display_name="Old", total_mined=50.0, created_at=clock.now() - timedelta(days=90))
        young = await make_profile(display_name="Young", total_mined=50.0, created_at=clock.now() - timedelta(days=2))
        top = await make_profile(display_name="Top", total_mined=80.0)
        await make_profile(display_name="Idle", total_mined=0.0)

        rows = await fetch_leaderboard_rows(db_session, LeaderboardPeriod.ALL, clock.now())
        assert [r.user_id for r in rows] == [top.id, old.id, young.id]
        assert [e.rank for e in rank_entries(rows)] == [1, 2, 3]

    async def test_limit(self, db_session, make_profile, clock):
        for i in range(5):
            await make_profile(total_mined=float(i + 1))
        rows = await fetch_leaderboard_rows(db_session, LeaderboardPeriod.ALL, clock.now(), limit=3)
        assert [r.total_mined for r in rows] == [5.0, 4.0, 3.0]

    async def test_daily_sums_todays_claims(self, db_session, make_profile, clock):
        a = await make_profile(display_name="A")
        b = await make_profile(display_name="B")
        now = clock.now()
        db_session.add_all([
            _claimed_session(a.id, now - timedelta(hours=1)),
            _claimed_session(a.id, now - timedelta(hours=2)),
            _claimed_session(b.id, now - timedelta(hours=3), amount=15.0),
            _claimed_session(b.id, now - timedelta(days=1)),
        ])
        await db_session.commit()

        rows = await fetch_leaderboard_rows(db_session, LeaderboardPeriod.DAILY, now)
        assert [(r.user_id, r.total_mined) for r in rows] == [(a.id, 20.0), (b.id, 15.0)]

    async def test_weekly_starts_monday(self, db_session, make_profile, clock):
        a = await make_profile()
        now = clock.now()  # Wednesday
        db_session.add_all([
            _claimed_session(a.id, now - timedelta(days=2)),  # Monday
            _claimed_session(a.id, now - timedelta(days=3)),  # previous Sunday
        ])
        await db_session.commit()

        rows = await fetch_leaderboard_rows(db_session, LeaderboardPeriod.WEEKLY, now)
        assert [(r.user_id, r.total_mined) for r in rows] == [(a.id, 10.0)]


class TestSnapshots:
    async def test_publish_then_read(self, db_session, make_profile, clock):
        await make_profile(display_name="A", total_mined=10.0)
        await make_profile(display_name="B", total_mined=20.0)
        entries = rank_entries(await fetch_leaderboard_rows(db_session, LeaderboardPeriod.ALL, clock.now()))

        redis = AsyncMock()
        await publish_snapshot(redis, LeaderboardPeriod.ALL, entries, clock.now(), ttl_seconds=60)
        key, payload = redis.set.await_args.args
        assert key == snapshot_key(LeaderboardPeriod.ALL.value) == "leaderboard:snapshot:all"
        assert redis.set.await_args.kwargs == {"ex": 60}
        assert json.loads(payload)["entries"][0]["display_name"] == "B"

        redis.get.return_value = payload
        rows = await read_snapshot(redis, LeaderboardPeriod.ALL)
        assert rank_entries(rows) == entries

    async def test_missing_snapshot_is_transient(self):
        redis = AsyncMock()
        redis.get.return_value = None
        with pytest.raises(TransientFetchError):
            await read_snapshot(redis, LeaderboardPeriod.DAILY)

    async def test_corrupt_snapshot_is_transient(self):
        redis = AsyncMock()
        redis.get.return_value = "{not json"
        with pytest.raises(TransientFetchError):
            await read_snapshot(redis, LeaderboardPeriod.ALL)

    async def test_redis_error_is_transient(self):
        redis = AsyncMock()
        redis.get.side_effect = RedisConnectionError("down")
        with pytest.raises(TransientFetchError):
            await read_snapshot(redis, LeaderboardPeriod.ALL)

    async def test_ranker_keeps_snapshot_when_redis_fails(self, clock):
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"entries": [
            {"user_id": 1, "display_name": "A", "total_mined": 5, "level": 2, "is_premium": True},
        ]})
        ranker = LeaderboardRanker(redis_snapshot_fetcher(redis))
        good = await ranker.refresh(now=clock.now())

        redis.get.side_effect = RedisConnectionError("down")
        assert await ranker.refresh(now=clock.now()) == good
        assert good[0].is_premium is True


class TestWorker:
    async def test_refresh_period_publishes(self, db_session, make_profile, clock):
        await make_profile(total_mined=12.0)
        redis = AsyncMock()
        count = await refresh_period(db_session, redis, LeaderboardPeriod.ALL, clock.now())
        assert count == 1
        assert redis.set.await_args.args[0] == "leaderboard:snapshot:all"

    async def test_refresh_leaderboards_covers_every_period(self, tmp_path):
        await init_db(f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}")
        try:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            redis = AsyncMock()
            counts = await refresh_leaderboards({"redis": redis})
        finally:
            await close_db()
        assert counts == {"all": 0, "weekly": 0, "daily": 0}
        keys = {c.args[0] for c in redis.set.await_args_list}
        assert keys == {"leaderboard:snapshot:all", "leaderboard:snapshot:weekly", "leaderboard:snapshot:daily"}
