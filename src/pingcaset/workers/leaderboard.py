"""Leaderboard refresh arq worker: rebuilds ranked snapshots into Redis.

Runs every 30 seconds, matching the client poll interval:
arq pingcaset.workers.leaderboard.LeaderboardWorkerSettings
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.config import get_settings
from pingcaset.database import close_db, get_session_factory, init_db
from pingcaset.errors import TransientFetchError
from pingcaset.leaderboard.ranker import LeaderboardPeriod, rank_entries
from pingcaset.leaderboard.service import fetch_leaderboard_rows, publish_snapshot
from pingcaset.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def refresh_period(
    db: AsyncSession,
    redis_client: aioredis.Redis,
    period: LeaderboardPeriod,
    now: datetime,
) -> int:
    """Rank one period and publish it. Returns the entry count."""
    settings = get_settings()
    rows = await fetch_leaderboard_rows(db, period, now, limit=settings.leaderboard_size)
    entries = rank_entries(rows)
    await publish_snapshot(
        redis_client, period, entries, now,
        ttl_seconds=settings.leaderboard_snapshot_ttl_seconds,
    )
    return len(entries)


async def refresh_leaderboards(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Refresh every period. A failed period keeps its last published snapshot."""
    redis_client: aioredis.Redis = ctx["redis"]
    now = datetime.now(timezone.utc)
    counts: dict[str, int] = {}
    db = get_session_factory()()
    try:
        for period in LeaderboardPeriod:
            try:
                counts[period.value] = await refresh_period(db, redis_client, period, now)
            except TransientFetchError as exc:
                logger.warning("Skipping %s leaderboard refresh: %s", period.value, exc)
                await db.rollback()
    finally:
        await db.close()
    logger.info("Leaderboards refreshed: %s", counts)
    return counts


async def leaderboard_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["redis"] = await init_redis(settings.redis_url, max_connections=20)
    logger.info("Leaderboard worker started")


async def leaderboard_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_redis()
    await close_db()
    logger.info("Leaderboard worker shut down")


class LeaderboardWorkerSettings:
    """arq worker settings for leaderboard refresh."""

    functions = [refresh_leaderboards]
    cron_jobs = [cron(refresh_leaderboards, second={0, 30}, run_at_startup=True)]
    on_startup = leaderboard_startup
    on_shutdown = leaderboard_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 2
    job_timeout = 60
