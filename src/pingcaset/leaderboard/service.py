"""Leaderboard backing aggregation and Redis snapshot transport.

The worker computes ranked snapshots from PostgreSQL and stores each one in
Redis as a single JSON value, so a reader always sees one whole snapshot.
API processes pull those snapshots through a LeaderboardRanker.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.clock import as_utc, start_of_day, start_of_week
from pingcaset.db.models import MiningSession, Profile
from pingcaset.errors import TransientFetchError
from pingcaset.leaderboard.ranker import (
    LeaderboardEntry,
    LeaderboardPeriod,
    LeaderboardRow,
    SnapshotFetcher,
)
from pingcaset.redis_client import load_snapshot, store_snapshot

logger = logging.getLogger(__name__)


def _display_name(name: str | None) -> str:
    return name or "Miner"


async def fetch_leaderboard_rows(
    db: AsyncSession,
    period: LeaderboardPeriod,
    now: datetime,
    limit: int = 100,
) -> list[LeaderboardRow]:
    """Read one consistent snapshot of standings (a single SELECT)."""
    try:
        if period == LeaderboardPeriod.ALL:
            stmt = (
                select(
                    Profile.id,
                    Profile.display_name,
                    Profile.total_mined.label("score"),
                    Profile.level,
                    Profile.is_premium,
                    Profile.created_at,
                )
                .where(Profile.total_mined > 0)
                .order_by(Profile.total_mined.desc(), Profile.created_at.asc(), Profile.id.asc())
                .limit(limit)
            )
        else:
            since = start_of_week(now) if period == LeaderboardPeriod.WEEKLY else start_of_day(now)
            score = func.sum(MiningSession.earned_amount)
            stmt = (
                select(
                    Profile.id,
                    Profile.display_name,
                    score.label("score"),
                    Profile.level,
                    Profile.is_premium,
                    Profile.created_at,
                )
                .join(MiningSession, MiningSession.user_id == Profile.id)
                .where(MiningSession.is_claimed.is_(True), MiningSession.claimed_at >= since)
                .group_by(Profile.id)
                .order_by(score.desc(), Profile.created_at.asc(), Profile.id.asc())
                .limit(limit)
            )
        result = await db.execute(stmt)
        rows = result.all()
    except SQLAlchemyError as exc:
        raise TransientFetchError(f"Leaderboard query failed: {exc}") from exc

    return [
        LeaderboardRow(
            user_id=row.id,
            display_name=_display_name(row.display_name),
            total_mined=float(row.score or 0),
            level=row.level or 1,
            is_premium=bool(row.is_premium),
            created_at=as_utc(row.created_at) if row.created_at else None,
        )
        for row in rows
    ]


def _entry_to_dict(entry: LeaderboardEntry) -> dict[str, Any]:
    return {
        "rank": entry.rank,
        "user_id": entry.user_id,
        "display_name": entry.display_name,
        "total_mined": entry.total_mined,
        "level": entry.level,
        "is_premium": entry.is_premium,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _dict_to_row(data: dict[str, Any]) -> LeaderboardRow:
    created = data.get("created_at")
    return LeaderboardRow(
        user_id=int(data["user_id"]),
        display_name=_display_name(data.get("display_name")),
        total_mined=float(data.get("total_mined", 0)),
        level=int(data.get("level", 1)),
        is_premium=bool(data.get("is_premium", False)),
        created_at=datetime.fromisoformat(created) if created else None,
    )


async def publish_snapshot(
    redis: Redis,
    period: LeaderboardPeriod,
    entries: tuple[LeaderboardEntry, ...],
    generated_at: datetime,
    ttl_seconds: int = 3600,
) -> None:
    """Serialize a ranked snapshot and replace the stored one."""
    payload = json.dumps({
        "period": period.value,
        "generated_at": generated_at.isoformat(),
        "entries": [_entry_to_dict(e) for e in entries],
    })
    await store_snapshot(redis, period.value, payload, ttl_seconds)


async def read_snapshot(redis: Redis, period: LeaderboardPeriod) -> list[LeaderboardRow]:
    raw = await load_snapshot(redis, period.value)
    if raw is None:
        raise TransientFetchError(f"No {period.value} leaderboard snapshot published yet")
    try:
        data = json.loads(raw)
        return [_dict_to_row(item) for item in data["entries"]]
    except (ValueError, KeyError, TypeError) as exc:
        raise TransientFetchError(f"Corrupt {period.value} leaderboard snapshot") from exc


def redis_snapshot_fetcher(redis: Redis) -> SnapshotFetcher:
    async def _fetch(period: LeaderboardPeriod) -> list[LeaderboardRow]:
        return await read_snapshot(redis, period)

    return _fetch
