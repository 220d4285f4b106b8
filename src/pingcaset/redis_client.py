"""Redis pool plus the keys and channels this service owns.

Two things live in Redis:
- leaderboard snapshots, one string key per period (``leaderboard:snapshot:<period>``)
- per-user event channels (``pcs:events:<user_id>``) fed by the event bus
"""

from __future__ import annotations

import redis.asyncio as redis
from redis.exceptions import RedisError

from pingcaset.errors import TransientFetchError

SNAPSHOT_KEY_PREFIX = "leaderboard:snapshot"
EVENT_CHANNEL_PREFIX = "pcs:events"

_pool: redis.Redis | None = None


def snapshot_key(period: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}:{period}"


def event_channel(user_id: int) -> str:
    return f"{EVENT_CHANNEL_PREFIX}:{user_id}"


async def init_redis(url: str, max_connections: int = 50) -> redis.Redis:
    """Create the shared pool. Returns the client so the lifespan can wire it."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    return _pool


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the Redis client (FastAPI dependency)."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


# ── Snapshots ──


async def store_snapshot(client: redis.Redis, period: str, payload: str, ttl_seconds: int) -> None:
    """Replace a period's snapshot in one SET so readers never see a partial list."""
    await client.set(snapshot_key(period), payload, ex=ttl_seconds)


async def load_snapshot(client: redis.Redis, period: str) -> str | None:
    """Raw snapshot JSON, or None when nothing has been published yet."""
    try:
        return await client.get(snapshot_key(period))
    except RedisError as exc:
        raise TransientFetchError(f"Leaderboard store unavailable: {exc}") from exc


# ── Events ──


async def publish_user_event(client: redis.Redis, user_id: int, payload: str) -> int:
    """Publish on the user's channel. Returns the number of receivers."""
    return await client.publish(event_channel(user_id), payload)


async def ping_redis() -> str:
    """Readiness check result: "ok" or the error text."""
    try:
        await get_redis().ping()
    except (RedisError, RuntimeError) as exc:
        return f"error: {exc}"
    return "ok"
