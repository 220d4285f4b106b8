"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from pingcaset.clock import Clock, SystemClock
from pingcaset.events import EventBus
from pingcaset.leaderboard.ranker import LeaderboardRanker

_system_clock = SystemClock()


def get_clock() -> Clock:
    return _system_clock


async def get_current_user_id(x_user_id: int | None = Header(default=None)) -> int:
    """Caller identity, set by the upstream auth gateway."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_leaderboard_ranker(request: Request) -> LeaderboardRanker:
    return request.app.state.leaderboard
