"""Pydantic schemas for leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from pingcaset.leaderboard.ranker import LeaderboardPeriod


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    display_name: str
    total_mined: float
    level: int
    is_premium: bool


class LeaderboardResponse(BaseModel):
    period: LeaderboardPeriod
    entries: list[LeaderboardEntryResponse]
    total: int
    refreshed_at: datetime | None = None
    my_rank: int | None = None
