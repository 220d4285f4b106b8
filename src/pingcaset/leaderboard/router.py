"""Leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query

from pingcaset.clock import Clock
from pingcaset.dependencies import get_clock, get_leaderboard_ranker
from pingcaset.leaderboard.ranker import LeaderboardPeriod, LeaderboardRanker
from pingcaset.leaderboard.schemas import LeaderboardEntryResponse, LeaderboardResponse

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    period: LeaderboardPeriod = Query(LeaderboardPeriod.ALL),
    x_user_id: int | None = Header(default=None),
    ranker: LeaderboardRanker = Depends(get_leaderboard_ranker),
    clock: Clock = Depends(get_clock),
) -> LeaderboardResponse:
    """Top miners for a period, served from the last good snapshot."""
    if not ranker.has_snapshot(period):
        await ranker.refresh(period, clock.now())
    entries = ranker.current(period)

    my_rank = None
    if x_user_id is not None:
        my_rank = next((e.rank for e in entries if e.user_id == x_user_id), None)

    return LeaderboardResponse(
        period=period,
        entries=[
            LeaderboardEntryResponse(
                rank=e.rank,
                user_id=str(e.user_id),
                display_name=e.display_name,
                total_mined=e.total_mined,
                level=e.level,
                is_premium=e.is_premium,
            )
            for e in entries
        ],
        total=len(entries),
        refreshed_at=ranker.refreshed_at(period),
        my_rank=my_rank,
    )
