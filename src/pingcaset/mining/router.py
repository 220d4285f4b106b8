"""Mining session endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.clock import Clock
from pingcaset.config import Settings, get_settings
from pingcaset.database import get_session
from pingcaset.db.models import MiningSession
from pingcaset.dependencies import get_clock, get_current_user_id, get_event_bus
from pingcaset.events import EventBus, commit_and_publish
from pingcaset.mining.schemas import (
    ActiveSessionResponse,
    ClaimSessionResponse,
    MiningSessionResponse,
    StartSessionResponse,
)
from pingcaset.mining.service import (
    claim_mining_session,
    count_sessions_today,
    get_active_session,
    start_mining_session,
)
from pingcaset.users.service import get_profile

router = APIRouter(prefix="/api/v1/mining", tags=["Mining"])


def _session_response(session: MiningSession) -> MiningSessionResponse:
    return MiningSessionResponse(
        id=str(session.id),
        started_at=session.started_at,
        ends_at=session.ends_at,
        earned_amount=session.earned_amount,
        is_active=session.is_active,
        is_claimed=session.is_claimed,
        claimed_at=session.claimed_at,
    )


@router.get("/sessions/active", response_model=ActiveSessionResponse)
async def get_active_session_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ActiveSessionResponse:
    session = await get_active_session(db, user_id)
    return ActiveSessionResponse(session=_session_response(session) if session else None)


@router.post("/sessions", response_model=StartSessionResponse, status_code=201)
async def start_session_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
    settings: Settings = Depends(get_settings),
) -> StartSessionResponse:
    """Start a mining cycle. Any due inactivity burn is applied first."""
    now = clock.now()
    result = await start_mining_session(
        db, user_id, now,
        duration_hours=settings.mining_session_hours,
        base_reward=settings.mining_base_reward,
    )
    sessions_today = await count_sessions_today(db, user_id, now)
    await commit_and_publish(db, bus)
    return StartSessionResponse(
        session=_session_response(result.session),
        burned=result.burned,
        sessions_today=sessions_today,
    )


@router.post("/sessions/{session_id}/claim", response_model=ClaimSessionResponse)
async def claim_session_endpoint(
    session_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
) -> ClaimSessionResponse:
    """Claim a finished session's reward."""
    result = await claim_mining_session(db, user_id, session_id, clock.now())
    await commit_and_publish(db, bus)
    profile = await get_profile(db, user_id)
    return ClaimSessionResponse(
        session=_session_response(result.session),
        amount=result.amount,
        recovered=result.recovered,
        groups_updated=result.groups_updated,
        balance=profile.balance,
    )
