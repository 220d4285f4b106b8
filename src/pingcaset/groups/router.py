"""Security group endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.clock import Clock, utc_day
from pingcaset.config import Settings, get_settings
from pingcaset.database import get_session
from pingcaset.db.models import GroupMember, SecurityGroup
from pingcaset.dependencies import get_clock, get_current_user_id, get_event_bus
from pingcaset.errors import NotFoundError
from pingcaset.events import EventBus, commit_and_publish
from pingcaset.groups.aggregator import GroupRewardSummary
from pingcaset.groups.schemas import (
    CreateGroupRequest,
    GroupClaimResponse,
    GroupListResponse,
    GroupMemberResponse,
    GroupResponse,
    GroupSummaryResponse,
    JoinGroupRequest,
)
from pingcaset.groups.service import (
    claim_group_reward,
    create_group,
    get_claim,
    get_group,
    get_group_summary,
    get_membership,
    get_user_groups,
    join_group,
    leave_group,
)
from pingcaset.users.service import get_profile

router = APIRouter(prefix="/api/v1/groups", tags=["Groups"])


# ── Helper ──


def _build_group_response(
    group: SecurityGroup,
    members: list[GroupMember],
    summary: GroupRewardSummary,
    claimed_today: bool,
) -> GroupResponse:
    return GroupResponse(
        id=str(group.id),
        name=group.name,
        code=group.code,
        created_by=str(group.created_by),
        member_count=len(members),
        members=[
            GroupMemberResponse(user_id=str(m.user_id), display_name=m.display_name, joined_at=m.joined_at)
            for m in members
        ],
        today=GroupSummaryResponse(
            active_members=summary.active_members,
            total_mines=summary.total_mines,
            group_reward=summary.group_reward,
            my_reward=summary.my_reward,
            my_mines=summary.my_mines,
            eligible=summary.eligible,
        ),
        claimed_today=claimed_today,
    )


async def _load_group_response(db: AsyncSession, group_id: int, user_id: int, clock: Clock) -> GroupResponse:
    day = utc_day(clock.now())
    group = await get_group(db, group_id)
    members, summary = await get_group_summary(db, group, user_id, day)
    claimed = await get_claim(db, group_id, user_id, day) is not None
    return _build_group_response(group, members, summary, claimed)


# ── Endpoints ──


@router.get("", response_model=GroupListResponse)
async def list_my_groups(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> GroupListResponse:
    """Groups the caller belongs to, with today's reward pool."""
    views = await get_user_groups(db, user_id, clock.now())
    groups = [_build_group_response(v.group, v.members, v.summary, v.claimed_today) for v in views]
    return GroupListResponse(groups=groups, total=len(groups))


@router.post("", response_model=GroupResponse, status_code=201)
async def create_group_endpoint(
    body: CreateGroupRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> GroupResponse:
    group = await create_group(db, user_id, body.name, clock.now())
    await db.commit()
    return await _load_group_response(db, group.id, user_id, clock)


@router.post("/join", response_model=GroupResponse)
async def join_group_endpoint(
    body: JoinGroupRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> GroupResponse:
    """Join a group by its GRP-XXXX code."""
    member = await join_group(db, user_id, body.code, clock.now())
    await db.commit()
    return await _load_group_response(db, member.group_id, user_id, clock)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group_endpoint(
    group_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> GroupResponse:
    if await get_membership(db, group_id, user_id) is None:
        raise NotFoundError("Group not found")
    return await _load_group_response(db, group_id, user_id, clock)


@router.delete("/{group_id}/membership", status_code=204)
async def leave_group_endpoint(
    group_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> None:
    await leave_group(db, user_id, group_id)
    await db.commit()


@router.post("/{group_id}/claim", response_model=GroupClaimResponse)
async def claim_group_reward_endpoint(
    group_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
    settings: Settings = Depends(get_settings),
) -> GroupClaimResponse:
    """Collect the caller's share of today's group pool."""
    claim = await claim_group_reward(
        db, user_id, group_id, clock.now(),
        one_group_per_day=settings.group_claim_one_group_per_day,
    )
    await commit_and_publish(db, bus)
    profile = await get_profile(db, user_id)
    return GroupClaimResponse(
        group_id=str(claim.group_id),
        claim_date=claim.claim_date,
        amount=claim.amount,
        balance=profile.balance,
    )
