"""Security group business logic.

Rules:
- Max 5 members per group, max 5 groups per user
- Join codes are server-generated (GRP-XXXX)
- Daily activity is upserted per (group, user, UTC date) and capped at 4
- One claim per (group, user, date), enforced by a unique key
- By default a user may claim from only one group per day
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.clock import utc_day
from pingcaset.db.models import GroupClaim, GroupDailyActivity, GroupMember, Profile, SecurityGroup
from pingcaset.errors import NotFoundError, StateConflictError, ValidationError
from pingcaset.events import GROUP_REWARD_CLAIMED, DomainEvent, stage_event
from pingcaset.groups.aggregator import (
    MAX_GROUPS_PER_USER,
    MAX_MEMBERS_PER_GROUP,
    MAX_MINES_PER_DAY,
    MIN_ACTIVE_MEMBERS,
    MIN_MEMBERS_TO_EARN,
    ActivityRecord,
    GroupRewardSummary,
    aggregate_group_activity,
)
from pingcaset.groups.codes import generate_unique_group_code, normalize_group_code
from pingcaset.ledger import TX_GROUP_REWARD, record_transaction
from pingcaset.users.service import get_profile

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 64


@dataclass
class GroupView:
    group: SecurityGroup
    members: list[GroupMember]
    summary: GroupRewardSummary
    claimed_today: bool


def _insert_for(db: AsyncSession):  # noqa: ANN202
    """Dialect-native INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


# ── Reads ──


async def get_group(db: AsyncSession, group_id: int) -> SecurityGroup:
    result = await db.execute(
        select(SecurityGroup)
        .where(SecurityGroup.id == group_id)
        .execution_options(populate_existing=True)
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group not found")
    return group


async def get_group_members(db: AsyncSession, group_id: int) -> list[GroupMember]:
    result = await db.execute(
        select(GroupMember)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
    )
    return list(result.scalars().all())


async def get_membership(db: AsyncSession, group_id: int, user_id: int) -> GroupMember | None:
    result = await db.execute(
        select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_group_daily_activity(db: AsyncSession, group_id: int, day: date) -> list[GroupDailyActivity]:
    result = await db.execute(
        select(GroupDailyActivity)
        .where(GroupDailyActivity.group_id == group_id, GroupDailyActivity.activity_date == day)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_claim(db: AsyncSession, group_id: int, user_id: int, day: date) -> GroupClaim | None:
    result = await db.execute(
        select(GroupClaim).where(
            GroupClaim.group_id == group_id,
            GroupClaim.user_id == user_id,
            GroupClaim.claim_date == day,
        )
    )
    return result.scalar_one_or_none()


async def get_user_claim_for_day(db: AsyncSession, user_id: int, day: date) -> GroupClaim | None:
    result = await db.execute(
        select(GroupClaim)
        .where(GroupClaim.user_id == user_id, GroupClaim.claim_date == day)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_group_summary(
    db: AsyncSession, group: SecurityGroup, user_id: int | None, day: date,
) -> tuple[list[GroupMember], GroupRewardSummary]:
    members = await get_group_members(db, group.id)
    rows = await get_group_daily_activity(db, group.id, day)
    summary = aggregate_group_activity(
        member_count=len(members),
        member_ids=[m.user_id for m in members],
        activities=[ActivityRecord(user_id=r.user_id, mines_today=r.mines_today) for r in rows],
        user_id=user_id,
    )
    return members, summary


async def get_user_groups(db: AsyncSession, user_id: int, now: datetime) -> list[GroupView]:
    """All groups the user belongs to, with today's pool."""
    day = utc_day(now)
    result = await db.execute(
        select(SecurityGroup)
        .join(GroupMember, GroupMember.group_id == SecurityGroup.id)
        .where(GroupMember.user_id == user_id)
        .order_by(GroupMember.joined_at.asc())
    )
    views = []
    for group in result.scalars().all():
        members, summary = await get_group_summary(db, group, user_id, day)
        claimed = await get_claim(db, group.id, user_id, day) is not None
        views.append(GroupView(group=group, members=members, summary=summary, claimed_today=claimed))
    return views


# ── Membership ──


async def _take_group_slot(db: AsyncSession, user_id: int) -> bool:
    """Bump the user's group_count unless they are already at the cap."""
    result = await db.execute(
        update(Profile)
        .where(Profile.id == user_id, Profile.group_count < MAX_GROUPS_PER_USER)
        .values(group_count=Profile.group_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def create_group(db: AsyncSession, user_id: int, name: str, now: datetime) -> SecurityGroup:
    """Create a group; the creator becomes its first member."""
    name = name.strip()
    if not name or len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Group name must be 1-{MAX_NAME_LENGTH} characters")

    profile = await get_profile(db, user_id)
    if not await _take_group_slot(db, user_id):
        raise StateConflictError(f"Maximum {MAX_GROUPS_PER_USER} groups allowed")

    group = SecurityGroup(
        name=name,
        code=await generate_unique_group_code(db),
        created_by=user_id,
        member_count=1,
        created_at=now,
    )
    db.add(group)
    await db.flush()

    db.add(GroupMember(
        group_id=group.id,
        user_id=user_id,
        display_name=profile.display_name,
        joined_at=now,
    ))
    await db.flush()

    logger.info("Group created: %s (id=%d, code=%s, owner=%d)", name, group.id, group.code, user_id)
    return group


async def join_group(db: AsyncSession, user_id: int, code: str, now: datetime) -> GroupMember:
    """Join a group using its code.

    Both caps are conditional increments, and the membership row has a unique
    key, so concurrent joins cannot overshoot either cap or join twice. On any
    conflict after the first write the session is rolled back.
    """
    profile = await get_profile(db, user_id)
    display_name = profile.display_name
    result = await db.execute(
        select(SecurityGroup).where(SecurityGroup.code == normalize_group_code(code))
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group not found")
    group_id = group.id

    if await get_membership(db, group_id, user_id) is not None:
        raise StateConflictError("Already a member of this group")

    bumped = await db.execute(
        update(SecurityGroup)
        .where(SecurityGroup.id == group_id, SecurityGroup.member_count < MAX_MEMBERS_PER_GROUP)
        .values(member_count=SecurityGroup.member_count + 1)
        .execution_options(synchronize_session=False)
    )
    if bumped.rowcount == 0:
        raise StateConflictError(f"Group is full (max {MAX_MEMBERS_PER_GROUP} members)")

    if not await _take_group_slot(db, user_id):
        await db.rollback()
        raise StateConflictError(f"You can only join up to {MAX_GROUPS_PER_USER} groups")

    member = GroupMember(
        group_id=group_id,
        user_id=user_id,
        display_name=display_name,
        joined_at=now,
    )
    db.add(member)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise StateConflictError("Already a member of this group") from None
    logger.info("User %d joined group %d", user_id, group_id)
    return member


async def leave_group(db: AsyncSession, user_id: int, group_id: int) -> None:
    membership = await get_membership(db, group_id, user_id)
    if membership is None:
        raise NotFoundError("You are not a member of this group")

    await db.execute(delete(GroupMember).where(GroupMember.id == membership.id))
    await db.execute(
        update(SecurityGroup)
        .where(SecurityGroup.id == group_id, SecurityGroup.member_count > 0)
        .values(member_count=SecurityGroup.member_count - 1)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Profile)
        .where(Profile.id == user_id, Profile.group_count > 0)
        .values(group_count=Profile.group_count - 1)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    logger.info("User %d left group %d", user_id, group_id)


# ── Daily activity ──


async def upsert_daily_activity(
    db: AsyncSession, group_id: int, user_id: int, day: date, mines_today: int,
) -> None:
    """Write an explicit mines_today value. Never lowers a stored count."""
    if not 0 <= mines_today <= MAX_MINES_PER_DAY:
        raise ValidationError(f"mines_today must be between 0 and {MAX_MINES_PER_DAY}")

    insert = _insert_for(db)
    stmt = insert(GroupDailyActivity).values(
        group_id=group_id,
        user_id=user_id,
        activity_date=day,
        mines_today=mines_today,
        is_active=mines_today >= 1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["group_id", "user_id", "activity_date"],
        set_={
            "mines_today": case(
                (GroupDailyActivity.mines_today < mines_today, mines_today),
                else_=GroupDailyActivity.mines_today,
            ),
            "is_active": True if mines_today >= 1 else GroupDailyActivity.is_active,
        },
    )
    await db.execute(stmt)


async def record_mining_activity(db: AsyncSession, user_id: int, now: datetime) -> int:
    """Count one mining session in every group the user belongs to. Returns groups touched."""
    day = utc_day(now)
    result = await db.execute(select(GroupMember.group_id).where(GroupMember.user_id == user_id))
    group_ids = list(result.scalars().all())

    insert = _insert_for(db)
    for group_id in group_ids:
        stmt = insert(GroupDailyActivity).values(
            group_id=group_id,
            user_id=user_id,
            activity_date=day,
            mines_today=1,
            is_active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["group_id", "user_id", "activity_date"],
            set_={
                "mines_today": case(
                    (GroupDailyActivity.mines_today < MAX_MINES_PER_DAY, GroupDailyActivity.mines_today + 1),
                    else_=GroupDailyActivity.mines_today,
                ),
                "is_active": True,
            },
        )
        await db.execute(stmt)
    return len(group_ids)


# ── Claims ──


async def insert_claim_if_absent(
    db: AsyncSession, group_id: int, user_id: int, day: date, amount: float, now: datetime,
) -> GroupClaim:
    """Insert the claim row; the (group, user, date) unique key makes this atomic.

    On conflict the whole session is rolled back, so only call it where
    earlier uncommitted writes belong to the same claim.
    """
    claim = GroupClaim(group_id=group_id, user_id=user_id, claim_date=day, amount=amount, claimed_at=now)
    db.add(claim)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise StateConflictError("Reward already claimed for this group today") from None
    return claim


async def claim_group_reward(
    db: AsyncSession,
    user_id: int,
    group_id: int,
    now: datetime,
    one_group_per_day: bool = True,
) -> GroupClaim:
    """Pay the user's share of today's pool, once."""
    day = utc_day(now)
    group = await get_group(db, group_id)
    if await get_membership(db, group_id, user_id) is None:
        raise NotFoundError("Group not found")

    if one_group_per_day and await get_user_claim_for_day(db, user_id, day) is not None:
        raise StateConflictError("Already claimed from a group today")

    members, summary = await get_group_summary(db, group, user_id, day)
    if len(members) < MIN_MEMBERS_TO_EARN:
        raise StateConflictError(f"Group needs at least {MIN_MEMBERS_TO_EARN} members")
    if summary.active_members < MIN_ACTIVE_MEMBERS:
        raise StateConflictError(f"Need at least {MIN_ACTIVE_MEMBERS} active members today")
    if summary.my_mines < 1:
        raise StateConflictError("You must mine at least once today")
    if summary.my_reward <= 0:
        raise StateConflictError("No reward to claim")

    amount = float(summary.my_reward)
    if one_group_per_day:
        # Conditional write: one group claim per user per UTC day.
        marked = await db.execute(
            update(Profile)
            .where(
                Profile.id == user_id,
                or_(Profile.last_group_claim_on.is_(None), Profile.last_group_claim_on != day),
            )
            .values(last_group_claim_on=day)
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount == 0:
            raise StateConflictError("Already claimed from a group today")

    claim = await insert_claim_if_absent(db, group_id, user_id, day, amount, now)

    profile = await get_profile(db, user_id)
    profile.balance = (profile.balance or 0.0) + amount
    profile.updated_at = now
    record_transaction(
        db, user_id, TX_GROUP_REWARD, amount,
        f"Security Group reward: {group.name}", now,
        {"group_id": group.id, "group_name": group.name},
    )
    await db.flush()

    logger.info("User %d claimed %.0f from group %d", user_id, amount, group_id)
    stage_event(db, DomainEvent(
        type=GROUP_REWARD_CLAIMED,
        user_id=user_id,
        payload={"group_id": group.id, "amount": amount, "group_reward": summary.group_reward},
        occurred_at=now,
    ))
    return claim
