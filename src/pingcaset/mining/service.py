"""Mining session lifecycle.

Rules:
- One active session at a time (a partial unique index backs the check),
  at most 4 started per UTC day
- Starting a session applies any due inactivity burn, then stamps last_mining_at
- Claiming a finished session credits the reward, counts toward recovery
  and records the session in every group the user belongs to
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.burning.service import apply_burn_if_due, apply_recovery
from pingcaset.clock import as_utc, start_of_day
from pingcaset.db.models import MiningSession
from pingcaset.errors import NotFoundError, StateConflictError
from pingcaset.groups.aggregator import MAX_MINES_PER_DAY
from pingcaset.groups.service import record_mining_activity
from pingcaset.ledger import TX_MINING, record_transaction
from pingcaset.users.service import get_profile

logger = logging.getLogger(__name__)

MAX_SESSIONS_PER_DAY = MAX_MINES_PER_DAY


@dataclass(frozen=True)
class StartResult:
    session: MiningSession
    burned: float


@dataclass(frozen=True)
class ClaimResult:
    session: MiningSession
    amount: float
    recovered: float
    groups_updated: int


async def get_active_session(db: AsyncSession, user_id: int) -> MiningSession | None:
    result = await db.execute(
        select(MiningSession)
        .where(MiningSession.user_id == user_id, MiningSession.is_active.is_(True))
        .order_by(MiningSession.started_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_sessions_today(db: AsyncSession, user_id: int, now: datetime) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(MiningSession)
        .where(MiningSession.user_id == user_id, MiningSession.started_at >= start_of_day(now))
    )
    return result.scalar_one()


async def start_mining_session(
    db: AsyncSession,
    user_id: int,
    now: datetime,
    duration_hours: int = 6,
    base_reward: float = 10.0,
) -> StartResult:
    """Start a session after applying any due burn.

    Concurrent starts are serialized by the one-active-session index, which
    also keeps the daily cap exact.
    """
    profile = await get_profile(db, user_id)

    if await get_active_session(db, user_id) is not None:
        raise StateConflictError("Already have an active mining session")

    if await count_sessions_today(db, user_id, now) >= MAX_SESSIONS_PER_DAY:
        raise StateConflictError(f"Daily mining limit reached ({MAX_SESSIONS_PER_DAY} sessions/day)")

    burned = await apply_burn_if_due(db, profile, now)

    session = MiningSession(
        user_id=user_id,
        started_at=now,
        ends_at=now + timedelta(hours=duration_hours),
        earned_amount=base_reward,
        is_active=True,
        is_claimed=False,
    )
    db.add(session)
    profile.last_mining_at = now
    profile.updated_at = now
    try:
        await db.flush()
    except IntegrityError:
        # uq_mining_sessions_user_active: a concurrent start got there first.
        await db.rollback()
        raise StateConflictError("Already have an active mining session") from None

    logger.info("Mining session %d started for user %d (burned=%.2f)", session.id, user_id, burned)
    return StartResult(session=session, burned=burned)


async def claim_mining_session(
    db: AsyncSession,
    user_id: int,
    session_id: int,
    now: datetime,
) -> ClaimResult:
    result = await db.execute(select(MiningSession).where(MiningSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None or session.user_id != user_id:
        raise NotFoundError("Session not found")
    if session.is_claimed:
        raise StateConflictError("Already claimed")
    if as_utc(now) < as_utc(session.ends_at):
        raise StateConflictError("Mining session not yet complete")

    # Conditional flip so a duplicate tap cannot credit twice.
    flipped = await db.execute(
        update(MiningSession)
        .where(MiningSession.id == session_id, MiningSession.is_claimed.is_(False))
        .values(is_claimed=True, is_active=False, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        raise StateConflictError("Already claimed")
    await db.refresh(session)

    profile = await get_profile(db, user_id)
    amount = session.earned_amount
    profile.balance = (profile.balance or 0.0) + amount
    profile.total_mined = (profile.total_mined or 0.0) + amount
    profile.updated_at = now
    record_transaction(db, user_id, TX_MINING, amount, "Mining cycle completed", now, {"session_id": session.id})

    step = await apply_recovery(db, profile, now)
    groups_updated = await record_mining_activity(db, user_id, now)
    await db.flush()

    return ClaimResult(session=session, amount=amount, recovered=step.recovered, groups_updated=groups_updated)
