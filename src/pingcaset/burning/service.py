"""Burn and recovery write path.

A burn is applied when a session starts after 48h of inactivity; a recovery
step is counted each time a mining session is claimed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.burning.calculator import (
    BurnStatus,
    MiningActivity,
    RecoveryStep,
    advance_recovery,
    burn_due,
    compute_burn_status,
    hours_since_last_mining,
)
from pingcaset.db.models import Profile
from pingcaset.events import BURN_APPLIED, RECOVERY_MILESTONE, DomainEvent, stage_event
from pingcaset.ledger import TX_BURN, TX_RECOVERY, record_transaction
from pingcaset.users.service import get_profile

logger = logging.getLogger(__name__)


async def get_burn_status(db: AsyncSession, user_id: int, now: datetime) -> BurnStatus:
    profile = await get_profile(db, user_id)
    return compute_burn_status(MiningActivity.from_profile(profile), now)


async def apply_burn_if_due(
    db: AsyncSession,
    profile: Profile,
    now: datetime,
) -> float:
    """Burn 10% of the balance if the user has been inactive for 48h. Returns the amount burned."""
    amount = burn_due(profile.balance or 0.0, profile.last_mining_at, now)
    if amount <= 0:
        return 0.0

    hours_inactive = hours_since_last_mining(profile.last_mining_at, now)
    profile.balance = (profile.balance or 0.0) - amount
    profile.burned_amount = (profile.burned_amount or 0.0) + amount
    profile.total_burned = (profile.total_burned or 0.0) + amount
    profile.recovery_streak = 0
    profile.updated_at = now

    record_transaction(
        db, profile.id, TX_BURN, -amount,
        "Inactivity penalty: tokens burned", now,
        {"hours_inactive": int(hours_inactive)},
    )
    await db.flush()

    logger.info("Burned %.2f from user %d after %.1fh inactive", amount, profile.id, hours_inactive)
    stage_event(db, DomainEvent(
        type=BURN_APPLIED,
        user_id=profile.id,
        payload={"amount": amount, "hours_inactive": int(hours_inactive)},
        occurred_at=now,
    ))
    return amount


async def apply_recovery(
    db: AsyncSession,
    profile: Profile,
    now: datetime,
) -> RecoveryStep:
    """Count a completed session toward recovery and pay out on a milestone."""
    step = advance_recovery(profile.burned_amount or 0.0, profile.recovery_streak or 0)
    profile.recovery_streak = step.new_streak
    profile.updated_at = now

    if step.milestone:
        profile.balance = (profile.balance or 0.0) + step.recovered
        profile.burned_amount = max(0.0, (profile.burned_amount or 0.0) - step.recovered)
        profile.total_recovered = (profile.total_recovered or 0.0) + step.recovered
        record_transaction(
            db, profile.id, TX_RECOVERY, step.recovered,
            f"Token recovery: {step.sessions_completed} session streak", now,
            {"streak": step.sessions_completed},
        )

    await db.flush()

    if step.milestone:
        logger.info("Recovered %.2f for user %d", step.recovered, profile.id)
        stage_event(db, DomainEvent(
            type=RECOVERY_MILESTONE,
            user_id=profile.id,
            payload={"amount": step.recovered, "remaining_burned": profile.burned_amount},
            occurred_at=now,
        ))
    return step
