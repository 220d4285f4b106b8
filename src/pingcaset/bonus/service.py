"""Bonus task persistence and transitions.

Tasks are unlocked once per UTC day after all daily tasks are done, expire
24h after creation, and pay their stored reward exactly once.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.bonus.tasks import (
    BonusTaskState,
    BonusTemplate,
    draw_reward,
    pick_template,
    task_state,
    validate_transition,
)
from pingcaset.clock import start_of_day
from pingcaset.db.models import BonusTask
from pingcaset.errors import NotFoundError, StateConflictError
from pingcaset.events import (
    BONUS_TASK_CLAIMED,
    BONUS_TASK_COMPLETED,
    BONUS_TASK_UNLOCKED,
    DomainEvent,
    stage_event,
)
from pingcaset.ledger import TX_BONUS_TASK, record_transaction
from pingcaset.users.service import get_profile

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


def state_of(task: BonusTask, now: datetime) -> BonusTaskState:
    return task_state(task.is_completed, task.is_claimed, task.expires_at, now)


async def get_bonus_tasks(db: AsyncSession, user_id: int) -> list[BonusTask]:
    result = await db.execute(
        select(BonusTask)
        .where(BonusTask.user_id == user_id)
        .order_by(BonusTask.created_at.desc(), BonusTask.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_active_bonus_tasks(db: AsyncSession, user_id: int, now: datetime) -> list[BonusTask]:
    """Unclaimed, unexpired tasks, newest first."""
    return [
        t for t in await get_bonus_tasks(db, user_id)
        if state_of(t, now) in (BonusTaskState.PENDING, BonusTaskState.COMPLETED)
    ]


async def get_bonus_task(db: AsyncSession, user_id: int, task_id: int) -> BonusTask:
    result = await db.execute(
        select(BonusTask)
        .where(BonusTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None or task.user_id != user_id:
        raise NotFoundError("Bonus task not found")
    return task


async def count_pending_bonuses(db: AsyncSession, user_id: int, now: datetime) -> tuple[int, int]:
    """(count, total reward) of completed, unclaimed, unexpired tasks."""
    result = await db.execute(
        select(func.count(BonusTask.id), func.coalesce(func.sum(BonusTask.reward), 0))
        .where(
            BonusTask.user_id == user_id,
            BonusTask.is_completed.is_(True),
            BonusTask.is_claimed.is_(False),
            BonusTask.expires_at >= now,
        )
    )
    count, total = result.one()
    return int(count), int(total)


async def create_bonus_task(
    db: AsyncSession,
    user_id: int,
    now: datetime,
    rng: random.Random | None = None,
    template: BonusTemplate | None = None,
    ttl: timedelta = DEFAULT_TTL,
) -> BonusTask:
    """Instantiate a template for a user, drawing the reward once."""
    rng = rng or random.Random()
    template = template or pick_template(rng)
    task = BonusTask(
        user_id=user_id,
        task_type=template.type.value,
        title=template.title,
        description=template.description,
        reward=draw_reward(template, rng),
        is_completed=False,
        is_claimed=False,
        expires_at=now + ttl,
        created_at=now,
    )
    db.add(task)
    await db.flush()
    return task


async def generate_daily_bonus_task(
    db: AsyncSession,
    user_id: int,
    daily_tasks_done: bool,
    now: datetime,
    rng: random.Random | None = None,
    ttl: timedelta = DEFAULT_TTL,
) -> BonusTask | None:
    """Unlock today's bonus task once every daily task is completed and claimed."""
    if not daily_tasks_done:
        return None

    existing = await db.execute(
        select(BonusTask.id)
        .where(BonusTask.user_id == user_id, BonusTask.created_at >= start_of_day(now))
        .limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        return None

    task = await create_bonus_task(db, user_id, now, rng=rng, ttl=ttl)
    logger.info("Bonus task %s unlocked for user %d (+%d)", task.task_type, user_id, task.reward)
    stage_event(db, DomainEvent(
        type=BONUS_TASK_UNLOCKED,
        user_id=user_id,
        payload={"task_id": task.id, "task_type": task.task_type, "reward": task.reward},
        occurred_at=now,
    ))
    return task


async def complete_bonus_task(
    db: AsyncSession,
    user_id: int,
    task_id: int,
    now: datetime,
) -> BonusTask:
    """Mark the task's condition as met. Repeated signals are no-ops."""
    task = await get_bonus_task(db, user_id, task_id)
    current = state_of(task, now)
    if current in (BonusTaskState.COMPLETED, BonusTaskState.CLAIMED):
        return task
    validate_transition(current, BonusTaskState.COMPLETED)

    task.is_completed = True
    task.completed_at = now
    await db.flush()

    stage_event(db, DomainEvent(
        type=BONUS_TASK_COMPLETED,
        user_id=user_id,
        payload={"task_id": task.id, "task_type": task.task_type, "reward": task.reward},
        occurred_at=now,
    ))
    return task


async def claim_bonus_task(
    db: AsyncSession,
    user_id: int,
    task_id: int,
    now: datetime,
) -> BonusTask:
    """Collect the stored reward. Only completed, unexpired, unclaimed tasks qualify."""
    task = await get_bonus_task(db, user_id, task_id)
    validate_transition(state_of(task, now), BonusTaskState.CLAIMED)

    # Guarded update: a concurrent duplicate claim matches zero rows.
    flipped = await db.execute(
        update(BonusTask)
        .where(
            BonusTask.id == task_id,
            BonusTask.is_completed.is_(True),
            BonusTask.is_claimed.is_(False),
            BonusTask.expires_at >= now,
        )
        .values(is_claimed=True, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount == 0:
        raise StateConflictError("Task reward already claimed")
    await db.refresh(task)

    profile = await get_profile(db, user_id)
    profile.balance = (profile.balance or 0.0) + task.reward
    profile.updated_at = now
    record_transaction(
        db, user_id, TX_BONUS_TASK, float(task.reward),
        f"Bonus Task: {task.title}", now, {"task_type": task.task_type},
    )
    await db.flush()

    logger.info("User %d claimed bonus task %d (+%d)", user_id, task.id, task.reward)
    stage_event(db, DomainEvent(
        type=BONUS_TASK_CLAIMED,
        user_id=user_id,
        payload={"task_id": task.id, "reward": task.reward},
        occurred_at=now,
    ))
    return task
