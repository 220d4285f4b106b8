"""Bonus task catalog and state machine.

State progression: pending -> completed -> claimed
Expired is terminal and reachable from pending or completed once now > expires_at.
A claimed task stays claimed after its expiry passes.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pingcaset.clock import as_utc
from pingcaset.errors import StateConflictError


class BonusTaskType(str, Enum):
    WATCH_AD = "watch_ad"
    SHARE_APP = "share_app"
    RATE_APP = "rate_app"
    VISIT_WHITEPAPER = "visit_whitepaper"
    CHECK_LEADERBOARD = "check_leaderboard"
    PLAY_EXTRA_GAME = "play_extra_game"


class BonusTaskState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CLAIMED = "claimed"
    EXPIRED = "expired"


VALID_TRANSITIONS: dict[BonusTaskState, list[BonusTaskState]] = {
    BonusTaskState.PENDING: [BonusTaskState.COMPLETED, BonusTaskState.EXPIRED],
    BonusTaskState.COMPLETED: [BonusTaskState.CLAIMED, BonusTaskState.EXPIRED],
    BonusTaskState.CLAIMED: [],
    BonusTaskState.EXPIRED: [],
}


@dataclass(frozen=True)
class BonusTemplate:
    type: BonusTaskType
    title: str
    description: str
    min_reward: int
    max_reward: int


BONUS_TASK_TEMPLATES: tuple[BonusTemplate, ...] = (
    BonusTemplate(BonusTaskType.WATCH_AD, "Watch a Video", "Watch a short promo video", 10, 15),
    BonusTemplate(BonusTaskType.SHARE_APP, "Share PingCaset", "Share the app with a friend", 12, 18),
    BonusTemplate(BonusTaskType.VISIT_WHITEPAPER, "Read Whitepaper", "Visit the whitepaper page", 8, 12),
    BonusTemplate(BonusTaskType.CHECK_LEADERBOARD, "Check Leaderboard", "View the top miners", 5, 10),
    BonusTemplate(BonusTaskType.PLAY_EXTRA_GAME, "Play One More Game", "Play a spin or scratch game", 10, 20),
)


def get_template(task_type: BonusTaskType | str) -> BonusTemplate:
    for template in BONUS_TASK_TEMPLATES:
        if template.type == task_type:
            return template
    raise KeyError(f"No bonus template for {task_type}")


def pick_template(rng: random.Random) -> BonusTemplate:
    return rng.choice(BONUS_TASK_TEMPLATES)


def draw_reward(template: BonusTemplate, rng: random.Random) -> int:
    """Reward fixed at creation, inclusive of both bounds."""
    return rng.randint(template.min_reward, template.max_reward)


def task_state(is_completed: bool, is_claimed: bool, expires_at: datetime, now: datetime) -> BonusTaskState:
    if is_claimed:
        return BonusTaskState.CLAIMED
    if as_utc(now) > as_utc(expires_at):
        return BonusTaskState.EXPIRED
    if is_completed:
        return BonusTaskState.COMPLETED
    return BonusTaskState.PENDING


def validate_transition(current: BonusTaskState, target: BonusTaskState) -> None:
    """Raise StateConflictError if current -> target is not allowed."""
    if target not in VALID_TRANSITIONS[current]:
        if target == BonusTaskState.CLAIMED:
            reasons = {
                BonusTaskState.PENDING: "Task is not completed yet",
                BonusTaskState.CLAIMED: "Task reward already claimed",
                BonusTaskState.EXPIRED: "Task has expired",
            }
            raise StateConflictError(reasons.get(current, "Cannot claim this task"))
        raise StateConflictError(f"Invalid transition: {current.value} -> {target.value}")
