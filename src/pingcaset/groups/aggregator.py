"""Group reward aggregation: pure function over today's activity rows.

Rules:
- A group earns only with >= 3 members and >= 2 of them active today
- Pool: 180 x A/5, A = active members (capped at 5)
- Your share: pool x (your mines / group mines)
- mines_today is capped at 4; larger values are treated as bad data and clamped
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from pingcaset.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_GROUPS_PER_USER = 5
MAX_MEMBERS_PER_GROUP = 5
MIN_MEMBERS_TO_EARN = 3
MIN_ACTIVE_MEMBERS = 2
BASE_GROUP_REWARD = 180
MAX_MINES_PER_DAY = 4


@dataclass(frozen=True)
class ActivityRecord:
    user_id: int
    mines_today: int


@dataclass(frozen=True)
class GroupRewardSummary:
    active_members: int
    total_mines: int
    group_reward: int
    my_reward: int
    my_mines: int
    eligible: bool


def clamp_mines(record: ActivityRecord) -> int:
    if record.mines_today < 0:
        raise ValidationError(f"mines_today must be >= 0 (user {record.user_id})")
    if record.mines_today > MAX_MINES_PER_DAY:
        logger.warning(
            "Clamping mines_today=%d to %d for user %d",
            record.mines_today, MAX_MINES_PER_DAY, record.user_id,
        )
        return MAX_MINES_PER_DAY
    return record.mines_today


def compute_group_reward(member_count: int, active_members: int) -> int:
    """Pool size for the day. Monotonic in active_members, bounded by BASE_GROUP_REWARD."""
    if member_count < MIN_MEMBERS_TO_EARN or active_members < MIN_ACTIVE_MEMBERS:
        return 0
    scaled = min(active_members, MAX_MEMBERS_PER_GROUP)
    return (BASE_GROUP_REWARD * scaled) // MAX_MEMBERS_PER_GROUP


def compute_member_share(group_reward: int, mines: int, total_mines: int) -> int:
    if total_mines <= 0 or group_reward <= 0:
        return 0
    # Floor keeps the sum of shares <= group_reward.
    return (group_reward * mines) // total_mines


def aggregate_group_activity(
    member_count: int,
    member_ids: Iterable[int],
    activities: Iterable[ActivityRecord],
    user_id: int | None = None,
) -> GroupRewardSummary:
    """Summarize today's pool for a group and, if given, one member's share.

    Rows from users who are no longer members are ignored. Duplicate rows for
    a user keep the highest count (reads may be eventually consistent).
    """
    members = set(member_ids)
    mines_by_user: dict[int, int] = {}
    for record in activities:
        if record.user_id not in members:
            continue
        mines = clamp_mines(record)
        mines_by_user[record.user_id] = max(mines, mines_by_user.get(record.user_id, 0))

    active_members = sum(1 for mines in mines_by_user.values() if mines >= 1)
    total_mines = sum(mines_by_user.values())
    group_reward = compute_group_reward(member_count, active_members)
    my_mines = mines_by_user.get(user_id, 0) if user_id is not None else 0

    return GroupRewardSummary(
        active_members=active_members,
        total_mines=total_mines,
        group_reward=group_reward,
        my_reward=compute_member_share(group_reward, my_mines, total_mines),
        my_mines=my_mines,
        eligible=group_reward > 0,
    )
