"""Unit tests for the group activity aggregator."""

import pytest

from pingcaset.errors import ValidationError
from pingcaset.groups.aggregator import (
    BASE_GROUP_REWARD,
    ActivityRecord,
    aggregate_group_activity,
    compute_group_reward,
    compute_member_share,
)


def _records(mines: list[int]) -> list[ActivityRecord]:
    return [ActivityRecord(user_id=i + 1, mines_today=m) for i, m in enumerate(mines)]


class TestGroupReward:
    def test_three_members_two_active(self):
        summary = aggregate_group_activity(3, [1, 2, 3], _records([2, 1, 0]), user_id=1)
        assert summary.total_mines == 3
        assert summary.active_members == 2
        assert summary.group_reward == 72
        assert summary.my_mines == 2
        assert summary.my_reward == (summary.group_reward * 2) // 3
        assert summary.eligible is True

    @pytest.mark.parametrize("member_count", [0, 1, 2])
    def test_too_few_members_earns_nothing(self, member_count):
        ids = list(range(1, member_count + 1))
        summary = aggregate_group_activity(member_count, ids, _records([4] * member_count), user_id=1)
        assert summary.group_reward == 0
        assert summary.my_reward == 0
        assert summary.eligible is False

    def test_single_active_member_earns_nothing(self):
        summary = aggregate_group_activity(5, [1, 2, 3, 4, 5], _records([4, 0, 0, 0, 0]), user_id=1)
        assert summary.total_mines == 4
        assert summary.group_reward == 0

    def test_reward_monotonic_and_bounded(self):
        rewards = [compute_group_reward(5, active) for active in range(0, 8)]
        assert rewards == sorted(rewards)
        assert max(rewards) == BASE_GROUP_REWARD

    def test_conservation_across_members(self):
        mines = [4, 3, 1, 1, 2]
        ids = [1, 2, 3, 4, 5]
        shares = [
            aggregate_group_activity(5, ids, _records(mines), user_id=uid).my_reward
            for uid in ids
        ]
        group_reward = compute_group_reward(5, 5)
        assert sum(shares) <= group_reward

    def test_member_share_zero_when_no_mines(self):
        assert compute_member_share(180, 0, 0) == 0
        assert compute_member_share(0, 3, 3) == 0


class TestActivityInputs:
    def test_mines_above_cap_are_clamped(self):
        summary = aggregate_group_activity(3, [1, 2, 3], _records([9, 1, 1]), user_id=1)
        assert summary.my_mines == 4
        assert summary.total_mines == 6

    def test_negative_mines_rejected(self):
        with pytest.raises(ValidationError):
            aggregate_group_activity(3, [1, 2, 3], _records([-1, 1, 1]))

    def test_non_member_rows_ignored(self):
        activities = _records([2, 2]) + [ActivityRecord(user_id=99, mines_today=4)]
        summary = aggregate_group_activity(3, [1, 2, 3], activities)
        assert summary.total_mines == 4
        assert summary.active_members == 2

    def test_duplicate_rows_keep_highest(self):
        activities = [ActivityRecord(1, 1), ActivityRecord(1, 3), ActivityRecord(2, 1)]
        summary = aggregate_group_activity(3, [1, 2, 3], activities, user_id=1)
        assert summary.my_mines == 3
        assert summary.total_mines == 4

    def test_no_user_means_no_share(self):
        summary = aggregate_group_activity(3, [1, 2, 3], _records([2, 1, 0]))
        assert summary.my_mines == 0
        assert summary.my_reward == 0
