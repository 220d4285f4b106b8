"""Unit tests for leaderboard ranking and snapshot retention."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pingcaset.errors import TransientFetchError
from pingcaset.leaderboard.ranker import (
    LeaderboardPeriod,
    LeaderboardRanker,
    LeaderboardRow,
    rank_entries,
)

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _row(user_id: int, total: float, created_days: int = 0) -> LeaderboardRow:
    return LeaderboardRow(
        user_id=user_id,
        display_name=f"Miner {user_id}",
        total_mined=total,
        level=1,
        is_premium=False,
        created_at=BASE + timedelta(days=created_days),
    )


class TestRankEntries:
    def test_higher_total_ranks_first(self):
        ranked = rank_entries([_row(1, 50), _row(2, 500), _row(3, 5)])
        assert [e.user_id for e in ranked] == [2, 1, 3]

    def test_tie_broken_by_older_account(self):
        ranked = rank_entries([_row(1, 100, created_days=5), _row(2, 100, created_days=1)])
        assert ranked[0].user_id == 2

    def test_full_tie_broken_by_user_id(self):
        ranked = rank_entries([_row(7, 100), _row(3, 100)])
        assert [e.user_id for e in ranked] == [3, 7]

    def test_missing_created_at_sorts_after_known(self):
        unknown = LeaderboardRow(1, "Miner", 100, 1, False, None)
        ranked = rank_entries([unknown, _row(2, 100)])
        assert ranked[0].user_id == 2

    def test_ranks_are_contiguous(self):
        ranked = rank_entries([_row(i, 1000 - i) for i in range(1, 21)])
        assert [e.rank for e in ranked] == list(range(1, 21))

    def test_empty(self):
        assert rank_entries([]) == ()

    def test_idempotent_on_same_input(self):
        rows = [_row(i, (i * 37) % 11) for i in range(1, 30)]
        assert rank_entries(rows) == rank_entries(list(reversed(rows)))


class TestLeaderboardRanker:
    @pytest.mark.asyncio
    async def test_refresh_installs_snapshot(self):
        async def fetch(period):
            return [_row(1, 10), _row(2, 20)]

        ranker = LeaderboardRanker(fetch)
        assert ranker.has_snapshot() is False
        now = datetime(2026, 3, 4, tzinfo=timezone.utc)
        entries = await ranker.refresh(now=now)
        assert [e.user_id for e in entries] == [2, 1]
        assert ranker.current() == entries
        assert ranker.refreshed_at() == now

    @pytest.mark.asyncio
    async def test_refresh_twice_is_identical(self):
        async def fetch(period):
            return [_row(1, 10), _row(2, 10), _row(3, 30)]

        ranker = LeaderboardRanker(fetch)
        first = await ranker.refresh()
        second = await ranker.refresh()
        assert first == second

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_previous_snapshot(self):
        calls = {"n": 0}

        async def fetch(period):
            calls["n"] += 1
            if calls["n"] > 1:
                raise TransientFetchError("backend down")
            return [_row(1, 10)]

        ranker = LeaderboardRanker(fetch)
        good = await ranker.refresh()
        stale = await ranker.refresh()
        assert stale == good
        assert ranker.current() == good

    @pytest.mark.asyncio
    async def test_failed_first_fetch_yields_empty(self):
        async def fetch(period):
            raise TransientFetchError("backend down")

        ranker = LeaderboardRanker(fetch)
        assert await ranker.refresh() == ()
        assert ranker.has_snapshot() is False

    @pytest.mark.asyncio
    async def test_periods_are_independent(self):
        async def fetch(period):
            if period == LeaderboardPeriod.DAILY:
                return [_row(9, 1)]
            return [_row(1, 100)]

        ranker = LeaderboardRanker(fetch)
        await ranker.refresh(LeaderboardPeriod.DAILY)
        assert ranker.current(LeaderboardPeriod.DAILY)[0].user_id == 9
        assert ranker.current(LeaderboardPeriod.ALL) == ()

    @pytest.mark.asyncio
    async def test_slow_older_refresh_does_not_overwrite_newer(self):
        release_slow = asyncio.Event()
        calls = {"n": 0}

        async def fetch(period):
            calls["n"] += 1
            if calls["n"] == 1:
                await release_slow.wait()
                return [_row(1, 1)]
            return [_row(2, 2)]

        ranker = LeaderboardRanker(fetch)
        slow = asyncio.create_task(ranker.refresh())
        await asyncio.sleep(0)
        await ranker.refresh()
        release_slow.set()
        await slow
        assert [e.user_id for e in ranker.current()] == [2]
