"""Leaderboard ranking and stale-but-valid snapshot retention.

Ranking is deterministic: total_mined DESC, then account creation ASC
(older accounts win ties), then user_id ASC.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pingcaset.clock import as_utc
from pingcaset.errors import TransientFetchError

logger = logging.getLogger(__name__)


class LeaderboardPeriod(str, Enum):
    ALL = "all"
    WEEKLY = "weekly"
    DAILY = "daily"


@dataclass(frozen=True)
class LeaderboardRow:
    """One user's standing as produced by the backing aggregation."""

    user_id: int
    display_name: str
    total_mined: float
    level: int
    is_premium: bool
    created_at: datetime | None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: int
    display_name: str
    total_mined: float
    level: int
    is_premium: bool
    created_at: datetime | None = None


_FAR_FUTURE = datetime(9999, 12, 31)


def _sort_key(row: LeaderboardRow) -> tuple[float, datetime, int]:
    created = as_utc(row.created_at).replace(tzinfo=None) if row.created_at else _FAR_FUTURE
    return (-row.total_mined, created, row.user_id)


def rank_entries(rows: Iterable[LeaderboardRow]) -> tuple[LeaderboardEntry, ...]:
    """Rank rows 1..N. Ties on total_mined are broken by the stable secondary keys."""
    ordered = sorted(rows, key=_sort_key)
    return tuple(
        LeaderboardEntry(
            rank=idx + 1,
            user_id=row.user_id,
            display_name=row.display_name,
            total_mined=row.total_mined,
            level=row.level,
            is_premium=row.is_premium,
            created_at=row.created_at,
        )
        for idx, row in enumerate(ordered)
    )


SnapshotFetcher = Callable[[LeaderboardPeriod], Awaitable[list[LeaderboardRow]]]


class LeaderboardRanker:
    """Pull-and-rank over a backend snapshot, one installed snapshot per period.

    A failed fetch keeps the previous snapshot. Each refresh takes a
    generation number up front; a slow refresh that finishes after a newer
    one has been installed is dropped, so readers never go backwards.
    """

    def __init__(self, fetch: SnapshotFetcher) -> None:
        self._fetch = fetch
        self._snapshots: dict[LeaderboardPeriod, tuple[LeaderboardEntry, ...]] = {}
        self._issued: dict[LeaderboardPeriod, int] = {}
        self._installed: dict[LeaderboardPeriod, int] = {}
        self._refreshed_at: dict[LeaderboardPeriod, datetime] = {}

    def current(self, period: LeaderboardPeriod = LeaderboardPeriod.ALL) -> tuple[LeaderboardEntry, ...]:
        return self._snapshots.get(period, ())

    def refreshed_at(self, period: LeaderboardPeriod = LeaderboardPeriod.ALL) -> datetime | None:
        return self._refreshed_at.get(period)

    def has_snapshot(self, period: LeaderboardPeriod = LeaderboardPeriod.ALL) -> bool:
        return period in self._snapshots

    async def refresh(
        self,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL,
        now: datetime | None = None,
    ) -> tuple[LeaderboardEntry, ...]:
        generation = self._issued.get(period, 0) + 1
        self._issued[period] = generation

        try:
            rows = await self._fetch(period)
        except TransientFetchError as exc:
            logger.warning("Leaderboard fetch failed for %s, keeping previous snapshot: %s", period.value, exc)
            return self.current(period)

        ranked = rank_entries(rows)
        if generation > self._installed.get(period, 0):
            self._snapshots[period] = ranked
            self._installed[period] = generation
            if now is not None:
                self._refreshed_at[period] = now
        return self.current(period)

