"""Owned, cancellable periodic leaderboard refresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from pingcaset.leaderboard.ranker import LeaderboardPeriod, LeaderboardRanker

logger = logging.getLogger(__name__)


class LeaderboardPoller:
    """Refreshes one period on a fixed interval until stopped.

    The owner (app lifespan, a view/session) calls start() and stop();
    stop() is safe to call more than once.
    """

    def __init__(
        self,
        ranker: LeaderboardRanker,
        period: LeaderboardPeriod = LeaderboardPeriod.ALL,
        interval_seconds: float = 30.0,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._ranker = ranker
        self._period = period
        self._interval = interval_seconds
        self._now = now
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"leaderboard-poller-{self._period.value}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            try:
                await self._ranker.refresh(self._period, self._now() if self._now else None)
            except Exception:
                logger.exception("Leaderboard poll failed for %s", self._period.value)
            await asyncio.sleep(self._interval)
