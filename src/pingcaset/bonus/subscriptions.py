"""Pending-bonus subscription: a revocable polling handle.

The subscriber owns the handle. cancel() may be called any number of times,
including while a poll is in flight; a result that lands after cancel() is
dropped rather than delivered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pingcaset.bonus.service import count_pending_bonuses

logger = logging.getLogger(__name__)

PendingFetcher = Callable[[], Awaitable[tuple[int, int]]]
PendingCallback = Callable[[int, int], None]


class PendingBonusSubscription:
    def __init__(
        self,
        fetch: PendingFetcher,
        on_update: PendingCallback,
        interval_seconds: float = 15.0,
    ) -> None:
        self._fetch = fetch
        self._on_update = on_update
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False
        self._failed = False
        self._last: tuple[int, int] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def failed(self) -> bool:
        return self._failed

    def start(self) -> PendingBonusSubscription:
        if self._task is None and not self._cancelled:
            self._task = asyncio.create_task(self._run(), name="pending-bonus-subscription")
        return self

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the polling task to finish after cancel() or failure."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                result = await self._fetch()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Pending bonus subscription failed; abandoning")
                self._failed = True
                return

            if self._cancelled:
                return
            if result != self._last:
                self._last = result
                self._on_update(*result)
            await asyncio.sleep(self._interval)


def subscribe_to_pending_bonuses(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: int,
    on_update: PendingCallback,
    now: Callable[[], datetime],
    interval_seconds: float = 15.0,
) -> PendingBonusSubscription:
    """Start polling (count, total) of claimable bonus rewards for a user."""

    async def _fetch() -> tuple[int, int]:
        async with session_factory() as db:
            return await count_pending_bonuses(db, user_id, now())

    return PendingBonusSubscription(_fetch, on_update, interval_seconds).start()
