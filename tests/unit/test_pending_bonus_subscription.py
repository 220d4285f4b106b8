"""Unit tests for the revocable pending-bonus subscription."""

from __future__ import annotations

import asyncio

import pytest

from pingcaset.bonus.subscriptions import PendingBonusSubscription

pytestmark = pytest.mark.asyncio


async def test_delivers_initial_value_and_changes_only():
    values = iter([(1, 10), (1, 10), (2, 25)])
    seen: list[tuple[int, int]] = []

    async def fetch():
        return next(values, (2, 25))

    sub = PendingBonusSubscription(fetch, lambda c, t: seen.append((c, t)), interval_seconds=0.005).start()
    await asyncio.sleep(0.05)
    sub.cancel()
    await sub.wait_closed()
    assert seen == [(1, 10), (2, 25)]


async def test_cancel_is_idempotent():
    async def fetch():
        return (0, 0)

    sub = PendingBonusSubscription(fetch, lambda c, t: None, interval_seconds=0.01).start()
    sub.cancel()
    sub.cancel()
    await sub.wait_closed()
    assert sub.cancelled is True
    assert sub.active is False


async def test_result_after_cancel_is_dropped():
    gate = asyncio.Event()
    seen: list[tuple[int, int]] = []

    async def fetch():
        await gate.wait()
        return (3, 30)

    sub = PendingBonusSubscription(fetch, lambda c, t: seen.append((c, t)), interval_seconds=0.01)
    # Flag first, then let the in-flight fetch finish.
    sub.start()
    await asyncio.sleep(0)
    sub._cancelled = True
    gate.set()
    await sub.wait_closed()
    assert seen == []


async def test_fetch_failure_abandons_subscription():
    async def fetch():
        raise ConnectionError("db gone")

    sub = PendingBonusSubscription(fetch, lambda c, t: None, interval_seconds=0.01).start()
    await sub.wait_closed()
    assert sub.failed is True
    assert sub.active is False
    sub.cancel()


async def test_start_after_cancel_does_nothing():
    async def fetch():
        return (0, 0)

    sub = PendingBonusSubscription(fetch, lambda c, t: None)
    sub.cancel()
    sub.start()
    assert sub.active is False
    await sub.wait_closed()
