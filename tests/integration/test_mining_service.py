"""Integration tests for mining sessions, inactivity burn and recovery."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from pingcaset.burning.service import get_burn_status
from pingcaset.clock import start_of_day, utc_day
from pingcaset.db.models import MiningSession, Profile, Transaction
from pingcaset.errors import NotFoundError, StateConflictError
from pingcaset.events import BURN_APPLIED, RECOVERY_MILESTONE, EventBus, commit_and_publish
from pingcaset.groups.service import create_group, get_group_daily_activity
from pingcaset.mining.service import claim_mining_session, start_mining_session

pytestmark = pytest.mark.asyncio


async def _ledger(db, user_id):
    result = await db.execute(
        select(Transaction.type, Transaction.amount)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.id)
    )
    return [tuple(row) for row in result.all()]


class TestStartSession:
    async def test_start_stamps_last_mining(self, db_session, make_profile, clock):
        user = await make_profile()
        result = await start_mining_session(db_session, user.id, clock.now())
        await db_session.commit()
        assert result.burned == 0.0
        assert result.session.ends_at == clock.now() + timedelta(hours=6)
        profile = await db_session.get(Profile, user.id)
        assert profile.last_mining_at == clock.now()

    async def test_one_active_session(self, db_session, make_profile, clock):
        user = await make_profile()
        await start_mining_session(db_session, user.id, clock.now())
        with pytest.raises(StateConflictError, match="active mining session"):
            await start_mining_session(db_session, user.id, clock.now())

    async def test_concurrent_starts_open_one_session(self, db_session, make_profile, race, clock):
        user = await make_profile()

        async def _start(session):
            await start_mining_session(session, user.id, clock.now())

        assert await race(_start, _start) == ["conflict", "ok"]
        active = await db_session.execute(
            select(func.count())
            .select_from(MiningSession)
            .where(MiningSession.user_id == user.id, MiningSession.is_active.is_(True))
        )
        assert active.scalar_one() == 1

    async def test_concurrent_starts_burn_once(self, db_session, make_profile, race, clock):
        user = await make_profile(balance=100.0, last_mining_at=clock.now() - timedelta(hours=50))

        async def _start(session):
            await start_mining_session(session, user.id, clock.now())

        assert await race(_start, _start) == ["conflict", "ok"]
        assert await _ledger(db_session, user.id) == [("burn", -10.0)]
        profile = await db_session.get(Profile, user.id, populate_existing=True)
        assert profile.balance == 90.0

    async def test_new_session_allowed_after_claim(self, db_session, make_profile, clock):
        user = await make_profile()
        first = await start_mining_session(db_session, user.id, clock.now())
        clock.advance(hours=6)
        await claim_mining_session(db_session, user.id, first.session.id, clock.now())
        second = await start_mining_session(db_session, user.id, clock.now())
        await db_session.commit()
        assert second.session.is_active is True

    async def test_fifth_session_in_a_day_rejected(self, db_session, make_profile, clock):
        user = await make_profile()
        midnight = start_of_day(clock.now())
        for i in range(4):
            db_session.add(MiningSession(
                user_id=user.id,
                started_at=midnight + timedelta(minutes=i),
                ends_at=midnight + timedelta(hours=6, minutes=i),
                earned_amount=10.0,
                is_active=False,
                is_claimed=True,
            ))
        await db_session.commit()
        with pytest.raises(StateConflictError, match="Daily mining limit"):
            await start_mining_session(db_session, user.id, clock.now())

    async def test_start_applies_due_burn(self, db_session, make_profile, clock):
        user = await make_profile(balance=100.0, last_mining_at=clock.now() - timedelta(hours=50), recovery_streak=2)
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        result = await start_mining_session(db_session, user.id, clock.now())
        handler.assert_not_awaited()
        await commit_and_publish(db_session, bus)

        assert result.burned == 10.0
        profile = await db_session.get(Profile, user.id)
        assert profile.balance == 90.0
        assert profile.burned_amount == 10.0
        assert profile.total_burned == 10.0
        assert profile.recovery_streak == 0
        assert await _ledger(db_session, user.id) == [("burn", -10.0)]
        assert handler.await_args.args[0].type == BURN_APPLIED

    async def test_no_burn_inside_window(self, db_session, make_profile, clock):
        user = await make_profile(balance=100.0, last_mining_at=clock.now() - timedelta(hours=47))
        result = await start_mining_session(db_session, user.id, clock.now())
        assert result.burned == 0.0

    async def test_unknown_profile(self, db_session, clock):
        with pytest.raises(NotFoundError):
            await start_mining_session(db_session, 404, clock.now())


class TestClaimSession:
    async def test_claim_after_duration(self, db_session, make_profile, clock):
        user = await make_profile(balance=5.0)
        started = await start_mining_session(db_session, user.id, clock.now())
        await db_session.commit()

        clock.advance(hours=6)
        result = await claim_mining_session(db_session, user.id, started.session.id, clock.now())
        await db_session.commit()

        assert result.amount == 10.0
        assert result.session.is_claimed is True
        assert result.session.is_active is False
        profile = await db_session.get(Profile, user.id)
        assert profile.balance == 15.0
        assert profile.total_mined == 10.0
        assert profile.recovery_streak == 1
        assert await _ledger(db_session, user.id) == [("mining", 10.0)]

    async def test_claim_too_early(self, db_session, make_profile, clock):
        user = await make_profile()
        started = await start_mining_session(db_session, user.id, clock.now())
        clock.advance(hours=5, minutes=59)
        with pytest.raises(StateConflictError, match="not yet complete"):
            await claim_mining_session(db_session, user.id, started.session.id, clock.now())

    async def test_double_claim(self, db_session, make_profile, clock):
        user = await make_profile()
        started = await start_mining_session(db_session, user.id, clock.now())
        clock.advance(hours=6)
        await claim_mining_session(db_session, user.id, started.session.id, clock.now())
        await db_session.commit()
        with pytest.raises(StateConflictError, match="Already claimed"):
            await claim_mining_session(db_session, user.id, started.session.id, clock.now())

    async def test_other_users_session_not_found(self, db_session, make_profile, clock):
        owner = await make_profile()
        thief = await make_profile()
        started = await start_mining_session(db_session, owner.id, clock.now())
        clock.advance(hours=6)
        with pytest.raises(NotFoundError):
            await claim_mining_session(db_session, thief.id, started.session.id, clock.now())

    async def test_fourth_session_recovers_quarter(self, db_session, make_profile, clock):
        user = await make_profile(
            balance=90.0,
            burned_amount=10.0,
            total_burned=10.0,
            recovery_streak=3,
            last_mining_at=clock.now() - timedelta(hours=1),
        )
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        started = await start_mining_session(db_session, user.id, clock.now())
        clock.advance(hours=6)
        result = await claim_mining_session(db_session, user.id, started.session.id, clock.now())
        await commit_and_publish(db_session, bus)

        assert result.recovered == 2.5
        profile = await db_session.get(Profile, user.id)
        assert profile.balance == 102.5
        assert profile.burned_amount == 7.5
        assert profile.total_recovered == 2.5
        assert profile.recovery_streak == 0
        assert [c.args[0].type for c in handler.await_args_list] == [RECOVERY_MILESTONE]

        status = await get_burn_status(db_session, user.id, clock.now())
        assert status.sessions_until_next_recovery == 4
        assert status.recovery_amount == 7.5 * 0.25

    async def test_claim_records_group_activity(self, db_session, make_profile, clock):
        user = await make_profile()
        group = await create_group(db_session, user.id, "Solo", clock.now())
        started = await start_mining_session(db_session, user.id, clock.now())
        clock.advance(hours=6)
        result = await claim_mining_session(db_session, user.id, started.session.id, clock.now())
        await db_session.commit()

        assert result.groups_updated == 1
        rows = await get_group_daily_activity(db_session, group.id, utc_day(clock.now()))
        assert rows[0].mines_today == 1
