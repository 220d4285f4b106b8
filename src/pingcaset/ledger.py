"""Transaction ledger: one row per balance movement."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.db.models import Transaction

TX_MINING = "mining"
TX_BURN = "burn"
TX_RECOVERY = "recovery"
TX_GROUP_REWARD = "group_reward"
TX_BONUS_TASK = "bonus_task"


def record_transaction(
    db: AsyncSession,
    user_id: int,
    tx_type: str,
    amount: float,
    description: str,
    now: datetime,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    """Stage a ledger row on the session; the caller owns the commit."""
    tx = Transaction(
        user_id=user_id,
        type=tx_type,
        amount=amount,
        description=description,
        tx_metadata=metadata,
        created_at=now,
    )
    db.add(tx)
    return tx


async def get_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> list[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
