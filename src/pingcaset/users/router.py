"""User endpoints: profile, burn status, transaction history."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.burning.service import get_burn_status
from pingcaset.clock import Clock
from pingcaset.database import get_session
from pingcaset.dependencies import get_clock, get_current_user_id
from pingcaset.ledger import get_transactions
from pingcaset.users.schemas import (
    BurnStatusResponse,
    ProfileResponse,
    TransactionListResponse,
    TransactionResponse,
)
from pingcaset.users.service import get_profile

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=ProfileResponse)
async def get_me(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    profile = await get_profile(db, user_id)
    return ProfileResponse(
        id=str(profile.id),
        display_name=profile.display_name,
        balance=profile.balance,
        total_mined=profile.total_mined,
        level=profile.level,
        is_premium=profile.is_premium,
        last_mining_at=profile.last_mining_at,
    )


@router.get("/me/burn-status", response_model=BurnStatusResponse)
async def get_my_burn_status(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> BurnStatusResponse:
    """Inactivity risk and recovery progress at the current instant."""
    status = await get_burn_status(db, user_id, clock.now())
    return BurnStatusResponse(**asdict(status))


@router.get("/me/transactions", response_model=TransactionListResponse)
async def get_my_transactions(
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> TransactionListResponse:
    rows = await get_transactions(db, user_id, limit=limit)
    return TransactionListResponse(
        transactions=[
            TransactionResponse(
                id=str(tx.id),
                type=tx.type,
                amount=tx.amount,
                description=tx.description,
                metadata=tx.tx_metadata,
                created_at=tx.created_at,
            )
            for tx in rows
        ],
    )
