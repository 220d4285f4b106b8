"""Pydantic schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BurnStatusResponse(BaseModel):
    burned_amount: float
    recovery_streak: int
    total_burned: float
    total_recovered: float
    hours_since_last_mining: float
    is_at_risk: bool
    hours_until_burn: float
    sessions_until_next_recovery: int
    recovery_amount: float
    recovery_progress: float


class ProfileResponse(BaseModel):
    id: str
    display_name: str | None = None
    balance: float
    total_mined: float
    level: int
    is_premium: bool
    last_mining_at: datetime | None = None


class TransactionResponse(BaseModel):
    id: str
    type: str
    amount: float
    description: str | None = None
    metadata: dict | None = None  # type: ignore[type-arg]
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
