"""Pydantic schemas for mining endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class MiningSessionResponse(BaseModel):
    id: str
    started_at: datetime
    ends_at: datetime
    earned_amount: float
    is_active: bool
    is_claimed: bool
    claimed_at: datetime | None = None


class StartSessionResponse(BaseModel):
    session: MiningSessionResponse
    burned: float
    sessions_today: int


class ActiveSessionResponse(BaseModel):
    session: MiningSessionResponse | None = None


class ClaimSessionResponse(BaseModel):
    session: MiningSessionResponse
    amount: float
    recovered: float
    groups_updated: int
    balance: float
