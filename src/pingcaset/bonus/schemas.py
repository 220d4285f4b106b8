"""Pydantic schemas for bonus task endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from pingcaset.bonus.tasks import BonusTaskState


class BonusTaskResponse(BaseModel):
    id: str
    task_type: str
    title: str
    description: str | None = None
    reward: int
    state: BonusTaskState
    expires_at: datetime
    created_at: datetime
    completed_at: datetime | None = None
    claimed_at: datetime | None = None


class BonusTaskListResponse(BaseModel):
    tasks: list[BonusTaskResponse]
    total: int


class UnlockBonusRequest(BaseModel):
    daily_tasks_done: bool


class UnlockBonusResponse(BaseModel):
    task: BonusTaskResponse | None = None


class ClaimBonusResponse(BaseModel):
    task: BonusTaskResponse
    balance: float


class PendingBonusResponse(BaseModel):
    count: int
    total: int
