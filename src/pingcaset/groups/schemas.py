"""Pydantic schemas for security group endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)


class JoinGroupRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=16)


class GroupMemberResponse(BaseModel):
    user_id: str
    display_name: str | None = None
    joined_at: datetime


class GroupSummaryResponse(BaseModel):
    active_members: int
    total_mines: int
    group_reward: int
    my_reward: int
    my_mines: int
    eligible: bool


class GroupResponse(BaseModel):
    id: str
    name: str
    code: str
    created_by: str
    member_count: int
    members: list[GroupMemberResponse] = []
    today: GroupSummaryResponse
    claimed_today: bool = False


class GroupListResponse(BaseModel):
    groups: list[GroupResponse]
    total: int


class GroupClaimResponse(BaseModel):
    group_id: str
    claim_date: date
    amount: float
    balance: float
