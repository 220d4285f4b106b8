"""Bonus task endpoints, plus a WebSocket stream of claimable rewards."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.bonus.schemas import (
    BonusTaskListResponse,
    BonusTaskResponse,
    ClaimBonusResponse,
    PendingBonusResponse,
    UnlockBonusRequest,
    UnlockBonusResponse,
)
from pingcaset.bonus.service import (
    claim_bonus_task,
    complete_bonus_task,
    count_pending_bonuses,
    generate_daily_bonus_task,
    get_bonus_tasks,
    list_active_bonus_tasks,
    state_of,
)
from pingcaset.bonus.subscriptions import subscribe_to_pending_bonuses
from pingcaset.clock import Clock
from pingcaset.config import Settings, get_settings
from pingcaset.database import get_session, get_session_factory
from pingcaset.db.models import BonusTask
from pingcaset.dependencies import get_clock, get_current_user_id, get_event_bus
from pingcaset.events import EventBus, commit_and_publish
from pingcaset.users.service import get_profile

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["Bonus Tasks"])


def _task_response(task: BonusTask, now: datetime) -> BonusTaskResponse:
    return BonusTaskResponse(
        id=str(task.id),
        task_type=task.task_type,
        title=task.title,
        description=task.description,
        reward=task.reward,
        state=state_of(task, now),
        expires_at=task.expires_at,
        created_at=task.created_at,
        completed_at=task.completed_at,
        claimed_at=task.claimed_at,
    )


@router.get("/bonus-tasks", response_model=BonusTaskListResponse)
async def list_bonus_tasks(
    include_inactive: bool = Query(False),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> BonusTaskListResponse:
    """Unexpired, unclaimed tasks by default; everything with include_inactive."""
    now = clock.now()
    if include_inactive:
        tasks = await get_bonus_tasks(db, user_id)
    else:
        tasks = await list_active_bonus_tasks(db, user_id, now)
    return BonusTaskListResponse(tasks=[_task_response(t, now) for t in tasks], total=len(tasks))


@router.get("/bonus-tasks/pending", response_model=PendingBonusResponse)
async def get_pending_bonuses(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
) -> PendingBonusResponse:
    count, total = await count_pending_bonuses(db, user_id, clock.now())
    return PendingBonusResponse(count=count, total=total)


@router.post("/bonus-tasks/unlock", response_model=UnlockBonusResponse)
async def unlock_bonus_task(
    body: UnlockBonusRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
    settings: Settings = Depends(get_settings),
) -> UnlockBonusResponse:
    """Unlock today's bonus task once the daily tasks are all done."""
    now = clock.now()
    await get_profile(db, user_id)
    task = await generate_daily_bonus_task(
        db, user_id, body.daily_tasks_done, now,
        ttl=timedelta(hours=settings.bonus_task_ttl_hours),
    )
    await commit_and_publish(db, bus)
    return UnlockBonusResponse(task=_task_response(task, now) if task else None)


@router.post("/bonus-tasks/{task_id}/complete", response_model=BonusTaskResponse)
async def complete_bonus_task_endpoint(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
) -> BonusTaskResponse:
    now = clock.now()
    task = await complete_bonus_task(db, user_id, task_id, now)
    await commit_and_publish(db, bus)
    return _task_response(task, now)


@router.post("/bonus-tasks/{task_id}/claim", response_model=ClaimBonusResponse)
async def claim_bonus_task_endpoint(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    bus: EventBus = Depends(get_event_bus),
) -> ClaimBonusResponse:
    """Collect a completed task's reward, once."""
    now = clock.now()
    task = await claim_bonus_task(db, user_id, task_id, now)
    await commit_and_publish(db, bus)
    profile = await get_profile(db, user_id)
    return ClaimBonusResponse(task=_task_response(task, now), balance=profile.balance)


def client_reply(raw: str) -> dict[str, str]:
    """Answer one client frame on the pending-bonus socket."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return {"type": "error", "message": "Invalid JSON"}
    if not isinstance(msg, dict):
        return {"type": "error", "message": "Expected a JSON object"}
    action = msg.get("action")
    if action == "ping":
        return {"type": "pong"}
    return {"type": "error", "message": f"Unknown action: {action}"}


@router.websocket("/ws/pending-bonuses")
async def pending_bonuses_ws(
    websocket: WebSocket,
    clock: Clock = Depends(get_clock),
) -> None:
    """Push {"type": "pending_bonuses", "count", "total"} whenever the claimable set changes.

    The caller is identified by the gateway-set X-User-Id header. The client
    may send {"action": "ping"}; the subscription is cancelled on disconnect.
    """
    raw_user_id = websocket.headers.get("x-user-id", "")
    if not raw_user_id.isdigit():
        await websocket.close(code=4001, reason="Missing X-User-Id header")
        return
    user_id = int(raw_user_id)

    await websocket.accept()
    updates: asyncio.Queue[tuple[int, int]] = asyncio.Queue()
    subscription = subscribe_to_pending_bonuses(
        get_session_factory(),
        user_id,
        lambda count, total: updates.put_nowait((count, total)),
        clock.now,
        interval_seconds=get_settings().pending_bonus_poll_interval_seconds,
    )

    async def _push() -> None:
        while True:
            count, total = await updates.get()
            await websocket.send_json({"type": "pending_bonuses", "count": count, "total": total})

    pusher = asyncio.create_task(_push())
    try:
        while True:
            raw = await websocket.receive_text()
            await websocket.send_json(client_reply(raw))
    except WebSocketDisconnect:
        logger.info("pending_bonus_ws_closed", user_id=user_id)
    finally:
        subscription.cancel()
        pusher.cancel()
        await subscription.wait_closed()
        try:
            await pusher
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
