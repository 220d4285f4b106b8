"""Domain events and the in-process event bus.

The core only *emits* events. Translating them into push notifications,
in-app alerts or WebSocket frames belongs to whoever subscribes.

Services stage events on the database session; they reach the bus only
once that session commits, and a rollback drops them.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from pingcaset.redis_client import publish_user_event

logger = logging.getLogger(__name__)

BURN_APPLIED = "burn_applied"
RECOVERY_MILESTONE = "recovery_milestone"
BONUS_TASK_UNLOCKED = "bonus_task_unlocked"
BONUS_TASK_COMPLETED = "bonus_task_completed"
BONUS_TASK_CLAIMED = "bonus_task_claimed"
GROUP_REWARD_CLAIMED = "group_reward_claimed"

EVENT_TYPES = {
    BURN_APPLIED,
    RECOVERY_MILESTONE,
    BONUS_TASK_UNLOCKED,
    BONUS_TASK_COMPLETED,
    BONUS_TASK_CLAIMED,
    GROUP_REWARD_CLAIMED,
}


@dataclass(frozen=True)
class DomainEvent:
    type: str
    user_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return json.dumps(data, default=str)


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """Fan-out of domain events to async handlers.

    A failing handler is logged and skipped; it never fails the operation
    that emitted the event.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler. Returns an unsubscribe callable that is safe to call twice."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def emit(self, event: DomainEvent) -> None:
        if event.type not in EVENT_TYPES:
            logger.warning("Emitting unknown event type %s", event.type)
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception("Event handler failed for %s (user=%d)", event.type, event.user_id)


STAGED_EVENTS_KEY = "pcs_staged_events"


def stage_event(db: AsyncSession, event: DomainEvent) -> None:
    """Hold an event on the session until its transaction commits."""
    db.info.setdefault(STAGED_EVENTS_KEY, []).append(event)


def staged_events(db: AsyncSession) -> list[DomainEvent]:
    return list(db.info.get(STAGED_EVENTS_KEY, []))


@sa_event.listens_for(Session, "after_rollback")
def _drop_staged_events(session: Session) -> None:
    session.info.pop(STAGED_EVENTS_KEY, None)


async def commit_and_publish(db: AsyncSession, bus: EventBus | None) -> list[DomainEvent]:
    """Commit, then hand the staged events to the bus. Returns what was emitted."""
    await db.commit()
    events = db.info.pop(STAGED_EVENTS_KEY, [])
    if bus is not None:
        for event in events:
            await bus.emit(event)
    return events


def redis_event_publisher(redis: Any) -> EventHandler:
    """Build a handler that publishes events on the user's Redis channel."""

    async def _publish(event: DomainEvent) -> None:
        await publish_user_event(redis, event.user_id, event.to_json())

    return _publish
