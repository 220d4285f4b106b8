"""Profile reads and creation.

Profiles are owned by the auth/profile service; creation here exists for
bootstrap tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pingcaset.db.models import Profile
from pingcaset.errors import NotFoundError


async def find_profile(db: AsyncSession, user_id: int) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


async def get_profile(db: AsyncSession, user_id: int) -> Profile:
    """Get a profile, raising NotFoundError if it does not exist."""
    profile = await find_profile(db, user_id)
    if profile is None:
        raise NotFoundError(f"Profile {user_id} not found")
    return profile


async def create_profile(
    db: AsyncSession,
    display_name: str | None = None,
    balance: float = 0.0,
    created_at: datetime | None = None,
    is_premium: bool = False,
) -> Profile:
    profile = Profile(
        display_name=display_name,
        balance=balance,
        is_premium=is_premium,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(profile)
    await db.flush()
    return profile
