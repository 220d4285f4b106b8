"""Burn/recovery projection. Pure functions with no I/O.

Rules:
- At risk once more than 24h have passed since the last mining session
- A burn becomes due at 48h of inactivity (applied by the write path)
- Every 4 qualifying sessions recover 25% of the outstanding burned amount
- Users who never mined are never at risk
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from pingcaset.clock import hours_between
from pingcaset.errors import ValidationError

if TYPE_CHECKING:
    from pingcaset.db.models import Profile

AT_RISK_HOURS = 24
BURN_INACTIVITY_HOURS = 48
RECOVERY_SESSIONS = 4
RECOVERY_FRACTION = 0.25
BURN_FRACTION = 0.10


@dataclass(frozen=True)
class MiningActivity:
    """The slice of a profile the calculator reads."""

    burned_amount: float = 0.0
    recovery_streak: int = 0
    total_burned: float = 0.0
    total_recovered: float = 0.0
    last_mining_at: datetime | None = None

    @classmethod
    def from_profile(cls, profile: Profile) -> MiningActivity:
        return cls(
            burned_amount=profile.burned_amount or 0.0,
            recovery_streak=profile.recovery_streak or 0,
            total_burned=profile.total_burned or 0.0,
            total_recovered=profile.total_recovered or 0.0,
            last_mining_at=profile.last_mining_at,
        )


@dataclass(frozen=True)
class BurnStatus:
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


def hours_since_last_mining(last_mining_at: datetime | None, now: datetime) -> float:
    if last_mining_at is None:
        return 0.0
    # Clock skew can put last_mining_at slightly in the future.
    return max(0.0, hours_between(last_mining_at, now))


def compute_burn_status(activity: MiningActivity, now: datetime) -> BurnStatus:
    """Project the user's current burn/recovery state."""
    if activity.burned_amount < 0:
        raise ValidationError("burned_amount must be >= 0")
    if activity.recovery_streak < 0:
        raise ValidationError("recovery_streak must be >= 0")

    hours = hours_since_last_mining(activity.last_mining_at, now)
    streak_position = activity.recovery_streak % RECOVERY_SESSIONS

    recovery_amount = 0.0
    if activity.burned_amount > 0:
        # min() is a no-op while the fraction is <= 1
        recovery_amount = min(activity.burned_amount, activity.burned_amount * RECOVERY_FRACTION)

    return BurnStatus(
        burned_amount=activity.burned_amount,
        recovery_streak=activity.recovery_streak,
        total_burned=activity.total_burned,
        total_recovered=activity.total_recovered,
        hours_since_last_mining=hours,
        is_at_risk=hours > AT_RISK_HOURS,
        hours_until_burn=max(0.0, BURN_INACTIVITY_HOURS - hours),
        sessions_until_next_recovery=RECOVERY_SESSIONS - streak_position,
        recovery_amount=recovery_amount,
        recovery_progress=(streak_position / RECOVERY_SESSIONS) * 100,
    )


def floor_cents(amount: float) -> float:
    """Round down to 2 decimals, tolerating float noise (0.3 * 100 = 29.999...)."""
    return int(round(amount * 100, 6)) / 100


def burn_due(balance: float, last_mining_at: datetime | None, now: datetime) -> float:
    """Amount to burn now, or 0 if no burn is due."""
    if last_mining_at is None:
        return 0.0
    if hours_between(last_mining_at, now) < BURN_INACTIVITY_HOURS:
        return 0.0
    return max(0.0, floor_cents(balance * BURN_FRACTION))


@dataclass(frozen=True)
class RecoveryStep:
    new_streak: int
    recovered: float
    milestone: bool
    sessions_completed: int


def advance_recovery(burned_amount: float, recovery_streak: int) -> RecoveryStep:
    """Count one qualifying session toward recovery.

    The streak resets to 0 when a milestone fires. With nothing burned the
    streak just keeps counting.
    """
    if burned_amount < 0 or recovery_streak < 0:
        raise ValidationError("burn counters must be >= 0")

    sessions = recovery_streak + 1
    if burned_amount <= 0 or sessions % RECOVERY_SESSIONS != 0:
        return RecoveryStep(new_streak=sessions, recovered=0.0, milestone=False, sessions_completed=sessions)

    recovered = min(burned_amount, floor_cents(burned_amount * RECOVERY_FRACTION))
    return RecoveryStep(new_streak=0, recovered=recovered, milestone=True, sessions_completed=sessions)
