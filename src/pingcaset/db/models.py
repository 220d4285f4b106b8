"""ORM models for profiles, groups, mining sessions, bonus tasks and the ledger."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pingcaset.db.base import Base, PKBigInt


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """Per-user balances, mining totals and burn/recovery counters."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    balance: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    total_mined: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, default=1, server_default="1")
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0")

    # --- Burn / recovery ---
    burned_amount: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    recovery_streak: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    total_burned: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    total_recovered: Mapped[float] = mapped_column(Float, default=0.0, server_default="0")
    last_mining_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Security groups ---
    # Guarded counters: written only by conditional UPDATEs in groups.service.
    group_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    last_group_claim_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Mining sessions + ledger
# ---------------------------------------------------------------------------


class MiningSession(Base):
    __tablename__ = "mining_sessions"
    __table_args__ = (
        Index("ix_mining_sessions_user_started", "user_id", "started_at"),
        # At most one running session per user.
        Index(
            "uq_mining_sessions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    earned_amount: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_claimed: Mapped[bool] = mapped_column(Boolean, default=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Transaction(Base):
    """Append-only ledger of balance movements."""

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tx_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Security groups
# ---------------------------------------------------------------------------


class SecurityGroup(Base):
    __tablename__ = "security_groups"

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    members: Mapped[list[GroupMember]] = relationship("GroupMember", back_populates="group")


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("security_groups.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    group: Mapped[SecurityGroup] = relationship("SecurityGroup", back_populates="members")


class GroupDailyActivity(Base):
    __tablename__ = "group_daily_activity"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", "activity_date", name="uq_group_activity_group_user_date"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("security_groups.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    mines_today: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0")


class GroupClaim(Base):
    """Immutable record that (group, user, date) has been paid."""

    __tablename__ = "group_claims"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", "claim_date", name="uq_group_claims_group_user_date"),
    )

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("security_groups.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Bonus tasks
# ---------------------------------------------------------------------------


class BonusTask(Base):
    __tablename__ = "bonus_tasks"
    __table_args__ = (Index("ix_bonus_tasks_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(PKBigInt, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("profiles.id"), nullable=False)
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    reward: Mapped[int] = mapped_column(Integer, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0")
    is_claimed: Mapped[bool] = mapped_column(Boolean, default=False, server_default="0")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
