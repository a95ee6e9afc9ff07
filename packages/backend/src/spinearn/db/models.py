"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic auto-generates migrations by comparing
these models to the actual DB.

Key concepts:
- UUID primary keys for users and messages (ids come from the auth provider)
- JSONB for the event log payloads
- server_default for DB-level defaults (work even for raw SQL inserts,
  which matters because admins also edit admin_messages directly)
"""

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


MESSAGE_TYPES = ("info", "success", "warning", "error")
WITHDRAWAL_STATUSES = ("pending", "completed", "rejected")


# ══════════════════════════════════════════════════════════════
# Users
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A player profile.

    Learn: The row id matches the auth provider's user id (the JWT "sub"),
    so no password or session data lives here. Coins are the virtual
    currency earned through spins and games.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_coins", "coins"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="user"
    )  # "user" or "admin"
    coins: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Admin messages
# ══════════════════════════════════════════════════════════════


class AdminMessage(Base):
    """A message from an admin to one user.

    Learn: A broadcast fans out into one row per recipient so each user
    has an independent read flag. The recipient's name and email are
    copied at send time. The unread badge counts rows with read = false.
    """

    __tablename__ = "admin_messages"
    __table_args__ = (
        Index("idx_admin_messages_unread", "user_id", "read"),
        Index("idx_admin_messages_sent", "user_id", "sent_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    admin_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    user_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="info"
    )
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Leaderboard
# ══════════════════════════════════════════════════════════════


class DailyLeaderboard(Base):
    """One ranked row of a day's leaderboard snapshot."""

    __tablename__ = "daily_leaderboard"
    __table_args__ = (
        UniqueConstraint(
            "leaderboard_date", "user_id", name="uq_daily_leaderboard_user"
        ),
        Index("idx_daily_leaderboard_date", "leaderboard_date", "rank"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    leaderboard_date: Mapped[date] = mapped_column(Date, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    coins: Mapped[int] = mapped_column(Integer, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Withdrawals
# ══════════════════════════════════════════════════════════════


class Withdrawal(Base):
    """A player's request to cash out coins to an eSewa wallet.

    Learn: Players create rows with status "pending"; an admin moves each
    one to "completed" or "rejected" exactly once. processed_by and
    processed_at record who decided and when.
    """

    __tablename__ = "withdrawals"
    __table_args__ = (
        Index("idx_withdrawals_status", "status", "requested_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=new_uuid
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    coin_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    esewa_number: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# ══════════════════════════════════════════════════════════════
# Event log
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log.

    Learn: Every admin action (broadcast, read receipts, snapshots) is
    recorded as an append-only event for auditing.

    stream_id examples: "user:<uuid>", "leaderboard:2026-10-19"
    type examples: "message.broadcast", "message.read"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
        Index("idx_events_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSONB, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, server_default="{}"
    )  # actor_id, request_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
