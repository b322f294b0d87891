"""SQLAlchemy ORM models for the raidcall database.

Tables: runs, headcounts, reactions. Rows are updated in place and never
hard-deleted; terminal runs and closed headcounts stay queryable.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class RunRow(Base):
    __tablename__ = "runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    guild_id: Mapped[str] = mapped_column(String(32), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(32), nullable=False)
    dungeon_key: Mapped[str] = mapped_column(String(50), nullable=False)
    dungeon_label: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    role_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    post_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ping_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    party: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_end_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    auto_end_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    key_window_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    key_pop_count: Mapped[int] = mapped_column(Integer, default=0)
    headcount_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_runs_status_auto_end", "status", "auto_end_at"),
        Index("ix_runs_post_message_id", "post_message_id"),
    )


class HeadcountRow(Base):
    __tablename__ = "headcounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    guild_id: Mapped[str] = mapped_column(String(32), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(32), nullable=False)
    channel_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    post_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dungeon_keys: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="open")
    converted_run_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (Index("ix_headcounts_organizer", "guild_id", "organizer_id", "status"),)


class ReactionRow(Base):
    """One participant's standing toward a run or headcount.

    ``target_id`` is a run id or a headcount id. Participation types carry
    ``state`` (join/leave); key types carry ``count``.
    """

    __tablename__ = "reactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(32), nullable=False)
    reaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="run")
    state: Mapped[str | None] = mapped_column(String(10), nullable=True)
    count: Mapped[int] = mapped_column(Integer, default=0)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint(
            "target_id", "user_id", "reaction_type", "source", name="uq_reaction_key"
        ),
        Index("ix_reactions_target_source", "target_id", "source"),
    )
