"""Run, headcount, and reaction models.

A reaction's source tells the headcount phase apart from the live run phase;
the two are independent lifecycles for the same user.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunStatus(StrEnum):
    """Run lifecycle statuses.

    The str mixin allows direct comparison with raw status strings stored
    in the database (e.g., ``row.status == RunStatus.LIVE``).
    """

    PENDING = "pending"
    LIVE = "live"
    STARTED = "started"
    ENDED = "ended"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[RunStatus] = frozenset({RunStatus.ENDED, RunStatus.CANCELLED})


class HeadcountStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    CONVERTED = "converted"


class ReactionSource(StrEnum):
    """Which phase a reaction was recorded in."""

    HEADCOUNT = "headcount"
    RUN = "run"


JOIN = "join"
LEAVE = "leave"

# Reaction types carrying join/leave state. Every other type is a key type
# carrying a count.
PARTICIPATION_TYPES: frozenset[str] = frozenset({JOIN})


def is_participation_type(reaction_type: str) -> bool:
    return reaction_type in PARTICIPATION_TYPES


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Run(BaseModel):
    """One organized, time-bounded group session."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    guild_id: str
    organizer_id: str
    dungeon_key: str
    dungeon_label: str
    status: RunStatus = RunStatus.PENDING
    role_id: str | None = None
    channel_id: str | None = None
    post_message_id: str | None = None
    ping_message_id: str | None = None
    party: str | None = None
    location: str | None = None
    description: str | None = None
    auto_end_minutes: int | None = None
    auto_end_at: datetime | None = None
    key_window_ends_at: datetime | None = None
    key_pop_count: int = 0
    headcount_id: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @field_validator("auto_end_at", "key_window_ends_at", "created_at", "started_at", "ended_at")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def panel_url(self) -> str | None:
        """Deep link to the public panel, or None before the run is posted."""
        if not self.channel_id or not self.post_message_id:
            return None
        return (
            f"https://discord.com/channels/{self.guild_id}/"
            f"{self.channel_id}/{self.post_message_id}"
        )


class Headcount(BaseModel):
    """A lightweight pre-run interest check."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    guild_id: str
    organizer_id: str
    channel_id: str | None = None
    post_message_id: str | None = None
    dungeon_keys: list[str] = Field(default_factory=list)
    status: HeadcountStatus = HeadcountStatus.OPEN
    converted_run_id: str | None = None
    created_at: datetime | None = None
    closed_at: datetime | None = None

    @field_validator("created_at", "closed_at")
    @classmethod
    def normalize_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def panel_url(self) -> str | None:
        if not self.channel_id or not self.post_message_id:
            return None
        return (
            f"https://discord.com/channels/{self.guild_id}/"
            f"{self.channel_id}/{self.post_message_id}"
        )


class RunView(BaseModel):
    """Aggregate view rendered onto every panel for a run or headcount."""

    target_id: str
    source: ReactionSource
    join_count: int = 0
    class_counts: dict[str, int] = Field(default_factory=dict)
    key_counts: dict[str, int] = Field(default_factory=dict)
    headcount_key_counts: dict[str, int] = Field(default_factory=dict)
    key_holders: dict[str, list[str]] = Field(default_factory=dict)


class ReactionOutcome(BaseModel):
    """Result of a participant action handed back to button handlers."""

    changed: bool
    count: int
    view: RunView
