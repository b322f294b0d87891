"""Run state machine: status transitions and timing fields.

Run lifecycle:
    PENDING -> LIVE -> STARTED -> ENDED
    CANCELLED is reachable from any non-terminal status.
    ENDED and CANCELLED are terminal.

Deadlines (auto-end, key window) are stored as timestamps. Nothing here
schedules callbacks or touches Discord: the auto-end tick reads
``due_for_auto_end`` and calls ``set_status(..., auto_end=True)``, and panel
cleanup on termination belongs to the refresh orchestrator.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.config import Settings
from raidcall.core.errors import InvalidTransitionError, NotFoundError
from raidcall.db.helpers import db_session
from raidcall.models.run import TERMINAL_STATUSES, Run, RunStatus

logger = logging.getLogger(__name__)


# Allowed status transitions. Key = current status, value = set of valid next statuses.
ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.LIVE, RunStatus.CANCELLED},
    RunStatus.LIVE: {RunStatus.STARTED, RunStatus.CANCELLED},
    RunStatus.STARTED: {RunStatus.ENDED, RunStatus.CANCELLED},
    RunStatus.ENDED: set(),  # terminal
    RunStatus.CANCELLED: set(),  # terminal
}

NON_TERMINAL_STATUSES: list[str] = [
    s.value for s in RunStatus if s not in TERMINAL_STATUSES
]


def check_transition(current: RunStatus, target: RunStatus, *, auto_end: bool = False) -> None:
    """Raise InvalidTransitionError unless *current* -> *target* is allowed.

    ``auto_end`` lets the deadline tick end any non-terminal run, including
    one that went live but never started.
    """
    if auto_end and target == RunStatus.ENDED and current not in TERMINAL_STATUSES:
        return
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        detail = "run is already closed" if current in TERMINAL_STATUSES else ""
        raise InvalidTransitionError(current.value, target.value, detail)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass(frozen=True)
class StatusChange:
    run: Run
    changed: bool


class RunStateMachine:
    """Owns run status and timing fields. Holds no in-process state."""

    def __init__(
        self,
        engine: AsyncEngine,
        settings: Settings,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.now = now

    async def create_run(
        self,
        guild_id: str,
        organizer_id: str,
        dungeon_key: str,
        dungeon_label: str,
        *,
        channel_id: str | None = None,
        role_id: str | None = None,
        party: str | None = None,
        location: str | None = None,
        description: str | None = None,
        auto_end_minutes: int | None = None,
        headcount_id: str | None = None,
    ) -> Run:
        """Create a run in PENDING."""
        async with db_session(self.engine) as repo:
            row = await repo.create_run(
                guild_id,
                organizer_id,
                dungeon_key,
                dungeon_label,
                channel_id=channel_id,
                role_id=role_id,
                party=party,
                location=location,
                description=description,
                auto_end_minutes=auto_end_minutes,
                headcount_id=headcount_id,
            )
            run = Run.model_validate(row)
        logger.info(
            "run_created run=%s guild=%s organizer=%s dungeon=%s",
            run.id,
            guild_id,
            organizer_id,
            dungeon_key,
        )
        return run

    async def get_run(self, run_id: str) -> Run:
        async with db_session(self.engine) as repo:
            row = await repo.get_run(run_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            return Run.model_validate(row)

    async def get_active_run(self, guild_id: str, organizer_id: str) -> Run | None:
        """The organizer's newest run that has not ended or been cancelled."""
        async with db_session(self.engine) as repo:
            row = await repo.get_active_run(guild_id, organizer_id, NON_TERMINAL_STATUSES)
            return Run.model_validate(row) if row is not None else None

    async def transition(
        self,
        run_id: str,
        target: RunStatus | str,
        *,
        channel_id: str | None = None,
        message_id: str | None = None,
        auto_end_minutes: int | None = None,
        key_window_seconds: int | None = None,
        auto_end: bool = False,
    ) -> StatusChange:
        """Validate and apply a status transition.

        The write is conditional on the status that was read, so of two
        callers racing to the same terminal status exactly one reports
        ``changed``.

        Args:
            run_id: The run to transition.
            target: The requested status.
            channel_id: Channel of the public panel (PENDING -> LIVE).
            message_id: Public panel message id (PENDING -> LIVE).
            auto_end_minutes: Override for the auto-end deadline on going live.
            key_window_seconds: Open a key window on starting. 0 uses the
                configured default; None leaves the key window closed.
            auto_end: Set by the deadline tick; allows any non-terminal -> ENDED.

        Returns:
            The run after the request, and whether its status changed.

        Raises:
            NotFoundError: The run does not exist.
            InvalidTransitionError: The transition is not allowed.
        """
        target = RunStatus(target)
        now = self.now()
        async with db_session(self.engine) as repo:
            row = await repo.get_run(run_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            current = RunStatus(row.status)

            # Re-applying a terminal status (the tick racing an organizer) is a no-op.
            if current == target and current in TERMINAL_STATUSES:
                return StatusChange(Run.model_validate(row), changed=False)

            check_transition(current, target, auto_end=auto_end)

            updates: dict[str, object] = {"status": target.value}
            if target == RunStatus.LIVE:
                channel = channel_id or row.channel_id
                message = message_id or row.post_message_id
                if not channel or not message:
                    raise InvalidTransitionError(
                        current.value, target.value, "a live run needs a channel and panel message"
                    )
                minutes = self.settings.auto_end_minutes(auto_end_minutes or row.auto_end_minutes)
                updates.update(
                    channel_id=channel,
                    post_message_id=message,
                    auto_end_minutes=minutes,
                    auto_end_at=now + timedelta(minutes=minutes),
                )
            elif target == RunStatus.STARTED:
                updates["started_at"] = now
                if key_window_seconds is not None:
                    seconds = self.settings.key_window_seconds(key_window_seconds)
                    updates["key_window_ends_at"] = now + timedelta(seconds=seconds)
            elif target in TERMINAL_STATUSES:
                updates["ended_at"] = row.ended_at or now
                updates["key_window_ends_at"] = None

            applied = await repo.transition_run(run_id, current.value, **updates)
            await repo.session.refresh(row)
            run = Run.model_validate(row)

        if not applied:
            if run.status == target and target in TERMINAL_STATUSES:
                return StatusChange(run, changed=False)
            raise InvalidTransitionError(
                run.status.value, target.value, "the run changed while this was applied"
            )

        logger.info(
            "run_status_changed run=%s from=%s to=%s auto_end=%s",
            run_id,
            current.value,
            target.value,
            auto_end,
        )
        return StatusChange(run, changed=True)

    async def set_status(self, run_id: str, target: RunStatus | str, **kwargs: Any) -> Run:
        """Apply a status transition and return the run. See ``transition``."""
        return (await self.transition(run_id, target, **kwargs)).run

    async def open_key_window(self, run_id: str, seconds: int | None = None) -> Run:
        """Record a key pop: bump the pop count and (re)open the key window.

        Only a STARTED run can pop keys.
        """
        now = self.now()
        async with db_session(self.engine) as repo:
            row = await repo.get_run(run_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            if row.status != RunStatus.STARTED:
                raise InvalidTransitionError(
                    row.status, row.status, "keys can only be popped during a started run"
                )
            window = self.settings.key_window_seconds(seconds)
            row = await repo.update_run(
                run_id,
                key_pop_count=row.key_pop_count + 1,
                key_window_ends_at=now + timedelta(seconds=window),
            )
            run = Run.model_validate(row)
        logger.info(
            "run_key_popped run=%s pop=%d window_s=%d", run_id, run.key_pop_count, window
        )
        return run

    def is_key_window_open(self, run: Run) -> bool:
        """Whether a run-sourced key pop would be accepted right now."""
        if run.status != RunStatus.STARTED or run.key_window_ends_at is None:
            return False
        return self.now() < run.key_window_ends_at

    async def set_ping_message(self, run_id: str, message_id: str | None) -> Run:
        async with db_session(self.engine) as repo:
            row = await repo.update_run(run_id, ping_message_id=message_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            return Run.model_validate(row)

    async def update_details(
        self,
        run_id: str,
        *,
        party: str | None = None,
        location: str | None = None,
    ) -> Run:
        """Update party/location annotations. Blank strings clear a field."""
        updates: dict[str, object] = {}
        if party is not None:
            updates["party"] = party.strip() or None
        if location is not None:
            updates["location"] = location.strip() or None
        async with db_session(self.engine) as repo:
            row = await repo.get_run(run_id)
            if row is None:
                raise NotFoundError("Run", run_id)
            if row.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(row.status, row.status, "run is already closed")
            row = await repo.update_run(run_id, **updates)
            return Run.model_validate(row)

    async def due_for_auto_end(self) -> list[Run]:
        """Non-terminal runs whose auto-end deadline has elapsed."""
        # Stored datetimes are naive UTC; compare like with like.
        cutoff = self.now().astimezone(UTC).replace(tzinfo=None)
        async with db_session(self.engine) as repo:
            rows = await repo.get_runs_due_for_auto_end(cutoff, NON_TERMINAL_STATUSES)
            return [Run.model_validate(row) for row in rows]
