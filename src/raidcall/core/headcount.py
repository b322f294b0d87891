"""Headcount lifecycle and headcount -> run conversion.

A headcount is open until it is closed or converted. Converting creates a
pending run and copies the headcount's live reactions onto it as
run-sourced rows. The headcount-sourced originals stay where they are, so
the interest signal gathered before the run remains queryable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.core.errors import InvalidTransitionError, NotFoundError
from raidcall.core.ledger import copy_live_rows
from raidcall.db.helpers import db_session
from raidcall.models.run import Headcount, HeadcountStatus, ReactionSource, Run

logger = logging.getLogger(__name__)


class HeadcountService:
    def __init__(self, engine: AsyncEngine, now: Callable[[], datetime] | None = None) -> None:
        self.engine = engine
        self.now = now or (lambda: datetime.now(UTC))

    async def create_headcount(
        self,
        guild_id: str,
        organizer_id: str,
        dungeon_keys: list[str],
        *,
        channel_id: str | None = None,
        post_message_id: str | None = None,
    ) -> Headcount:
        async with db_session(self.engine) as repo:
            row = await repo.create_headcount(
                guild_id, organizer_id, dungeon_keys, channel_id, post_message_id
            )
            headcount = Headcount.model_validate(row)
        logger.info(
            "headcount_created headcount=%s guild=%s organizer=%s dungeons=%d",
            headcount.id,
            guild_id,
            organizer_id,
            len(dungeon_keys),
        )
        return headcount

    async def get_headcount(self, headcount_id: str) -> Headcount:
        async with db_session(self.engine) as repo:
            row = await repo.get_headcount(headcount_id)
            if row is None:
                raise NotFoundError("Headcount", headcount_id)
            return Headcount.model_validate(row)

    async def get_open_headcount(self, guild_id: str, organizer_id: str) -> Headcount | None:
        async with db_session(self.engine) as repo:
            row = await repo.get_open_headcount(guild_id, organizer_id)
            return Headcount.model_validate(row) if row is not None else None

    async def attach_message(
        self, headcount_id: str, channel_id: str, post_message_id: str
    ) -> Headcount:
        """Record where the public headcount panel was posted."""
        async with db_session(self.engine) as repo:
            row = await repo.update_headcount(
                headcount_id, channel_id=channel_id, post_message_id=post_message_id
            )
            if row is None:
                raise NotFoundError("Headcount", headcount_id)
            return Headcount.model_validate(row)

    async def _finish(self, headcount_id: str, status: HeadcountStatus) -> Headcount:
        """Move an open headcount to *status*. Exactly one concurrent caller wins."""
        async with db_session(self.engine) as repo:
            claimed = await repo.transition_headcount(
                headcount_id,
                HeadcountStatus.OPEN.value,
                status=status.value,
                closed_at=self.now(),
            )
            row = await repo.get_headcount(headcount_id)
            if row is None:
                raise NotFoundError("Headcount", headcount_id)
            if not claimed:
                raise InvalidTransitionError(row.status, status.value, "headcount is not open")
            return Headcount.model_validate(row)

    async def _reopen(self, headcount_id: str) -> None:
        async with db_session(self.engine) as repo:
            await repo.transition_headcount(
                headcount_id, HeadcountStatus.CONVERTED.value, status="open", closed_at=None
            )

    async def close_headcount(self, headcount_id: str) -> Headcount:
        headcount = await self._finish(headcount_id, HeadcountStatus.CLOSED)
        logger.info("headcount_closed headcount=%s", headcount_id)
        return headcount

    async def convert_to_run(
        self,
        headcount_id: str,
        dungeon_key: str,
        dungeon_label: str,
        *,
        role_id: str | None = None,
        party: str | None = None,
        location: str | None = None,
        description: str | None = None,
        auto_end_minutes: int | None = None,
    ) -> Run:
        """Turn an open headcount into a pending run carrying its reactions.

        The headcount is claimed first, so a second conversion racing this one
        fails before it creates anything. Run creation, the reaction copy and
        the back-link share one transaction; if that fails the claim is
        released and the headcount is open again.
        """
        headcount = await self._finish(headcount_id, HeadcountStatus.CONVERTED)
        try:
            async with db_session(self.engine) as repo:
                row = await repo.create_run(
                    headcount.guild_id,
                    headcount.organizer_id,
                    dungeon_key,
                    dungeon_label,
                    channel_id=headcount.channel_id,
                    role_id=role_id,
                    party=party,
                    location=location,
                    description=description,
                    auto_end_minutes=auto_end_minutes,
                    headcount_id=headcount_id,
                )
                run = Run.model_validate(row)
                copied = await copy_live_rows(
                    repo, headcount_id, ReactionSource.HEADCOUNT, run.id, ReactionSource.RUN
                )
                await repo.update_headcount(headcount_id, converted_run_id=run.id)
        except Exception:  # Re-raise pattern: release the claim on any failure
            logger.warning("headcount_convert_failed headcount=%s", headcount_id)
            await self._reopen(headcount_id)
            raise
        logger.info(
            "headcount_converted headcount=%s run=%s reactions=%d", headcount_id, run.id, copied
        )
        return run
