"""Reaction ledger: per-run and per-headcount participation and key bookkeeping.

Each (target, user, type, source) key holds at most one row, enforced by the
store's unique constraint rather than an in-process lock. A user can hold a
headcount-sourced and a run-sourced row of the same type at once; the two
never interact.

The ledger persists and counts. It never refreshes UI; callers do that with
the returned counts or a fresh ``aggregate``.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.core.errors import ConflictError
from raidcall.db.helpers import db_session
from raidcall.db.repository import Repository
from raidcall.models.run import JOIN, LEAVE, ReactionSource, is_participation_type

logger = logging.getLogger(__name__)

ReactionState = str | int


def _validate(reaction_type: str, new_state: ReactionState) -> None:
    if is_participation_type(reaction_type):
        if new_state not in (JOIN, LEAVE):
            msg = f"{reaction_type!r} takes 'join' or 'leave', got {new_state!r}"
            raise ValueError(msg)
    elif isinstance(new_state, bool) or not isinstance(new_state, int):
        msg = f"Key type {reaction_type!r} takes an integer delta, got {new_state!r}"
        raise ValueError(msg)


class ReactionLedger:
    """Async reaction store over the persistent repository."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def upsert_reaction(
        self,
        target_id: str,
        user_id: str,
        reaction_type: str,
        source: ReactionSource | str,
        new_state: ReactionState,
        *,
        category: str | None = None,
    ) -> int:
        """Record a reaction and return the updated count for its type within *source*.

        Participation types take ``"join"``/``"leave"``; key types take an int
        delta and never drop below zero. A leave with no prior row writes
        nothing. A unique-constraint race is retried once, then raised as
        ConflictError.
        """
        _validate(reaction_type, new_state)
        source = ReactionSource(source)
        try:
            return await self._upsert_once(
                target_id, user_id, reaction_type, source, new_state, category
            )
        except IntegrityError:
            logger.info(
                "reaction_upsert_conflict_retry target=%s user=%s type=%s source=%s",
                target_id,
                user_id,
                reaction_type,
                source,
            )
        try:
            return await self._upsert_once(
                target_id, user_id, reaction_type, source, new_state, category
            )
        except IntegrityError as exc:
            logger.warning(
                "reaction_upsert_conflict target=%s user=%s type=%s source=%s",
                target_id,
                user_id,
                reaction_type,
                source,
            )
            msg = "Another update to this reaction landed at the same time, try again."
            raise ConflictError(msg) from exc

    async def _upsert_once(
        self,
        target_id: str,
        user_id: str,
        reaction_type: str,
        source: ReactionSource,
        new_state: ReactionState,
        category: str | None,
    ) -> int:
        async with db_session(self.engine) as repo:
            row = await repo.get_reaction(target_id, user_id, reaction_type, source)

            if is_participation_type(reaction_type):
                if row is None:
                    if new_state == LEAVE:
                        return await repo.count_joined(target_id, source, reaction_type)
                    await repo.insert_reaction(
                        target_id, user_id, reaction_type, source, state=JOIN, category=category
                    )
                else:
                    row.state = str(new_state)
                    if category is not None:
                        row.category = category
                    await repo.session.flush()
                return await repo.count_joined(target_id, source, reaction_type)

            delta = int(new_state)
            if row is None:
                if delta > 0:
                    await repo.insert_reaction(
                        target_id, user_id, reaction_type, source, count=delta
                    )
            else:
                row.count = max(0, row.count + delta)
                await repo.session.flush()
            return await repo.count_holding(target_id, source, reaction_type)

    async def get_reaction_state(
        self,
        target_id: str,
        user_id: str,
        reaction_type: str,
        source: ReactionSource | str,
    ) -> ReactionState | None:
        """Current state (``"join"``/``"leave"``) or key count; None if never reacted."""
        async with db_session(self.engine) as repo:
            row = await repo.get_reaction(target_id, user_id, reaction_type, ReactionSource(source))
        if row is None:
            return None
        if is_participation_type(reaction_type):
            return row.state
        return row.count

    async def aggregate(self, target_id: str, source: ReactionSource | str) -> dict[str, int]:
        """Live counts per reaction type: joins for participation, holders for keys."""
        async with db_session(self.engine) as repo:
            counts = await repo.get_reaction_counts(target_id, ReactionSource(source))
        totals: dict[str, int] = {}
        for reaction_type, (joined, holding) in counts.items():
            value = joined if is_participation_type(reaction_type) else holding
            if value > 0:
                totals[reaction_type] = value
        return totals

    async def category_counts(
        self,
        target_id: str,
        source: ReactionSource | str,
        reaction_type: str = JOIN,
    ) -> dict[str, int]:
        """Per-category breakdown of live joins (e.g. class distribution)."""
        async with db_session(self.engine) as repo:
            return await repo.get_category_counts(target_id, ReactionSource(source), reaction_type)

    async def participants(self, target_id: str, source: ReactionSource | str) -> list[str]:
        """User ids currently joined, oldest first."""
        async with db_session(self.engine) as repo:
            rows = await repo.get_reactions(target_id, ReactionSource(source))
        return [row.user_id for row in rows if row.reaction_type == JOIN and row.state == JOIN]

    async def key_holders(
        self, target_id: str, source: ReactionSource | str
    ) -> dict[str, list[str]]:
        """User ids holding each key type, for the organizer panel."""
        async with db_session(self.engine) as repo:
            rows = await repo.get_reactions(target_id, ReactionSource(source))
        holders: dict[str, list[str]] = defaultdict(list)
        for row in rows:
            if not is_participation_type(row.reaction_type) and row.count > 0:
                holders[row.reaction_type].append(row.user_id)
        return dict(holders)

    async def copy_reactions(
        self,
        from_id: str,
        from_source: ReactionSource | str,
        to_id: str,
        to_source: ReactionSource | str,
    ) -> int:
        """Re-import live reactions under a new target and source.

        Originals are left untouched. Rows already present at the destination
        are kept as-is. Returns the number of rows copied.
        """
        from_source = ReactionSource(from_source)
        to_source = ReactionSource(to_source)
        async with db_session(self.engine) as repo:
            copied = await copy_live_rows(repo, from_id, from_source, to_id, to_source)
        logger.info(
            "reactions_copied from=%s/%s to=%s/%s count=%d",
            from_id,
            from_source,
            to_id,
            to_source,
            copied,
        )
        return copied


async def copy_live_rows(
    repo: Repository,
    from_id: str,
    from_source: ReactionSource,
    to_id: str,
    to_source: ReactionSource,
) -> int:
    copied = 0
    for row in await repo.get_reactions(from_id, from_source):
        live = row.state == JOIN if is_participation_type(row.reaction_type) else row.count > 0
        if not live:
            continue
        existing = await repo.get_reaction(to_id, row.user_id, row.reaction_type, to_source)
        if existing is not None:
            continue
        await repo.insert_reaction(
            to_id,
            row.user_id,
            row.reaction_type,
            to_source,
            state=row.state,
            count=row.count,
            category=row.category,
        )
        copied += 1
    return copied
