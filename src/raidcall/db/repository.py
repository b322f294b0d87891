"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Runs and headcounts are updated in place;
reactions are upserted against a (target, user, type, source) uniqueness
constraint and never deleted.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from raidcall.db.models import HeadcountRow, ReactionRow, RunRow


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Runs ---

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
    ) -> RunRow:
        row = RunRow(
            guild_id=guild_id,
            organizer_id=organizer_id,
            dungeon_key=dungeon_key,
            dungeon_label=dungeon_label,
            status="pending",
            channel_id=channel_id,
            role_id=role_id,
            party=party,
            location=location,
            description=description,
            auto_end_minutes=auto_end_minutes,
            headcount_id=headcount_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_run(self, run_id: str) -> RunRow | None:
        return await self.session.get(RunRow, run_id)

    async def get_active_run(
        self, guild_id: str, organizer_id: str, statuses: list[str]
    ) -> RunRow | None:
        """The organizer's most recent run in *statuses*, if any."""
        stmt = (
            select(RunRow)
            .where(
                RunRow.guild_id == guild_id,
                RunRow.organizer_id == organizer_id,
                RunRow.status.in_(statuses),
            )
            .order_by(RunRow.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_run(self, run_id: str, **fields: object) -> RunRow | None:
        """Apply column updates to a run. Returns None if the run does not exist."""
        row = await self.session.get(RunRow, run_id)
        if row is None:
            return None
        for name, value in fields.items():
            setattr(row, name, value)
        await self.session.flush()
        return row

    async def transition_run(self, run_id: str, from_status: str, **fields: object) -> bool:
        """Apply *fields* only if the run is still in *from_status*."""
        stmt = (
            update(RunRow)
            .where(RunRow.id == run_id, RunRow.status == from_status)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_runs_due_for_auto_end(
        self, now: datetime, statuses: list[str]
    ) -> list[RunRow]:
        """Runs in *statuses* whose auto-end deadline is at or before *now*."""
        stmt = (
            select(RunRow)
            .where(
                RunRow.status.in_(statuses),
                RunRow.auto_end_at.isnot(None),
                RunRow.auto_end_at <= now,
            )
            .order_by(RunRow.auto_end_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # --- Headcounts ---

    async def create_headcount(
        self,
        guild_id: str,
        organizer_id: str,
        dungeon_keys: list[str],
        channel_id: str | None = None,
        post_message_id: str | None = None,
    ) -> HeadcountRow:
        row = HeadcountRow(
            guild_id=guild_id,
            organizer_id=organizer_id,
            dungeon_keys=list(dungeon_keys),
            channel_id=channel_id,
            post_message_id=post_message_id,
            status="open",
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_headcount(self, headcount_id: str) -> HeadcountRow | None:
        return await self.session.get(HeadcountRow, headcount_id)

    async def get_open_headcount(self, guild_id: str, organizer_id: str) -> HeadcountRow | None:
        """The organizer's currently open headcount in a guild, if any."""
        stmt = (
            select(HeadcountRow)
            .where(
                HeadcountRow.guild_id == guild_id,
                HeadcountRow.organizer_id == organizer_id,
                HeadcountRow.status == "open",
            )
            .order_by(HeadcountRow.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def transition_headcount(
        self, headcount_id: str, from_status: str, **fields: object
    ) -> bool:
        """Apply *fields* only if the headcount is still in *from_status*.

        A single conditional UPDATE, so of two racing callers exactly one
        sees True.
        """
        stmt = (
            update(HeadcountRow)
            .where(HeadcountRow.id == headcount_id, HeadcountRow.status == from_status)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def update_headcount(self, headcount_id: str, **fields: object) -> HeadcountRow | None:
        row = await self.session.get(HeadcountRow, headcount_id)
        if row is None:
            return None
        for name, value in fields.items():
            setattr(row, name, value)
        await self.session.flush()
        return row

    # --- Reactions ---

    async def get_reaction(
        self, target_id: str, user_id: str, reaction_type: str, source: str
    ) -> ReactionRow | None:
        stmt = select(ReactionRow).where(
            ReactionRow.target_id == target_id,
            ReactionRow.user_id == user_id,
            ReactionRow.reaction_type == reaction_type,
            ReactionRow.source == source,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_reaction(
        self,
        target_id: str,
        user_id: str,
        reaction_type: str,
        source: str,
        *,
        state: str | None = None,
        count: int = 0,
        category: str | None = None,
    ) -> ReactionRow:
        """Insert a new reaction row. Raises IntegrityError if the key already exists."""
        row = ReactionRow(
            target_id=target_id,
            user_id=user_id,
            reaction_type=reaction_type,
            source=source,
            state=state,
            count=count,
            category=category,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_reactions(self, target_id: str, source: str) -> list[ReactionRow]:
        """All reaction rows for a target within one source, oldest first."""
        stmt = (
            select(ReactionRow)
            .where(ReactionRow.target_id == target_id, ReactionRow.source == source)
            .order_by(ReactionRow.created_at, ReactionRow.user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_joined(self, target_id: str, source: str, reaction_type: str) -> int:
        stmt = select(func.count()).where(
            ReactionRow.target_id == target_id,
            ReactionRow.source == source,
            ReactionRow.reaction_type == reaction_type,
            ReactionRow.state == "join",
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def count_holding(self, target_id: str, source: str, reaction_type: str) -> int:
        stmt = select(func.count()).where(
            ReactionRow.target_id == target_id,
            ReactionRow.source == source,
            ReactionRow.reaction_type == reaction_type,
            ReactionRow.count > 0,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def get_reaction_counts(self, target_id: str, source: str) -> dict[str, tuple[int, int]]:
        """Per-type (joined, holding) counts for a target within one source.

        ``joined`` counts rows in the join state; ``holding`` counts rows with
        a positive key count. Callers pick the relevant column per type.
        """
        stmt = (
            select(
                ReactionRow.reaction_type,
                func.sum(case((ReactionRow.state == "join", 1), else_=0)),
                func.sum(case((ReactionRow.count > 0, 1), else_=0)),
            )
            .where(ReactionRow.target_id == target_id, ReactionRow.source == source)
            .group_by(ReactionRow.reaction_type)
        )
        result = await self.session.execute(stmt)
        return {
            reaction_type: (int(joined or 0), int(holding or 0))
            for reaction_type, joined, holding in result.all()
        }

    async def get_category_counts(
        self, target_id: str, source: str, reaction_type: str
    ) -> dict[str, int]:
        """Live joins grouped by category (e.g. character class)."""
        stmt = (
            select(ReactionRow.category, func.count())
            .where(
                ReactionRow.target_id == target_id,
                ReactionRow.source == source,
                ReactionRow.reaction_type == reaction_type,
                ReactionRow.state == "join",
                ReactionRow.category.isnot(None),
            )
            .group_by(ReactionRow.category)
        )
        result = await self.session.execute(stmt)
        return {category: int(count) for category, count in result.all()}
