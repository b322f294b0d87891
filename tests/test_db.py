"""Tests for database layer: engine, ORM models, repository round-trips."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.db.engine import get_session
from raidcall.db.repository import Repository


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


class TestTableCreation:
    async def test_all_tables_created(self, engine: AsyncEngine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: sync_conn.dialect.get_table_names(sync_conn)
            )
        assert {"runs", "headcounts", "reactions"}.issubset(set(tables))


class TestRuns:
    async def test_create_run(self, repo: Repository):
        run = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest", party="P1")
        assert run.id is not None
        assert run.status == "pending"
        assert run.key_pop_count == 0
        assert (await repo.get_run(run.id)).party == "P1"

    async def test_update_missing_run(self, repo: Repository):
        assert await repo.update_run("nope", status="live") is None

    async def test_active_run_skips_closed(self, repo: Repository):
        statuses = ["pending", "live", "started"]
        run = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest")
        assert (await repo.get_active_run("guild-1", "organizer-1", statuses)).id == run.id
        await repo.update_run(run.id, status="ended")
        assert await repo.get_active_run("guild-1", "organizer-1", statuses) is None

    async def test_transition_only_from_expected_status(self, repo: Repository):
        run = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest")
        assert await repo.transition_run(run.id, "pending", status="live")
        assert not await repo.transition_run(run.id, "pending", status="cancelled")
        await repo.session.refresh(run)
        assert run.status == "live"

    async def test_due_for_auto_end(self, repo: Repository):
        now = datetime(2026, 3, 14, 20, 0)
        early = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest")
        late = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest")
        ended = await repo.create_run("guild-1", "organizer-1", "NEST", "The Nest")
        await repo.update_run(early.id, status="live", auto_end_at=now - timedelta(minutes=5))
        await repo.update_run(late.id, status="live", auto_end_at=now + timedelta(minutes=5))
        await repo.update_run(ended.id, status="ended", auto_end_at=now - timedelta(minutes=9))

        due = await repo.get_runs_due_for_auto_end(now, ["pending", "live", "started"])

        assert [run.id for run in due] == [early.id]


class TestHeadcounts:
    async def test_open_headcount_is_newest(self, repo: Repository):
        first = await repo.create_headcount("guild-1", "organizer-1", ["NEST"])
        second = await repo.create_headcount("guild-1", "organizer-1", ["TOMB"])
        first.created_at = datetime(2026, 3, 14, 19, 0, tzinfo=UTC)
        second.created_at = datetime(2026, 3, 14, 20, 0, tzinfo=UTC)
        await repo.session.flush()

        found = await repo.get_open_headcount("guild-1", "organizer-1")
        assert found.id == second.id

        await repo.update_headcount(second.id, status="closed")
        found = await repo.get_open_headcount("guild-1", "organizer-1")
        assert found.id == first.id

    async def test_transition_claims_open_headcount_once(self, repo: Repository):
        headcount = await repo.create_headcount("guild-1", "organizer-1", ["NEST"])
        assert await repo.transition_headcount(headcount.id, "open", status="converted")
        assert not await repo.transition_headcount(headcount.id, "open", status="closed")
        await repo.session.refresh(headcount)
        assert headcount.status == "converted"

    async def test_dungeon_keys_round_trip(self, repo: Repository):
        headcount = await repo.create_headcount("guild-1", "organizer-1", ["NEST", "TOMB"])
        assert (await repo.get_headcount(headcount.id)).dungeon_keys == ["NEST", "TOMB"]


class TestReactions:
    async def test_unique_key(self, repo: Repository):
        await repo.insert_reaction("R1", "U1", "join", "run", state="join")
        await repo.insert_reaction("R1", "U1", "join", "headcount", state="join")
        with pytest.raises(IntegrityError):
            await repo.insert_reaction("R1", "U1", "join", "run", state="join")
        await repo.session.rollback()

    async def test_counts(self, repo: Repository):
        await repo.insert_reaction("R1", "U1", "join", "run", state="join", category="Bard")
        await repo.insert_reaction("R1", "U2", "join", "run", state="leave", category="Bard")
        await repo.insert_reaction("R1", "U1", "VIAL", "run", count=2)
        await repo.insert_reaction("R1", "U2", "VIAL", "run", count=0)
        await repo.insert_reaction("R1", "U3", "VIAL", "headcount", count=1)

        assert await repo.count_joined("R1", "run", "join") == 1
        assert await repo.count_holding("R1", "run", "VIAL") == 1
        assert await repo.get_reaction_counts("R1", "run") == {"join": (1, 0), "VIAL": (0, 1)}
        assert await repo.get_category_counts("R1", "run", "join") == {"Bard": 1}
        assert len(await repo.get_reactions("R1", "run")) == 4
