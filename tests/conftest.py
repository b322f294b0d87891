"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.config import Settings
from raidcall.core.coordinator import RunCoordinator
from raidcall.core.headcount import HeadcountService
from raidcall.core.ledger import ReactionLedger
from raidcall.core.panels import PanelContent, PanelRegistry, PanelRender
from raidcall.core.refresh import PanelRefresher
from raidcall.core.runs import RunStateMachine
from raidcall.db.engine import create_engine, create_tables
from raidcall.models.run import Headcount, Run, RunStatus, RunView


class FakeClock:
    """Callable clock the services read instead of the wall clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 14, 20, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class RecordingRenderer:
    """Renders views as plain text so tests can read what each panel got."""

    def __init__(self) -> None:
        self.rendered: list[RunView] = []

    def render_run(self, run: Run, view: RunView) -> PanelRender:
        self.rendered.append(view)
        return PanelRender(
            public=PanelContent(content=f"{run.status.value} raiders={view.join_count}"),
            private=PanelContent(
                content=f"organizer {run.status.value} raiders={view.join_count}"
            ),
        )

    def render_headcount(self, headcount: Headcount, view: RunView) -> PanelRender:
        self.rendered.append(view)
        return PanelRender(
            public=PanelContent(content=f"headcount interested={view.join_count}"),
            private=PanelContent(content=f"organizer headcount interested={view.join_count}"),
        )


def make_message(message_id: int = 1000) -> MagicMock:
    """A Discord message double whose edits succeed."""
    message = MagicMock(spec=discord.Message)
    message.id = message_id
    message.edit = AsyncMock()
    return message


def make_http_error(status: int, message: str | dict = "error") -> discord.HTTPException:
    response = MagicMock(status=status, reason="test")
    if status == 404:
        return discord.NotFound(response, message)
    return discord.HTTPException(response, message)


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        raidcall_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        discord_organizer_role_id="555",
    )


@pytest.fixture
async def engine() -> AsyncEngine:
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def file_engine(tmp_path) -> AsyncEngine:
    """A file-backed database: each session gets its own connection, as in production."""
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'raidcall.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(engine: AsyncEngine) -> ReactionLedger:
    return ReactionLedger(engine)


@pytest.fixture
def runs(engine: AsyncEngine, settings: Settings, clock: FakeClock) -> RunStateMachine:
    return RunStateMachine(engine, settings, now=clock)


@pytest.fixture
def headcounts(engine: AsyncEngine, clock: FakeClock) -> HeadcountService:
    return HeadcountService(engine, now=clock)


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def coordinator(
    ledger: ReactionLedger,
    runs: RunStateMachine,
    headcounts: HeadcountService,
    renderer: RecordingRenderer,
) -> RunCoordinator:
    return RunCoordinator(
        ledger=ledger,
        runs=runs,
        headcounts=headcounts,
        refresher=PanelRefresher(PanelRegistry()),
        renderer=renderer,
    )


async def make_live_run(
    runs: RunStateMachine,
    *,
    dungeon_key: str = "SHATTERS",
    message_id: str = "1000",
    **kwargs: object,
) -> Run:
    """Create a run and take it live with a posted panel."""
    run = await runs.create_run(
        "guild-1", "organizer-1", dungeon_key, "The Shatters", **kwargs  # type: ignore[arg-type]
    )
    return await runs.set_status(run.id, RunStatus.LIVE, channel_id="200", message_id=message_id)
