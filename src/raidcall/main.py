"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.api.runs import router as runs_router
from raidcall.config import Settings
from raidcall.core.coordinator import RunCoordinator
from raidcall.core.headcount import HeadcountService
from raidcall.core.ledger import ReactionLedger
from raidcall.core.panels import PanelRegistry
from raidcall.core.refresh import PanelRefresher
from raidcall.core.runs import RunStateMachine
from raidcall.db.engine import create_engine, create_tables
from raidcall.discord.render import DiscordPanelRenderer

logger = logging.getLogger(__name__)


def build_coordinator(engine: AsyncEngine, settings: Settings) -> RunCoordinator:
    """Wire the services behind one coordinator. The ping dispatcher is
    attached later, once a Discord client exists."""
    ledger = ReactionLedger(engine)
    runs = RunStateMachine(engine, settings)
    return RunCoordinator(
        ledger=ledger,
        runs=runs,
        headcounts=HeadcountService(engine),
        refresher=PanelRefresher(PanelRegistry()),
        renderer=DiscordPanelRenderer(),
        dungeon_role_pings=settings.dungeon_role_pings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, optionally start Discord bot and scheduler."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    app.state.engine = engine
    coordinator = build_coordinator(engine, settings)
    app.state.coordinator = coordinator

    # Start Discord bot if configured
    discord_bot = None
    from raidcall.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from raidcall.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, coordinator)
        app.state.discord_bot = discord_bot
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")

    # Start APScheduler for the auto-end sweep
    scheduler = None
    if settings.auto_end_enabled:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        from raidcall.core.scheduler_runner import tick_auto_end

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            tick_auto_end,
            trigger=IntervalTrigger(seconds=settings.auto_end_interval_seconds),
            kwargs={"coordinator": coordinator},
            id="tick_auto_end",
            name="End overdue runs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("scheduler_started interval_s=%d", settings.auto_end_interval_seconds)
    else:
        app.state.scheduler = None
        logger.info("scheduler_disabled")

    yield

    # Shutdown scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    # Shutdown Discord bot if running
    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the raidcall FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.raidcall_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="raidcall",
        version="0.1.0",
        description="Run and headcount coordination with live-synced Discord panels",
        docs_url="/docs" if settings.raidcall_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(runs_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.raidcall_env}

    return app


app = create_app()
