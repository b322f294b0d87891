"""Discord bot for raidcall.

Runs alongside FastAPI on the same event loop. Slash commands post run and
headcount panels; every panel button is routed here by its custom id and
handed to the RunCoordinator, which owns state changes, panel refreshes,
and progression pings. Button handlers acknowledge the interaction before
calling the coordinator, since a coordinator call includes the panel refresh.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import discord
from discord import Intents, app_commands
from discord.ext import commands

from raidcall.core.authorization import can_manage_run, is_organizer, membership_from_member
from raidcall.core.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
)
from raidcall.core.panels import FollowupHandle, InteractionReplyHandle, PublicMessageHandle
from raidcall.core.ping import ProgressionPingDispatcher
from raidcall.core.roles import RunRoleManager
from raidcall.discord.dungeons import (
    PROGRESSION_CALLOUTS,
    Dungeon,
    dungeon_label,
    get_dungeon,
    search_dungeons,
)
from raidcall.discord.views import Action, ComponentId, RunDetailsModal, class_select_view
from raidcall.models.run import Headcount, Run, RunStatus

if TYPE_CHECKING:
    from raidcall.config import Settings
    from raidcall.core.coordinator import RunCoordinator

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again in a moment."

# A headcount panel holds at most this many dungeons (two rows of buttons).
MAX_HEADCOUNT_DUNGEONS = 10

ComponentHandler = Callable[[discord.Interaction, ComponentId], Awaitable[None]]


def resolve_dungeon(query: str) -> Dungeon | None:
    """Exact catalog key first, then the best search match."""
    dungeon = get_dungeon(query.strip().upper())
    if dungeon is not None:
        return dungeon
    matches = search_dungeons(query, limit=1)
    return matches[0] if matches else None


async def _reply(interaction: discord.Interaction, text: str) -> None:
    """Send an ephemeral message whether or not the interaction was answered."""
    if interaction.response.is_done():
        await interaction.followup.send(text, ephemeral=True)
    else:
        await interaction.response.send_message(text, ephemeral=True)


class RaidcallBot(commands.Bot):
    """The raidcall Discord bot.

    Provides /run and /headcount and routes panel button presses to the
    coordinator.
    """

    def __init__(self, settings: Settings, coordinator: RunCoordinator) -> None:
        intents = Intents.default()
        super().__init__(
            command_prefix="!",
            intents=intents,
            description="raidcall -- run and headcount coordination.",
        )
        self.settings = settings
        self.coordinator = coordinator
        self._component_handlers: dict[Action, ComponentHandler] = {
            Action.JOIN: self._on_join,
            Action.LEAVE: self._on_leave,
            Action.CLASS: self._on_class,
            Action.KEY: self._on_key,
            Action.ORGANIZER: self._on_run_organizer_panel,
            Action.GO_LIVE: self._on_go_live,
            Action.START: self._on_status_button,
            Action.END: self._on_status_button,
            Action.CANCEL: self._on_status_button,
            Action.POP_KEY: self._on_pop_key,
            Action.DETAILS: self._on_details,
            Action.ANNOUNCE: self._on_announce,
            Action.HEADCOUNT_JOIN: self._on_headcount_join,
            Action.HEADCOUNT_KEY: self._on_headcount_key,
            Action.HEADCOUNT_ORGANIZER: self._on_headcount_organizer_panel,
            Action.HEADCOUNT_END: self._on_headcount_end,
            Action.HEADCOUNT_CONVERT: self._on_headcount_convert,
        }
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        @self.tree.command(name="run", description="Post a run for a dungeon")
        @app_commands.describe(
            dungeon="The dungeon to run",
            party="Party name raiders should join",
            location="Server / location",
            note="Organizer note shown on the panel",
            auto_end="Minutes until the run ends automatically",
        )
        async def run_command(
            interaction: discord.Interaction,
            dungeon: str,
            party: str | None = None,
            location: str | None = None,
            note: str | None = None,
            auto_end: int | None = None,
        ) -> None:
            await self._handle_run(interaction, dungeon, party, location, note, auto_end)

        @run_command.autocomplete("dungeon")
        async def _dungeon_autocomplete(
            interaction: discord.Interaction,
            current: str,
        ) -> list[app_commands.Choice[str]]:
            return [
                app_commands.Choice(name=d.label, value=d.key) for d in search_dungeons(current)
            ]

        @self.tree.command(name="headcount", description="Check interest before a run")
        @app_commands.describe(dungeons="Comma-separated dungeons to gauge interest for")
        async def headcount_command(interaction: discord.Interaction, dungeons: str) -> None:
            await self._handle_headcount(interaction, dungeons)

    async def setup_hook(self) -> None:
        """Called when the bot is ready to start. Syncs slash commands."""
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        user = self.user
        logger.info("discord_bot_ready user=%s", user.name if user else "unknown")

    # --- Error boundary ---

    async def _guarded(
        self,
        interaction: discord.Interaction,
        label: str,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        """Run a handler, turning domain errors into ephemeral acknowledgments."""
        try:
            await action()
        except NotFoundError:
            message = "That run or headcount no longer exists."
        except InvalidTransitionError as exc:
            message = _transition_message(exc)
        except ConflictError:
            message = "Lots of people clicked at once. Please try again."
        except ExternalServiceError:
            logger.warning("discord_action_unavailable action=%s", label)
            message = "Discord or the database is having trouble right now. Please try again."
        except Exception:  # Last-resort handler — the user still gets an answer
            logger.exception("discord_action_error action=%s", label)
            message = GENERIC_ERROR
        else:
            return
        with contextlib.suppress(discord.HTTPException):
            await _reply(interaction, message)

    # --- Permissions ---

    def _can_organize(self, interaction: discord.Interaction) -> bool:
        membership = membership_from_member(interaction.user)
        return is_organizer(membership, self.settings.discord_organizer_role_id)

    async def _check_manager(self, interaction: discord.Interaction, cid: ComponentId) -> bool:
        if cid.action in (
            Action.HEADCOUNT_ORGANIZER,
            Action.HEADCOUNT_END,
            Action.HEADCOUNT_CONVERT,
        ):
            owner = (await self.coordinator.headcounts.get_headcount(cid.target_id)).organizer_id
        else:
            owner = (await self.coordinator.runs.get_run(cid.target_id)).organizer_id
        membership = membership_from_member(interaction.user)
        if can_manage_run(membership, owner, self.settings.discord_organizer_role_id):
            return True
        await _reply(interaction, "Only the organizer can use these controls.")
        return False

    # --- Slash commands ---

    async def _handle_run(
        self,
        interaction: discord.Interaction,
        dungeon_query: str,
        party: str | None,
        location: str | None,
        note: str | None,
        auto_end: int | None,
    ) -> None:
        """Handle /run: create the run, post its panel, and go live."""
        if interaction.guild_id is None:
            await _reply(interaction, "Runs can only be started in a server.")
            return
        if not self._can_organize(interaction):
            await _reply(interaction, "You need the organizer role to start runs.")
            return
        dungeon = resolve_dungeon(dungeon_query)
        if dungeon is None:
            await _reply(interaction, f"Unknown dungeon: {dungeon_query}")
            return

        async def _create() -> None:
            await interaction.response.defer(ephemeral=True)
            busy = await self._busy_message(interaction, headcounts=False)
            if busy:
                await _reply(interaction, busy)
                return
            role_id = await self._create_run_role(interaction, dungeon)
            run = await self.coordinator.runs.create_run(
                str(interaction.guild_id),
                str(interaction.user.id),
                dungeon.key,
                dungeon.label,
                role_id=role_id,
                party=party,
                location=location,
                description=note,
                auto_end_minutes=auto_end,
            )
            run = await self._publish_run(interaction, run)
            await self._send_run_organizer_followup(interaction, run)

        await self._guarded(interaction, "run_create", _create)

    async def _handle_headcount(self, interaction: discord.Interaction, dungeons: str) -> None:
        """Handle /headcount: post a headcount panel for one or more dungeons."""
        if interaction.guild_id is None:
            await _reply(interaction, "Headcounts can only be started in a server.")
            return
        if not self._can_organize(interaction):
            await _reply(interaction, "You need the organizer role to start headcounts.")
            return

        keys: list[str] = []
        unknown: list[str] = []
        for query in (part for part in dungeons.split(",") if part.strip()):
            dungeon = resolve_dungeon(query)
            if dungeon is None:
                unknown.append(query.strip())
            elif dungeon.key not in keys:
                keys.append(dungeon.key)
        if unknown or not keys:
            await _reply(interaction, f"Unknown dungeon(s): {', '.join(unknown) or dungeons}")
            return
        if len(keys) > MAX_HEADCOUNT_DUNGEONS:
            await _reply(
                interaction, f"A headcount can cover at most {MAX_HEADCOUNT_DUNGEONS} dungeons."
            )
            return

        async def _create() -> None:
            await interaction.response.defer(ephemeral=True)
            busy = await self._busy_message(interaction, headcounts=True)
            if busy:
                await _reply(interaction, busy)
                return
            channel = _panel_channel(interaction)
            headcount = await self.coordinator.headcounts.create_headcount(
                str(interaction.guild_id),
                str(interaction.user.id),
                keys,
                channel_id=str(channel.id),
            )
            _, _, render = await self.coordinator.render_headcount(headcount.id)
            message = await _post(channel, render.public.as_kwargs())
            headcount = await self.coordinator.headcounts.attach_message(
                headcount.id, str(channel.id), str(message.id)
            )
            self.coordinator.register_panel(str(message.id), PublicMessageHandle(message))
            await self._send_headcount_organizer_followup(interaction, headcount)

        await self._guarded(interaction, "headcount_create", _create)

    async def _busy_message(
        self, interaction: discord.Interaction, *, headcounts: bool
    ) -> str | None:
        """Why the organizer can't start something new yet, or None if they can."""
        guild_id = str(interaction.guild_id)
        user_id = str(interaction.user.id)
        run = await self.coordinator.runs.get_active_run(guild_id, user_id)
        if run is not None:
            link = run.panel_url()
            where = f": {link}" if link else ""
            return f"You already have an active {run.dungeon_label} run{where}. End it first."
        if headcounts:
            headcount = await self.coordinator.headcounts.get_open_headcount(guild_id, user_id)
            if headcount is not None:
                link = headcount.panel_url()
                where = f": {link}" if link else ""
                return f"You already have an open headcount{where}. End it first."
        return None

    async def _create_run_role(
        self, interaction: discord.Interaction, dungeon: Dungeon
    ) -> str | None:
        roles = self.coordinator.run_roles
        if roles is None:
            return None
        return await roles.create(
            str(interaction.guild_id), interaction.user.display_name, dungeon.label
        )

    # --- Panel publishing ---

    async def _publish_run(self, interaction: discord.Interaction, run: Run) -> Run:
        """Post the public run panel in the interaction's channel and take the run live."""
        channel = _panel_channel(interaction)
        _, _, render = await self.coordinator.render_run(run.id)
        message = await _post(channel, render.public.as_kwargs())
        self.coordinator.register_panel(str(message.id), PublicMessageHandle(message))
        return await self.coordinator.change_status(
            run.id,
            RunStatus.LIVE,
            channel_id=str(channel.id),
            message_id=str(message.id),
            auto_end_minutes=run.auto_end_minutes,
        )

    async def _send_run_organizer_followup(
        self, interaction: discord.Interaction, run: Run
    ) -> None:
        _, _, render = await self.coordinator.render_run(run.id)
        kwargs = render.organizer.as_kwargs()
        message = await interaction.followup.send(ephemeral=True, wait=True, **kwargs)
        if run.post_message_id:
            self.coordinator.register_panel(
                run.post_message_id,
                FollowupHandle(interaction.followup, message.id),
                owner_id=str(interaction.user.id),
            )

    async def _send_headcount_organizer_followup(
        self, interaction: discord.Interaction, headcount: Headcount
    ) -> None:
        _, _, render = await self.coordinator.render_headcount(headcount.id)
        kwargs = render.organizer.as_kwargs()
        message = await interaction.followup.send(ephemeral=True, wait=True, **kwargs)
        if headcount.post_message_id:
            self.coordinator.register_panel(
                headcount.post_message_id,
                FollowupHandle(interaction.followup, message.id),
                owner_id=str(interaction.user.id),
            )

    def _adopt_panel(self, interaction: discord.Interaction, key: str | None) -> None:
        """Track the organizer panel this button was pressed on.

        A component interaction's original response is the panel message, so
        the fresh token keeps that panel refreshing.
        """
        if key:
            self.coordinator.register_panel(
                key, InteractionReplyHandle(interaction), owner_id=str(interaction.user.id)
            )

    # --- Component routing ---

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        data = interaction.data or {}
        cid = ComponentId.parse(data.get("custom_id"))  # type: ignore[arg-type]
        if cid is None:
            return
        await self.handle_component(interaction, cid)

    async def handle_component(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        handler = self._component_handlers[cid.action]

        async def _dispatch() -> None:
            if cid.is_organizer_action and not await self._check_manager(interaction, cid):
                return
            await handler(interaction, cid)

        await self._guarded(interaction, cid.action.value, _dispatch)

    async def _on_join(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await self.coordinator.join(cid.target_id, str(interaction.user.id))
        if not outcome.changed:
            await _reply(interaction, "You're already in this run.")
            return
        await interaction.followup.send(
            f"You joined the run ({outcome.count} raiders). Pick your class:",
            view=class_select_view(cid.target_id),
            ephemeral=True,
        )

    async def _on_class(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        values = (interaction.data or {}).get("values") or []
        if not values:
            return
        choice = str(values[0])
        await interaction.response.defer()
        await self.coordinator.join(cid.target_id, str(interaction.user.id), category=choice)
        await interaction.edit_original_response(content=f"Class set to **{choice}**.", view=None)

    async def _on_leave(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        outcome = await self.coordinator.leave(cid.target_id, str(interaction.user.id))
        if not outcome.changed:
            await _reply(interaction, "You're not in this run.")
            return
        await _reply(interaction, f"You left the run ({outcome.count} raiders).")

    async def _on_key(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        key_type = cid.arg or ""
        user_id = str(interaction.user.id)
        outcome = await self.coordinator.toggle_key(cid.target_id, user_id, key_type)
        reported = user_id in outcome.view.key_holders.get(key_type, [])
        verb = "reported" if reported else "withdrawn"
        await _reply(interaction, f"Key {verb}. {outcome.count} raider(s) have this key.")

    async def _on_run_organizer_panel(
        self, interaction: discord.Interaction, cid: ComponentId
    ) -> None:
        run, _, render = await self.coordinator.render_run(cid.target_id)
        if run.is_terminal:
            await _reply(interaction, "This run has ended.")
            return
        kwargs = render.organizer.as_kwargs()
        await interaction.response.send_message(ephemeral=True, **kwargs)
        self._adopt_panel(interaction, run.post_message_id)

    async def _on_go_live(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer()
        run = await self.coordinator.runs.get_run(cid.target_id)
        if run.post_message_id:
            self._adopt_panel(interaction, run.post_message_id)
            await self.coordinator.change_status(run.id, RunStatus.LIVE)
            return
        run = await self._publish_run(interaction, run)
        self._adopt_panel(interaction, run.post_message_id)
        await self.coordinator.refresh_run(run)

    async def _on_status_button(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        target = {
            Action.START: RunStatus.STARTED,
            Action.END: RunStatus.ENDED,
            Action.CANCEL: RunStatus.CANCELLED,
        }[cid.action]
        await interaction.response.defer()
        run = await self.coordinator.runs.get_run(cid.target_id)
        self._adopt_panel(interaction, run.post_message_id)
        await self.coordinator.change_status(run.id, target)
        logger.info(
            "run_status_button run=%s target=%s user=%s", run.id, target, interaction.user.id
        )

    async def _on_pop_key(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer()
        run = await self.coordinator.runs.get_run(cid.target_id)
        self._adopt_panel(interaction, run.post_message_id)
        await self.coordinator.pop_key(run.id)

    async def _on_details(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        run = await self.coordinator.runs.get_run(cid.target_id)
        modal = RunDetailsModal(run=run, on_save=functools.partial(self._save_details, run.id))
        await interaction.response.send_modal(modal)

    async def _save_details(
        self, run_id: str, interaction: discord.Interaction, party: str, location: str
    ) -> None:
        async def _save() -> None:
            await interaction.response.defer()
            await self.coordinator.update_details(run_id, party=party, location=location)

        await self._guarded(interaction, "run_details", _save)

    async def _on_announce(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        run = await self.coordinator.runs.get_run(cid.target_id)
        text = PROGRESSION_CALLOUTS.get(run.dungeon_key, {}).get(cid.arg or "")
        if text is None:
            await _reply(interaction, "That callout isn't available for this dungeon.")
            return
        await interaction.response.defer()
        message_id = await self.coordinator.announce(run.id, text)
        if message_id is None:
            await _reply(interaction, f"Couldn't send **{text}**. Check the bot's permissions.")

    async def _on_headcount_join(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        user_id = str(interaction.user.id)
        outcome = await self.coordinator.headcount_join(cid.target_id, user_id)
        if outcome.changed:
            await _reply(interaction, f"Marked interested ({outcome.count} so far).")
            return
        outcome = await self.coordinator.headcount_leave(cid.target_id, user_id)
        await _reply(interaction, f"No longer marked interested ({outcome.count} so far).")

    async def _on_headcount_key(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        dungeon_key = cid.arg or ""
        user_id = str(interaction.user.id)
        outcome = await self.coordinator.headcount_key(cid.target_id, user_id, dungeon_key)
        offered = user_id in outcome.view.key_holders.get(dungeon_key, [])
        label = dungeon_label(dungeon_key)
        if offered:
            await _reply(interaction, f"You're offering a {label} key.")
        else:
            await _reply(interaction, f"You withdrew your {label} key.")

    async def _on_headcount_organizer_panel(
        self, interaction: discord.Interaction, cid: ComponentId
    ) -> None:
        headcount, _, render = await self.coordinator.render_headcount(cid.target_id)
        kwargs = render.organizer.as_kwargs()
        await interaction.response.send_message(ephemeral=True, **kwargs)
        self._adopt_panel(interaction, headcount.post_message_id)

    async def _on_headcount_end(self, interaction: discord.Interaction, cid: ComponentId) -> None:
        await interaction.response.defer()
        headcount = await self.coordinator.headcounts.get_headcount(cid.target_id)
        self._adopt_panel(interaction, headcount.post_message_id)
        await self.coordinator.close_headcount(headcount.id)

    async def _on_headcount_convert(
        self, interaction: discord.Interaction, cid: ComponentId
    ) -> None:
        dungeon = get_dungeon(cid.arg or "")
        if dungeon is None:
            await _reply(interaction, "That dungeon is no longer available.")
            return
        await interaction.response.defer()
        headcount = await self.coordinator.headcounts.get_headcount(cid.target_id)
        self._adopt_panel(interaction, headcount.post_message_id)
        role_id = await self._create_run_role(interaction, dungeon)
        try:
            run = await self.coordinator.convert_headcount(
                headcount.id, dungeon.key, dungeon.label, role_id=role_id
            )
        except Exception:  # Re-raise pattern: drop the role no run will own
            if role_id and self.coordinator.run_roles is not None:
                await self.coordinator.run_roles.delete(str(interaction.guild_id), role_id)
            raise
        run = await self._publish_run(interaction, run)
        await self._send_run_organizer_followup(interaction, run)


def _transition_message(exc: InvalidTransitionError) -> str:
    if exc.detail:
        return f"Can't do that: {exc.detail}."
    return f"Can't move this run from {exc.current} to {exc.target}."


def _panel_channel(interaction: discord.Interaction) -> discord.abc.Messageable:
    channel = interaction.channel
    if channel is None or not isinstance(channel, discord.abc.Messageable):
        raise ExternalServiceError("This channel can't hold a panel")
    return channel


async def _post(channel: discord.abc.Messageable, kwargs: dict[str, object]) -> discord.Message:
    try:
        return await channel.send(**kwargs)  # type: ignore[arg-type]
    except discord.HTTPException as exc:
        raise ExternalServiceError(f"Discord refused the panel post: {exc.status}") from exc


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started.

    Returns True only when discord_enabled is True and a token is set.
    """
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_discord_bot(settings: Settings, coordinator: RunCoordinator) -> RaidcallBot:
    """Create and start the Discord bot in the current event loop.

    Wires the progression ping dispatcher to the bot's client and returns
    the bot so the caller can stop it during shutdown. The bot runs as a
    background task; this function returns immediately after starting it.
    """
    bot = RaidcallBot(settings=settings, coordinator=coordinator)
    coordinator.pinger = ProgressionPingDispatcher(coordinator.runs, bot)
    if settings.run_roles_enabled:
        coordinator.run_roles = RunRoleManager(bot)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler — bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
