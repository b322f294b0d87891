"""Temporary per-run Discord roles.

A run gets a role named after its organizer and dungeon. Raiders get the
role when they join and lose it when they leave, and the role is deleted
once the run ends or is cancelled. Progression pings mention it so only
the raid is notified.

Every operation is best effort: Discord failures are logged and reported
through the return value, never raised.
"""

from __future__ import annotations

import logging

import discord

logger = logging.getLogger(__name__)

RUN_ROLE_COLOUR = discord.Colour(0x808080)

# Discord's limit on role names.
MAX_ROLE_NAME = 100


def run_role_name(organizer_name: str, dungeon_label: str) -> str:
    return f"{organizer_name}'s {dungeon_label}"[:MAX_ROLE_NAME]


class RunRoleManager:
    """Creates, assigns, removes, and deletes run roles through a Discord client."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    def _guild(self, guild_id: str) -> discord.Guild | None:
        guild = self.client.get_guild(int(guild_id))
        if guild is None:
            logger.warning("run_role_guild_unavailable guild=%s", guild_id)
        return guild

    async def _member(self, guild: discord.Guild, user_id: str) -> discord.Member | None:
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(int(user_id))
        except discord.HTTPException as exc:
            logger.warning(
                "run_role_member_unavailable guild=%s user=%s status=%s",
                guild.id,
                user_id,
                exc.status,
            )
            return None

    async def create(self, guild_id: str, organizer_name: str, dungeon_label: str) -> str | None:
        """Create the role for a new run. Returns its id, or None if Discord refused."""
        guild = self._guild(guild_id)
        if guild is None:
            return None
        try:
            role = await guild.create_role(
                name=run_role_name(organizer_name, dungeon_label),
                colour=RUN_ROLE_COLOUR,
                hoist=False,
                mentionable=False,
                reason=f"Temporary role for run: {dungeon_label}",
            )
        except discord.HTTPException as exc:
            logger.warning("run_role_create_failed guild=%s status=%s", guild_id, exc.status)
            return None
        logger.info("run_role_created guild=%s role=%s name=%s", guild_id, role.id, role.name)
        return str(role.id)

    async def assign(self, guild_id: str, user_id: str, role_id: str) -> bool:
        guild = self._guild(guild_id)
        if guild is None:
            return False
        member = await self._member(guild, user_id)
        if member is None:
            return False
        try:
            await member.add_roles(discord.Object(id=int(role_id)), reason="Joined run")
        except discord.HTTPException as exc:
            logger.warning(
                "run_role_assign_failed role=%s user=%s status=%s", role_id, user_id, exc.status
            )
            return False
        return True

    async def remove(self, guild_id: str, user_id: str, role_id: str) -> bool:
        guild = self._guild(guild_id)
        if guild is None:
            return False
        member = await self._member(guild, user_id)
        if member is None:
            return False
        try:
            await member.remove_roles(discord.Object(id=int(role_id)), reason="Left run")
        except discord.HTTPException as exc:
            logger.warning(
                "run_role_remove_failed role=%s user=%s status=%s", role_id, user_id, exc.status
            )
            return False
        return True

    async def delete(self, guild_id: str, role_id: str) -> bool:
        """Delete a run's role. A role that is already gone counts as deleted."""
        guild = self._guild(guild_id)
        if guild is None:
            return False
        role = guild.get_role(int(role_id))
        if role is None:
            logger.info("run_role_already_gone guild=%s role=%s", guild_id, role_id)
            return True
        try:
            await role.delete(reason="Run closed")
        except discord.NotFound:
            return True
        except discord.HTTPException as exc:
            logger.warning("run_role_delete_failed role=%s status=%s", role_id, exc.status)
            return False
        logger.info("run_role_deleted guild=%s role=%s", guild_id, role_id)
        return True
