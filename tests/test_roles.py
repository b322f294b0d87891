"""Tests for per-run Discord roles."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from conftest import make_http_error

from raidcall.core.roles import MAX_ROLE_NAME, RUN_ROLE_COLOUR, RunRoleManager, run_role_name


def make_guild(member: MagicMock | None = None, role: MagicMock | None = None) -> MagicMock:
    guild = MagicMock(spec=discord.Guild)
    guild.id = 1
    guild.get_member = MagicMock(return_value=member)
    guild.fetch_member = AsyncMock(return_value=member)
    guild.get_role = MagicMock(return_value=role)
    created = MagicMock(spec=discord.Role)
    created.id = 5000
    created.name = "Organizer's The Shatters"
    guild.create_role = AsyncMock(return_value=created)
    return guild


def make_member() -> MagicMock:
    member = MagicMock(spec=discord.Member)
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    return member


def make_manager(guild: MagicMock | None) -> RunRoleManager:
    client = MagicMock(spec=discord.Client)
    client.get_guild = MagicMock(return_value=guild)
    return RunRoleManager(client)


class TestRoleName:
    def test_names_organizer_and_dungeon(self) -> None:
        assert run_role_name("Organizer", "The Shatters") == "Organizer's The Shatters"

    def test_long_names_are_cut(self) -> None:
        assert len(run_role_name("x" * 120, "The Shatters")) == MAX_ROLE_NAME


class TestCreate:
    async def test_returns_role_id(self) -> None:
        guild = make_guild()
        manager = make_manager(guild)

        role_id = await manager.create("1", "Organizer", "The Shatters")

        assert role_id == "5000"
        kwargs = guild.create_role.await_args.kwargs
        assert kwargs["name"] == "Organizer's The Shatters"
        assert kwargs["colour"] == RUN_ROLE_COLOUR
        assert kwargs["mentionable"] is False
        manager.client.get_guild.assert_called_once_with(1)

    async def test_refused(self) -> None:
        guild = make_guild()
        guild.create_role.side_effect = make_http_error(403, "Missing Permissions")
        assert await make_manager(guild).create("1", "Organizer", "The Shatters") is None

    async def test_guild_unavailable(self) -> None:
        assert await make_manager(None).create("1", "Organizer", "The Shatters") is None


class TestMembership:
    async def test_assign_cached_member(self) -> None:
        member = make_member()
        guild = make_guild(member=member)

        assert await make_manager(guild).assign("1", "777", "5000") is True

        role = member.add_roles.await_args.args[0]
        assert role.id == 5000
        guild.fetch_member.assert_not_awaited()

    async def test_assign_fetches_uncached_member(self) -> None:
        member = make_member()
        guild = make_guild()
        guild.fetch_member.return_value = member

        assert await make_manager(guild).assign("1", "777", "5000") is True

        guild.fetch_member.assert_awaited_once_with(777)
        member.add_roles.assert_awaited_once()

    async def test_member_gone(self) -> None:
        guild = make_guild()
        guild.fetch_member.side_effect = make_http_error(404, "Unknown Member")
        assert await make_manager(guild).assign("1", "777", "5000") is False

    async def test_remove(self) -> None:
        member = make_member()
        assert await make_manager(make_guild(member=member)).remove("1", "777", "5000") is True
        assert member.remove_roles.await_args.args[0].id == 5000

    async def test_remove_refused(self) -> None:
        member = make_member()
        member.remove_roles.side_effect = make_http_error(403, "Missing Permissions")
        assert await make_manager(make_guild(member=member)).remove("1", "777", "5000") is False

    async def test_guild_unavailable(self) -> None:
        assert await make_manager(None).assign("1", "777", "5000") is False


class TestDelete:
    async def test_deletes_role(self) -> None:
        role = MagicMock(spec=discord.Role)
        role.delete = AsyncMock()
        guild = make_guild(role=role)

        assert await make_manager(guild).delete("1", "5000") is True

        guild.get_role.assert_called_once_with(5000)
        role.delete.assert_awaited_once()

    async def test_role_already_gone(self) -> None:
        assert await make_manager(make_guild()).delete("1", "5000") is True

    @pytest.mark.parametrize(("status", "deleted"), [(404, True), (403, False)])
    async def test_delete_errors(self, status: int, deleted: bool) -> None:
        role = MagicMock(spec=discord.Role)
        role.delete = AsyncMock(side_effect=make_http_error(status))
        assert await make_manager(make_guild(role=role)).delete("1", "5000") is deleted
