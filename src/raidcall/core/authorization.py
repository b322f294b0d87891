"""Organizer capability checks on a minimal role-membership value."""

from __future__ import annotations

from dataclasses import dataclass, field

import discord


@dataclass(frozen=True)
class RoleMembership:
    """The role ids a user holds in one guild."""

    user_id: str
    role_ids: frozenset[str] = field(default_factory=frozenset)


def membership_from_member(member: discord.Member | discord.User | None) -> RoleMembership | None:
    """Adapt a Discord member. Users outside a guild (DMs) carry no roles."""
    if member is None:
        return None
    roles = getattr(member, "roles", None) or []
    return RoleMembership(
        user_id=str(member.id),
        role_ids=frozenset(str(role.id) for role in roles),
    )


def is_organizer(membership: RoleMembership | None, required_role_id: str | None) -> bool:
    """True when the member holds the configured organizer role.

    No member or no configured role always denies.
    """
    if membership is None or not required_role_id:
        return False
    return required_role_id in membership.role_ids


def can_manage_run(
    membership: RoleMembership | None, organizer_id: str, required_role_id: str | None
) -> bool:
    """The run's own organizer, or anyone holding the organizer role."""
    if membership is None:
        return False
    return membership.user_id == organizer_id or is_organizer(membership, required_role_id)
