"""Discord embed builders for run and headcount panels.

Public embeds show counts only. Organizer embeds add who reported which
key, so participant identities never reach the shared channel message.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import discord

from raidcall.discord.dungeons import dungeon_label, format_key_label, get_dungeon
from raidcall.models.run import Headcount, HeadcountStatus, Run, RunStatus, RunView

COLOR_PENDING = 0x95A5A6  # Grey — created, not posted
COLOR_LIVE = 0xF1C40F  # Yellow — starting soon
COLOR_STARTED = 0x2ECC71  # Green — raid in progress
COLOR_ENDED = 0x34495E  # Dark — ended
COLOR_CANCELLED = 0xE74C3C  # Red — cancelled
COLOR_HEADCOUNT = 0x3498DB  # Blue — headcount
COLOR_ORGANIZER = 0x9B59B6  # Purple — organizer panel

STATUS_TITLES: dict[RunStatus, str] = {
    RunStatus.PENDING: "Pending",
    RunStatus.LIVE: "⏳ Starting Soon",
    RunStatus.STARTED: "⚔️ Raid Started",
    RunStatus.ENDED: "✅ Ended",
    RunStatus.CANCELLED: "❌ Cancelled",
}

STATUS_COLORS: dict[RunStatus, int] = {
    RunStatus.PENDING: COLOR_PENDING,
    RunStatus.LIVE: COLOR_LIVE,
    RunStatus.STARTED: COLOR_STARTED,
    RunStatus.ENDED: COLOR_ENDED,
    RunStatus.CANCELLED: COLOR_CANCELLED,
}


def format_class_counts(class_counts: dict[str, int]) -> str:
    """Render the Classes field.

    Up to six classes share one line; longer lists wrap three per line.
    Classes with no raiders are left out.
    """
    entries = sorted((name, count) for name, count in class_counts.items() if count > 0)
    if not entries:
        return "None selected"
    formatted = [f"{name} ({count})" for name, count in entries]
    if len(formatted) <= 6:
        return ", ".join(formatted)
    return "\n".join(" • ".join(formatted[i : i + 3]) for i in range(0, len(formatted), 3))


def format_key_counts(
    key_counts: dict[str, int],
    key_types: tuple[str, ...] = (),
    label: Callable[[str], str] = format_key_label,
) -> str:
    """Render key counts in the dungeon's declared order, then any extras."""
    ordered = [k for k in key_types if key_counts.get(k, 0) > 0]
    ordered += sorted(k for k, v in key_counts.items() if v > 0 and k not in key_types)
    if not ordered:
        return "No keys reported"
    return "\n".join(f"**{label(k)}**: {key_counts[k]}" for k in ordered)


def _timestamp(value: datetime) -> str:
    return f"<t:{int(value.timestamp())}:R>"


def build_run_embed(run: Run, view: RunView) -> discord.Embed:
    """Build the public run panel embed."""
    dungeon = get_dungeon(run.dungeon_key)
    color = STATUS_COLORS[run.status]
    if run.status in (RunStatus.LIVE, RunStatus.STARTED) and dungeon is not None:
        color = dungeon.color

    embed = discord.Embed(
        title=f"{STATUS_TITLES[run.status]}: {run.dungeon_label}",
        description=f"Organizer: <@{run.organizer_id}>",
        color=color,
    )
    embed.add_field(name="Raiders", value=str(view.join_count), inline=False)
    embed.add_field(name="Classes", value=format_class_counts(view.class_counts), inline=False)

    key_types = dungeon.key_types if dungeon else ()
    if key_types or view.key_counts:
        embed.add_field(
            name="Keys", value=format_key_counts(view.key_counts, key_types), inline=False
        )
    if view.headcount_key_counts:
        embed.add_field(
            name="Keys Offered at Headcount",
            value=format_key_counts(view.headcount_key_counts, label=dungeon_label),
            inline=False,
        )

    if run.party:
        embed.add_field(name="Party", value=run.party, inline=True)
    if run.location:
        embed.add_field(name="Location", value=run.location, inline=True)
    if run.description:
        embed.add_field(name="Organizer Note", value=run.description, inline=False)

    if run.status == RunStatus.STARTED and run.key_window_ends_at is not None:
        embed.add_field(
            name="Key Window",
            value=(
                f"Closes {_timestamp(run.key_window_ends_at)} • "
                f"Keys popped: {run.key_pop_count}"
            ),
            inline=False,
        )
    elif run.status == RunStatus.LIVE and run.auto_end_at is not None:
        embed.add_field(name="Auto-End", value=_timestamp(run.auto_end_at), inline=False)

    embed.set_footer(text=f"Run {run.id[:8]}")
    return embed


def build_organizer_panel_embed(run: Run, view: RunView) -> discord.Embed:
    """Build the private organizer panel embed, including key holders."""
    embed = discord.Embed(
        title=f"Organizer Panel — {run.dungeon_label}",
        description=(
            f"Status: **{run.status.value.capitalize()}**\n"
            f"Raiders: **{view.join_count}**"
        ),
        color=COLOR_ORGANIZER,
    )
    if run.party or run.location:
        embed.add_field(name="Party", value=run.party or "—", inline=True)
        embed.add_field(name="Location", value=run.location or "—", inline=True)
    embed.add_field(name="Classes", value=format_class_counts(view.class_counts), inline=False)

    if view.key_holders:
        lines = []
        for key_type in sorted(view.key_holders):
            holders = view.key_holders[key_type]
            mentions = ", ".join(f"<@{user_id}>" for user_id in holders)
            lines.append(f"**{format_key_label(key_type)}** ({len(holders)}): {mentions}")
        embed.add_field(name="Key Reacts", value="\n".join(lines)[:1024], inline=False)

    if run.status == RunStatus.STARTED:
        window = (
            f"closes {_timestamp(run.key_window_ends_at)}"
            if run.key_window_ends_at is not None
            else "not opened"
        )
        embed.add_field(
            name="Keys",
            value=f"Popped: **{run.key_pop_count}** • Window {window}",
            inline=False,
        )
    if run.is_terminal:
        embed.set_footer(text="This run is closed. Controls are disabled.")
    return embed


def build_headcount_embed(headcount: Headcount, view: RunView) -> discord.Embed:
    """Build the public headcount embed."""
    labels = [dungeon_label(key) for key in headcount.dungeon_keys]
    title = "Headcount"
    if headcount.status == HeadcountStatus.CLOSED:
        title = "Headcount Ended"
    elif headcount.status == HeadcountStatus.CONVERTED:
        title = "Headcount Converted to Run"

    embed = discord.Embed(
        title=title,
        description=(
            f"Organizer: <@{headcount.organizer_id}>\n"
            + "\n".join(f"• {label}" for label in labels)
        ),
        color=COLOR_HEADCOUNT if headcount.status == HeadcountStatus.OPEN else COLOR_ENDED,
    )
    embed.add_field(name="Interested", value=str(view.join_count), inline=False)
    if view.key_counts:
        embed.add_field(
            name="Keys", value=format_key_counts(view.key_counts, label=dungeon_label), inline=False
        )
    return embed


def build_headcount_organizer_embed(headcount: Headcount, view: RunView) -> discord.Embed:
    """Build the private headcount organizer panel embed."""
    embed = discord.Embed(
        title="Headcount Organizer Panel",
        description=(
            f"Status: **{headcount.status.value.capitalize()}**\n"
            f"Interested: **{view.join_count}**"
        ),
        color=COLOR_ORGANIZER,
    )
    for key_type in sorted(view.key_holders):
        holders = view.key_holders[key_type]
        embed.add_field(
            name=f"{dungeon_label(key_type)} ({len(holders)})",
            value=", ".join(f"<@{user_id}>" for user_id in holders)[:1024],
            inline=False,
        )
    if headcount.status == HeadcountStatus.OPEN:
        embed.set_footer(text="Convert to start a run with everyone who showed interest.")
    return embed
