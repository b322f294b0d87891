"""Progression pings: one superseding status message per run.

Each ping deletes the run's previous ping (best effort), posts a new one,
and stores its id on the run. Delete-then-send is unconditional, so a run
never carries more than one live ping even after repeated failures.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

import discord

from raidcall.core.runs import RunStateMachine
from raidcall.models.run import Run

logger = logging.getLogger(__name__)


def build_ping_content(
    run: Run,
    message_text: str,
    *,
    include_party_location: bool = True,
    expires_at: datetime | None = None,
    mention_here: bool = False,
    extra_role_ids: Iterable[str] = (),
) -> str:
    """Compose the ping text. Pure function, no Discord access."""
    mentions: list[str] = []
    if mention_here:
        mentions.append("@here")
    mentions.extend(f"<@&{role_id}>" for role_id in extra_role_ids if role_id)
    if run.role_id:
        mentions.append(f"<@&{run.role_id}>")

    content = f"**{message_text}**"
    if mentions:
        content += " " + " ".join(mentions)

    if expires_at is not None:
        content += (
            f"\n\nPortal expires <t:{int(expires_at.timestamp())}:R> • **{run.dungeon_label}**"
        )
    else:
        content += f"\n\n**{run.dungeon_label}**"

    if include_party_location:
        info: list[str] = []
        if run.party:
            info.append(f"Party: **{run.party}**")
        if run.location:
            info.append(f"Location: **{run.location}**")
        if run.key_pop_count > 0:
            info.append(f"Keys popped: **{run.key_pop_count}**")
        if info:
            content += " • " + " • ".join(info)

    url = run.panel_url()
    if url:
        content += f"\n[Jump to Raid Panel]({url})"
    return content


class ProgressionPingDispatcher:
    """Sends superseding progression pings for runs."""

    def __init__(self, runs: RunStateMachine, client: discord.Client) -> None:
        self.runs = runs
        self.client = client

    async def _resolve_channel(self, channel_id: str) -> discord.abc.Messageable | None:
        channel = self.client.get_channel(int(channel_id))
        if channel is None:
            try:
                channel = await self.client.fetch_channel(int(channel_id))
            except discord.HTTPException as exc:
                logger.warning(
                    "ping_channel_unavailable channel=%s status=%s", channel_id, exc.status
                )
                return None
        if not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    async def _delete_previous(self, channel: discord.abc.Messageable, run: Run) -> None:
        if not run.ping_message_id:
            return
        try:
            message_id = int(run.ping_message_id)
            await channel.get_partial_message(message_id).delete()  # type: ignore[attr-defined]
            logger.debug("ping_previous_deleted run=%s message=%s", run.id, run.ping_message_id)
        except discord.NotFound:
            logger.debug(
                "ping_previous_already_gone run=%s message=%s", run.id, run.ping_message_id
            )
        except discord.HTTPException as exc:
            logger.warning(
                "ping_previous_delete_failed run=%s message=%s status=%s",
                run.id,
                run.ping_message_id,
                exc.status,
            )

    async def send_progression_ping(
        self,
        run_id: str,
        message_text: str,
        *,
        include_party_location: bool = True,
        expires_at: datetime | None = None,
        mention_here: bool = False,
        extra_role_ids: Iterable[str] = (),
    ) -> str | None:
        """Replace the run's ping with a new one and return the new message id.

        Returns None if the run has no channel yet or Discord refused the send;
        the failure is logged, never raised. A missing run raises NotFoundError.
        """
        run = await self.runs.get_run(run_id)
        if not run.channel_id or not run.post_message_id:
            logger.warning("ping_skipped_no_panel run=%s", run_id)
            return None

        channel = await self._resolve_channel(run.channel_id)
        if channel is None:
            return None

        await self._delete_previous(channel, run)

        content = build_ping_content(
            run,
            message_text,
            include_party_location=include_party_location,
            expires_at=expires_at,
            mention_here=mention_here,
            extra_role_ids=extra_role_ids,
        )
        try:
            message = await channel.send(
                content=content,
                allowed_mentions=discord.AllowedMentions(everyone=mention_here, roles=True),
            )
        except discord.HTTPException as exc:
            logger.error("ping_send_failed run=%s status=%s", run_id, exc.status)
            return None

        await self.runs.set_ping_message(run_id, str(message.id))
        logger.info(
            "ping_sent run=%s message=%s text=%s", run_id, message.id, message_text
        )
        return str(message.id)
