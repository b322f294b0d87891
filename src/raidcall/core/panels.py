"""Panel handles and the in-process panel registry.

A panel is any Discord surface showing a run or headcount's aggregate view.
Each handle variant knows one way to edit its surface:

- ``PublicMessageHandle``: a channel message, edited via ``Message.edit``.
- ``InteractionReplyHandle``: an interaction's (often ephemeral) reply,
  edited via ``Interaction.edit_original_response`` until the token expires.
- ``FollowupHandle``: a follow-up sent through the interaction webhook,
  edited via ``Webhook.edit_message`` until the token expires (~15 minutes).

The registry maps a public-message id to the handles open for it. It is
process-local: a restart forgets every ephemeral panel, which then simply
stops auto-refreshing until reopened.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

import discord

from raidcall.core.errors import ExternalServiceError, HandleExpiredError

logger = logging.getLogger(__name__)

# Discord JSON error code for "Invalid Webhook Token" (expired interaction).
INVALID_WEBHOOK_TOKEN = 50027


@dataclasses.dataclass(frozen=True)
class PanelContent:
    """A rendered panel. Fields left as None are not touched by the edit."""

    content: str | None = None
    embed: discord.Embed | None = None
    view: discord.ui.View | None = None

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.content is not None:
            kwargs["content"] = self.content
        if self.embed is not None:
            kwargs["embed"] = self.embed
        if self.view is not None:
            kwargs["view"] = self.view
        return kwargs


# Handles compare by identity (eq=False): two panels showing the same message
# through different interactions are still different handles.


@dataclasses.dataclass(eq=False)
class PublicMessageHandle:
    message: discord.Message


@dataclasses.dataclass(eq=False)
class InteractionReplyHandle:
    interaction: discord.Interaction


@dataclasses.dataclass(eq=False)
class FollowupHandle:
    webhook: discord.Webhook
    message_id: int


PanelHandle = PublicMessageHandle | InteractionReplyHandle | FollowupHandle


@dataclasses.dataclass(frozen=True)
class PanelRender:
    """One aggregate view rendered twice: for the channel and for organizers.

    Public messages get ``public``; ephemeral organizer panels get
    ``private`` (falling back to ``public``). Participant names only ever
    appear in ``private``.
    """

    public: PanelContent
    private: PanelContent | None = None

    @property
    def organizer(self) -> PanelContent:
        return self.private if self.private is not None else self.public

    def for_handle(self, handle: PanelHandle) -> PanelContent:
        if isinstance(handle, PublicMessageHandle):
            return self.public
        return self.organizer


def describe_handle(handle: PanelHandle) -> str:
    """Short identifier for logs."""
    if isinstance(handle, PublicMessageHandle):
        return f"public:{handle.message.id}"
    if isinstance(handle, InteractionReplyHandle):
        return f"reply:{handle.interaction.id}"
    return f"followup:{handle.message_id}"


async def apply_edit(handle: PanelHandle, panel: PanelContent) -> None:
    """Push *panel* to the surface behind *handle*.

    Raises:
        HandleExpiredError: The message is gone or the interaction token expired.
        ExternalServiceError: Any other Discord failure (rate limit, outage).
    """
    kwargs = panel.as_kwargs()
    try:
        if isinstance(handle, PublicMessageHandle):
            await handle.message.edit(**kwargs)
        elif isinstance(handle, InteractionReplyHandle):
            await handle.interaction.edit_original_response(**kwargs)
        elif isinstance(handle, FollowupHandle):
            await handle.webhook.edit_message(handle.message_id, **kwargs)
        else:
            raise TypeError(f"Unknown panel handle {type(handle).__name__}")
    except discord.NotFound as exc:
        raise HandleExpiredError(f"{describe_handle(handle)} no longer exists") from exc
    except discord.HTTPException as exc:
        if exc.status == 401 or exc.code == INVALID_WEBHOOK_TOKEN:
            raise HandleExpiredError(f"{describe_handle(handle)} token expired") from exc
        raise ExternalServiceError(
            f"Discord rejected edit of {describe_handle(handle)}: {exc.status}"
        ) from exc


class PanelRegistry:
    """Directory of open panels, keyed by the run/headcount public-message id.

    Every method is synchronous and never awaits, so on the asyncio loop a
    mutation cannot interleave with a ``list()`` snapshot. Entries are
    replaced wholesale (copy-on-write tuples) rather than mutated in place.

    Usage:
        registry = PanelRegistry()
        registry.register(message_id, InteractionReplyHandle(interaction), owner_id=user_id)
        for handle in registry.list(message_id):
            ...
        registry.clear(message_id)
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[PanelHandle, ...]] = {}
        # (key, owner_id) -> that owner's current handle. An organizer has at
        # most one private panel per run; reopening replaces the old one.
        self._owners: dict[tuple[str, str], PanelHandle] = {}

    def register(self, key: str, handle: PanelHandle, *, owner_id: str | None = None) -> None:
        """Track *handle* for refreshes of *key*. Registering twice is a no-op."""
        current = self._entries.get(key, ())
        if owner_id is not None:
            previous = self._owners.get((key, owner_id))
            if previous is not None and previous is not handle:
                current = tuple(h for h in current if h is not previous)
            self._owners[(key, owner_id)] = handle
        if any(h is handle for h in current):
            self._entries[key] = current
            return
        self._entries[key] = (*current, handle)

    def unregister(self, key: str, handle: PanelHandle) -> bool:
        """Stop tracking *handle* (by identity). Returns True if it was registered."""
        current = self._entries.get(key, ())
        remaining = tuple(h for h in current if h is not handle)
        if len(remaining) == len(current):
            return False
        if remaining:
            self._entries[key] = remaining
        else:
            del self._entries[key]
        stale = [k for k, h in self._owners.items() if k[0] == key and h is handle]
        for owner_key in stale:
            del self._owners[owner_key]
        return True

    def list(self, key: str) -> list[PanelHandle]:
        """Snapshot of the handles for *key*, in registration order."""
        return [*self._entries.get(key, ())]

    def clear(self, key: str) -> int:
        """Forget every handle for *key*. Returns how many were dropped."""
        removed = self._entries.pop(key, ())
        for owner_key in [k for k in self._owners if k[0] == key]:
            del self._owners[owner_key]
        return len(removed)

    def keys(self) -> list[str]:
        return [*self._entries]

    def __len__(self) -> int:
        return sum(len(handles) for handles in self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries
