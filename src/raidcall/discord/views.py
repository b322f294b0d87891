"""Discord UI components for run and headcount panels.

Panel buttons carry a structured ``custom_id`` instead of per-view
callbacks, so they keep working after a restart: the bot routes every
component interaction by parsing its id (see ``ComponentId``).

Views must be built while an event loop is running (discord.py requirement).
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

import discord

from raidcall.discord.dungeons import (
    CLASSES,
    PROGRESSION_CALLOUTS,
    dungeon_label,
    format_key_label,
    get_dungeon,
)
from raidcall.models.run import Headcount, HeadcountStatus, Run, RunStatus

logger = logging.getLogger(__name__)

CUSTOM_ID_PREFIX = "raidcall"

# Discord allows five buttons per action row and five rows per message.
BUTTONS_PER_ROW = 5
MAX_ROWS = 5


class Action(StrEnum):
    """Component actions encoded into custom ids."""

    JOIN = "join"
    LEAVE = "leave"
    CLASS = "class"
    KEY = "key"
    ORGANIZER = "org"
    GO_LIVE = "golive"
    START = "start"
    POP_KEY = "keypop"
    END = "end"
    CANCEL = "cancel"
    DETAILS = "details"
    ANNOUNCE = "announce"
    HEADCOUNT_JOIN = "hcjoin"
    HEADCOUNT_KEY = "hckey"
    HEADCOUNT_ORGANIZER = "hcorg"
    HEADCOUNT_END = "hcend"
    HEADCOUNT_CONVERT = "hcconvert"


# Actions only a run's organizer (or an organizer-role holder) may take.
ORGANIZER_ACTIONS: frozenset[Action] = frozenset(
    {
        Action.ORGANIZER,
        Action.GO_LIVE,
        Action.START,
        Action.POP_KEY,
        Action.END,
        Action.CANCEL,
        Action.DETAILS,
        Action.ANNOUNCE,
        Action.HEADCOUNT_ORGANIZER,
        Action.HEADCOUNT_END,
        Action.HEADCOUNT_CONVERT,
    }
)


@dataclasses.dataclass(frozen=True)
class ComponentId:
    """``raidcall:<action>:<target_id>[:<arg>]``"""

    action: Action
    target_id: str
    arg: str | None = None

    def encode(self) -> str:
        parts = [CUSTOM_ID_PREFIX, self.action.value, self.target_id]
        if self.arg is not None:
            parts.append(self.arg)
        return ":".join(parts)

    @classmethod
    def parse(cls, custom_id: str | None) -> ComponentId | None:
        """Decode a custom id. Returns None for ids this bot did not issue."""
        if not custom_id:
            return None
        parts = custom_id.split(":", 3)
        if len(parts) < 3 or parts[0] != CUSTOM_ID_PREFIX:
            return None
        try:
            action = Action(parts[1])
        except ValueError:
            logger.warning("unknown_component_action custom_id=%s", custom_id)
            return None
        return cls(action=action, target_id=parts[2], arg=parts[3] if len(parts) > 3 else None)

    @property
    def is_organizer_action(self) -> bool:
        return self.action in ORGANIZER_ACTIONS


def _button(
    label: str,
    component_id: ComponentId,
    style: discord.ButtonStyle = discord.ButtonStyle.secondary,
    *,
    row: int | None = None,
) -> discord.ui.Button:
    return discord.ui.Button(label=label, style=style, custom_id=component_id.encode(), row=row)


def _add_rows(view: discord.ui.View, buttons: list[discord.ui.Button], first_row: int) -> None:
    """Lay *buttons* out left to right starting at *first_row*; drop overflow."""
    capacity = (MAX_ROWS - first_row) * BUTTONS_PER_ROW
    if len(buttons) > capacity:
        logger.warning("panel_buttons_truncated count=%d capacity=%d", len(buttons), capacity)
    for index, button in enumerate(buttons[:capacity]):
        button.row = first_row + index // BUTTONS_PER_ROW
        view.add_item(button)


def run_panel_view(run: Run) -> discord.ui.View:
    """Public run buttons: Join, Leave, Organizer Panel, then one per key type.

    Terminal runs get an empty view, which strips the buttons on edit.
    """
    view = discord.ui.View(timeout=None)
    if run.is_terminal:
        return view

    success, danger = discord.ButtonStyle.success, discord.ButtonStyle.danger
    view.add_item(_button("Join", ComponentId(Action.JOIN, run.id), success, row=0))
    view.add_item(_button("Leave", ComponentId(Action.LEAVE, run.id), danger, row=0))
    view.add_item(_button("Organizer Panel", ComponentId(Action.ORGANIZER, run.id), row=0))

    dungeon = get_dungeon(run.dungeon_key)
    if dungeon is not None:
        keys = [
            _button(format_key_label(key_type), ComponentId(Action.KEY, run.id, key_type))
            for key_type in dungeon.key_types
        ]
        _add_rows(view, keys, first_row=1)
    return view


def run_organizer_view(run: Run) -> discord.ui.View:
    """Organizer controls for the run's current status."""
    view = discord.ui.View(timeout=None)
    success, danger = discord.ButtonStyle.success, discord.ButtonStyle.danger
    details = _button("Set Party / Location", ComponentId(Action.DETAILS, run.id), row=1)
    cancel = _button("Cancel", ComponentId(Action.CANCEL, run.id), danger, row=0)

    if run.status == RunStatus.PENDING:
        view.add_item(_button("Go Live", ComponentId(Action.GO_LIVE, run.id), success, row=0))
        view.add_item(cancel)
    elif run.status == RunStatus.LIVE:
        view.add_item(_button("Start", ComponentId(Action.START, run.id), success, row=0))
        view.add_item(cancel)
        view.add_item(details)
    elif run.status == RunStatus.STARTED:
        view.add_item(_button("Key Popped", ComponentId(Action.POP_KEY, run.id), success, row=0))
        view.add_item(_button("End Run", ComponentId(Action.END, run.id), danger, row=0))
        view.add_item(cancel)
        view.add_item(details)
        callouts = [
            _button(label, ComponentId(Action.ANNOUNCE, run.id, callout_id))
            for callout_id, label in PROGRESSION_CALLOUTS.get(run.dungeon_key, {}).items()
        ]
        _add_rows(view, callouts, first_row=2)
    return view


def class_select_view(run_id: str) -> discord.ui.View:
    """Ephemeral class picker shown after joining a run."""
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Select(
            custom_id=ComponentId(Action.CLASS, run_id).encode(),
            placeholder="Pick the class you are bringing",
            options=[discord.SelectOption(label=name, value=name) for name in CLASSES],
        )
    )
    return view


def _has_keys(dungeon_key: str) -> bool:
    dungeon = get_dungeon(dungeon_key)
    return dungeon is None or bool(dungeon.key_types)


def headcount_panel_view(headcount: Headcount) -> discord.ui.View:
    """Public headcount buttons: Interested, Organizer Panel, one key offer per dungeon."""
    view = discord.ui.View(timeout=None)
    if headcount.status != HeadcountStatus.OPEN:
        return view

    view.add_item(
        _button(
            "Interested",
            ComponentId(Action.HEADCOUNT_JOIN, headcount.id),
            discord.ButtonStyle.success,
            row=0,
        )
    )
    view.add_item(
        _button("Organizer Panel", ComponentId(Action.HEADCOUNT_ORGANIZER, headcount.id), row=0)
    )

    offers = [
        _button(f"{dungeon_label(key)} Key", ComponentId(Action.HEADCOUNT_KEY, headcount.id, key))
        for key in headcount.dungeon_keys
        if _has_keys(key)
    ]
    _add_rows(view, offers, first_row=1)
    return view


def headcount_organizer_view(headcount: Headcount) -> discord.ui.View:
    """End the headcount, or convert it into a run for one of its dungeons."""
    view = discord.ui.View(timeout=None)
    if headcount.status != HeadcountStatus.OPEN:
        return view

    view.add_item(
        _button(
            "End Headcount",
            ComponentId(Action.HEADCOUNT_END, headcount.id),
            discord.ButtonStyle.danger,
            row=0,
        )
    )
    conversions = [
        _button(
            f"Convert: {dungeon_label(key)}",
            ComponentId(Action.HEADCOUNT_CONVERT, headcount.id, key),
            discord.ButtonStyle.success,
        )
        for key in headcount.dungeon_keys
    ]
    _add_rows(view, conversions, first_row=1)
    return view


class RunDetailsModal(discord.ui.Modal, title="Party & Location"):
    """Text inputs for the run's party and location. Blank clears a field."""

    party = discord.ui.TextInput(label="Party", required=False, max_length=100)
    location = discord.ui.TextInput(label="Location", required=False, max_length=100)

    def __init__(
        self,
        *,
        run: Run,
        on_save: Callable[[discord.Interaction, str, str], Awaitable[None]],
    ) -> None:
        super().__init__()
        self.run_id = run.id
        self.party.default = run.party
        self.location.default = run.location
        self.on_save = on_save

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.on_save(interaction, self.party.value or "", self.location.value or "")
