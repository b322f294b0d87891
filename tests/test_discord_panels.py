"""Tests for the dungeon catalog, panel embeds, and panel views."""

from __future__ import annotations

from datetime import UTC, datetime

import discord
import pytest

from raidcall.discord.dungeons import (
    CLASSES,
    DUNGEONS,
    dungeon_label,
    format_key_label,
    search_dungeons,
)
from raidcall.discord.embeds import (
    STATUS_TITLES,
    build_headcount_embed,
    build_headcount_organizer_embed,
    build_organizer_panel_embed,
    build_run_embed,
    format_class_counts,
    format_key_counts,
)
from raidcall.discord.render import DiscordPanelRenderer
from raidcall.discord.views import (
    Action,
    ComponentId,
    class_select_view,
    headcount_organizer_view,
    headcount_panel_view,
    run_organizer_view,
    run_panel_view,
)
from raidcall.models.run import (
    Headcount,
    HeadcountStatus,
    ReactionSource,
    Run,
    RunStatus,
    RunView,
)


def make_run(**overrides: object) -> Run:
    fields: dict[str, object] = {
        "id": "0123456789abcdef",
        "guild_id": "1",
        "organizer_id": "42",
        "dungeon_key": "ORYX_3",
        "dungeon_label": "Oryx's Sanctuary",
        "status": RunStatus.LIVE,
        "channel_id": "200",
        "post_message_id": "1000",
    }
    fields.update(overrides)
    return Run(**fields)  # type: ignore[arg-type]


def make_headcount(**overrides: object) -> Headcount:
    fields: dict[str, object] = {
        "id": "hc-1",
        "guild_id": "1",
        "organizer_id": "42",
        "dungeon_keys": ["ORYX_3", "PUB_HALLS"],
        "post_message_id": "3000",
    }
    fields.update(overrides)
    return Headcount(**fields)  # type: ignore[arg-type]


def make_view(**overrides: object) -> RunView:
    fields: dict[str, object] = {"target_id": "0123456789abcdef", "source": ReactionSource.RUN}
    fields.update(overrides)
    return RunView(**fields)  # type: ignore[arg-type]


def field_map(embed: discord.Embed) -> dict[str, str]:
    return {field.name: field.value for field in embed.fields}


def custom_ids(view: discord.ui.View) -> list[str]:
    return [item.custom_id for item in view.children]  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Dungeon catalog
# ---------------------------------------------------------------------------


class TestDungeons:
    def test_key_labels(self) -> None:
        assert format_key_label("SHIELD_RUNE") == "Shield Rune"
        assert format_key_label("WC_INC") == "WC Inc"
        assert format_key_label("LH_KEY") == "LH Key"

    def test_dungeon_label_falls_back(self) -> None:
        assert dungeon_label("ORYX_3") == "Oryx's Sanctuary"
        assert dungeon_label("MYSTERY_CAVE") == "Mystery Cave"

    def test_empty_search_lists_exalted_first(self) -> None:
        results = search_dungeons("")
        exalted = [d for d in results if d.exalted]
        assert results[: len(exalted)] == exalted
        assert len(results) == len(DUNGEONS)

    def test_prefix_beats_substring(self) -> None:
        results = search_dungeons("the")
        assert results[0].label.lower().startswith("the")

    def test_search_matches_code(self) -> None:
        assert search_dungeons("pub_")[0].key == "PUB_HALLS"

    def test_search_limit(self) -> None:
        assert len(search_dungeons("", limit=3)) == 3

    def test_no_match(self) -> None:
        assert search_dungeons("zzz") == []

    def test_classes_sorted(self) -> None:
        assert list(CLASSES) == sorted(CLASSES)


# ---------------------------------------------------------------------------
# Embed formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_no_classes(self) -> None:
        assert format_class_counts({}) == "None selected"
        assert format_class_counts({"Priest": 0}) == "None selected"

    def test_short_class_list(self) -> None:
        assert format_class_counts({"Wizard": 2, "Priest": 1}) == "Priest (1), Wizard (2)"

    def test_long_class_list_wraps(self) -> None:
        counts = {name: 1 for name in CLASSES[:7]}
        lines = format_class_counts(counts).split("\n")
        assert len(lines) == 3
        assert lines[0] == "Archer (1) • Assassin (1) • Bard (1)"

    def test_key_counts_in_declared_order(self) -> None:
        counts = {"HELM_RUNE": 1, "WC_INC": 3, "EXTRA": 2, "SWORD_RUNE": 0}
        text = format_key_counts(counts, DUNGEONS["ORYX_3"].key_types)
        assert text.split("\n") == ["**WC Inc**: 3", "**Helm Rune**: 1", "**Extra**: 2"]

    def test_no_keys(self) -> None:
        assert format_key_counts({}) == "No keys reported"


class TestRunEmbeds:
    def test_live_run(self) -> None:
        run = make_run(
            party="P1",
            location="USEast",
            description="Bring priests",
            auto_end_at=datetime(2026, 3, 14, 22, 0, tzinfo=UTC),
        )
        view = make_view(join_count=3, class_counts={"Priest": 2}, key_counts={"WC_INC": 1})

        embed = build_run_embed(run, view)

        assert embed.title == f"{STATUS_TITLES[RunStatus.LIVE]}: Oryx's Sanctuary"
        assert embed.description == "Organizer: <@42>"
        fields = field_map(embed)
        assert fields["Raiders"] == "3"
        assert fields["Classes"] == "Priest (2)"
        assert fields["Keys"] == "**WC Inc**: 1"
        assert fields["Party"] == "P1"
        assert fields["Location"] == "USEast"
        assert fields["Organizer Note"] == "Bring priests"
        assert "Auto-End" in fields
        assert embed.footer.text == "Run 01234567"

    def test_public_embed_has_no_names(self) -> None:
        view = make_view(key_counts={"WC_INC": 1}, key_holders={"WC_INC": ["999"]})
        embed = build_run_embed(make_run(), view)
        assert "999" not in str(embed.to_dict())

    def test_started_shows_key_window(self) -> None:
        run = make_run(
            status=RunStatus.STARTED,
            key_window_ends_at=datetime(2026, 3, 14, 20, 1, tzinfo=UTC),
            key_pop_count=2,
        )
        fields = field_map(build_run_embed(run, make_view()))
        assert fields["Key Window"].endswith("Keys popped: 2")

    def test_headcount_keys(self) -> None:
        view = make_view(headcount_key_counts={"ORYX_3": 2})
        fields = field_map(build_run_embed(make_run(), view))
        assert fields["Keys Offered at Headcount"] == "**Oryx's Sanctuary**: 2"

    def test_keyless_dungeon_has_no_keys_field(self) -> None:
        run = make_run(dungeon_key="PUB_HALLS", dungeon_label="Public Halls")
        assert "Keys" not in field_map(build_run_embed(run, make_view()))

    def test_organizer_embed_lists_holders(self) -> None:
        view = make_view(key_holders={"WC_INC": ["7", "8"]})
        embed = build_organizer_panel_embed(make_run(status=RunStatus.STARTED), view)
        fields = field_map(embed)
        assert fields["Key Reacts"] == "**WC Inc** (2): <@7>, <@8>"
        assert fields["Keys"] == "Popped: **0** • Window not opened"

    def test_closed_organizer_embed(self) -> None:
        embed = build_organizer_panel_embed(make_run(status=RunStatus.ENDED), make_view())
        assert embed.footer.text == "This run is closed. Controls are disabled."


class TestHeadcountEmbeds:
    @pytest.mark.parametrize(
        ("status", "title"),
        [
            (HeadcountStatus.OPEN, "Headcount"),
            (HeadcountStatus.CLOSED, "Headcount Ended"),
            (HeadcountStatus.CONVERTED, "Headcount Converted to Run"),
        ],
    )
    def test_titles(self, status: HeadcountStatus, title: str) -> None:
        embed = build_headcount_embed(make_headcount(status=status), make_view())
        assert embed.title == title

    def test_public_counts(self) -> None:
        view = make_view(join_count=4, key_counts={"ORYX_3": 1})
        embed = build_headcount_embed(make_headcount(), view)
        assert "• Oryx's Sanctuary" in embed.description
        assert field_map(embed) == {"Interested": "4", "Keys": "**Oryx's Sanctuary**: 1"}

    def test_organizer_holders(self) -> None:
        view = make_view(key_holders={"ORYX_3": ["7"]})
        embed = build_headcount_organizer_embed(make_headcount(), view)
        assert field_map(embed) == {"Oryx's Sanctuary (1)": "<@7>"}


# ---------------------------------------------------------------------------
# Views (discord.py views need a running loop, so these tests are async)
# ---------------------------------------------------------------------------


class TestComponentId:
    def test_round_trip_with_arg(self) -> None:
        cid = ComponentId(Action.KEY, "run-1", "WC_INC")
        assert cid.encode() == "raidcall:key:run-1:WC_INC"
        assert ComponentId.parse(cid.encode()) == cid

    def test_parse_rejects_foreign_ids(self) -> None:
        assert ComponentId.parse(None) is None
        assert ComponentId.parse("other:join:1") is None
        assert ComponentId.parse("raidcall:join") is None
        assert ComponentId.parse("raidcall:dance:1") is None

    def test_organizer_actions(self) -> None:
        assert ComponentId(Action.START, "r").is_organizer_action
        assert not ComponentId(Action.JOIN, "r").is_organizer_action


class TestRunViews:
    async def test_public_buttons(self) -> None:
        run = make_run()
        view = run_panel_view(run)
        ids = custom_ids(view)
        assert ids[:3] == [
            f"raidcall:join:{run.id}",
            f"raidcall:leave:{run.id}",
            f"raidcall:org:{run.id}",
        ]
        assert ids[3:] == [
            f"raidcall:key:{run.id}:{key}" for key in DUNGEONS["ORYX_3"].key_types
        ]
        assert view.timeout is None

    async def test_terminal_run_has_no_buttons(self) -> None:
        assert run_panel_view(make_run(status=RunStatus.CANCELLED)).children == []

    @pytest.mark.parametrize(
        ("status", "actions"),
        [
            (RunStatus.PENDING, ["golive", "cancel"]),
            (RunStatus.LIVE, ["start", "cancel", "details"]),
            (RunStatus.ENDED, []),
        ],
    )
    async def test_organizer_controls(self, status: RunStatus, actions: list[str]) -> None:
        view = run_organizer_view(make_run(status=status, dungeon_key="SHATTERS"))
        assert [cid.split(":")[1] for cid in custom_ids(view)] == actions

    async def test_started_controls_include_callouts(self) -> None:
        view = run_organizer_view(make_run(status=RunStatus.STARTED))
        ids = custom_ids(view)
        assert [cid.split(":")[1] for cid in ids[:4]] == ["keypop", "end", "cancel", "details"]
        assert ids[4:] == [
            f"raidcall:announce:{make_run().id}:{callout}" for callout in ("realm", "mini", "third")
        ]

    async def test_class_select(self) -> None:
        view = class_select_view("run-1")
        (select,) = view.children
        assert select.custom_id == "raidcall:class:run-1"
        assert [option.value for option in select.options] == list(CLASSES)


class TestHeadcountViews:
    async def test_public_buttons_skip_keyless_dungeons(self) -> None:
        view = headcount_panel_view(make_headcount())
        assert custom_ids(view) == [
            "raidcall:hcjoin:hc-1",
            "raidcall:hcorg:hc-1",
            "raidcall:hckey:hc-1:ORYX_3",
        ]

    async def test_closed_headcount_has_no_buttons(self) -> None:
        closed = make_headcount(status=HeadcountStatus.CLOSED)
        assert headcount_panel_view(closed).children == []
        assert headcount_organizer_view(closed).children == []

    async def test_organizer_conversions(self) -> None:
        view = headcount_organizer_view(make_headcount())
        assert custom_ids(view) == [
            "raidcall:hcend:hc-1",
            "raidcall:hcconvert:hc-1:ORYX_3",
            "raidcall:hcconvert:hc-1:PUB_HALLS",
        ]


class TestRenderer:
    async def test_render_run(self) -> None:
        render = DiscordPanelRenderer().render_run(make_run(), make_view(join_count=1))
        assert render.public.embed.title.endswith("Oryx's Sanctuary")
        assert render.private is not None
        assert render.private.embed.title.startswith("Organizer Panel")
        assert set(render.public.as_kwargs()) == {"embed", "view"}

    async def test_render_headcount(self) -> None:
        render = DiscordPanelRenderer().render_headcount(make_headcount(), make_view())
        assert render.public.embed.title == "Headcount"
        assert render.organizer.embed.title == "Headcount Organizer Panel"
