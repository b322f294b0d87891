"""Render aggregate views into Discord panel content."""

from __future__ import annotations

from raidcall.core.panels import PanelContent, PanelRender
from raidcall.discord.embeds import (
    build_headcount_embed,
    build_headcount_organizer_embed,
    build_organizer_panel_embed,
    build_run_embed,
)
from raidcall.discord.views import (
    headcount_organizer_view,
    headcount_panel_view,
    run_organizer_view,
    run_panel_view,
)
from raidcall.models.run import Headcount, Run, RunView


class DiscordPanelRenderer:
    """Builds the public and organizer renditions of one aggregate view.

    Must be called from a coroutine: discord.py views need a running loop.
    """

    def render_run(self, run: Run, view: RunView) -> PanelRender:
        return PanelRender(
            public=PanelContent(embed=build_run_embed(run, view), view=run_panel_view(run)),
            private=PanelContent(
                embed=build_organizer_panel_embed(run, view), view=run_organizer_view(run)
            ),
        )

    def render_headcount(self, headcount: Headcount, view: RunView) -> PanelRender:
        return PanelRender(
            public=PanelContent(
                embed=build_headcount_embed(headcount, view),
                view=headcount_panel_view(headcount),
            ),
            private=PanelContent(
                embed=build_headcount_organizer_embed(headcount, view),
                view=headcount_organizer_view(headcount),
            ),
        )
