"""Tests for the panel refresh orchestrator."""

import asyncio
from unittest.mock import AsyncMock

from conftest import make_http_error, make_message

from raidcall.core.panels import (
    FollowupHandle,
    PanelContent,
    PanelRegistry,
    PanelRender,
    PublicMessageHandle,
)
from raidcall.core.refresh import PanelRefresher


def make_refresher() -> PanelRefresher:
    return PanelRefresher(PanelRegistry())


class TestRefreshAll:
    async def test_empty_key(self):
        result = await make_refresher().refresh_all("1000", PanelContent(content="x"))
        assert result.attempted == 0

    async def test_expired_handle_does_not_stop_the_others(self):
        refresher = make_refresher()
        healthy = [PublicMessageHandle(make_message(i)) for i in range(3)]
        expired = PublicMessageHandle(make_message(99))
        expired.message.edit.side_effect = make_http_error(404, "Unknown Message")
        refresher.registry.register("1000", healthy[0])
        refresher.registry.register("1000", expired)
        refresher.registry.register("1000", healthy[1])
        refresher.registry.register("1000", healthy[2])

        result = await refresher.refresh_all("1000", PanelContent(content="3 raiders"))

        assert result.refreshed == 3
        assert result.expired == 1
        for handle in healthy:
            handle.message.edit.assert_awaited_once_with(content="3 raiders")
        assert refresher.registry.list("1000") == healthy

    async def test_transient_failure_keeps_the_handle(self):
        refresher = make_refresher()
        flaky = PublicMessageHandle(make_message())
        flaky.message.edit.side_effect = make_http_error(503, "unavailable")
        refresher.registry.register("1000", flaky)

        result = await refresher.refresh_all("1000", PanelContent(content="x"))

        assert result.failed == 1
        assert refresher.registry.list("1000") == [flaky]

    async def test_unexpected_error_is_contained(self):
        refresher = make_refresher()
        broken = PublicMessageHandle(make_message(1))
        broken.message.edit.side_effect = RuntimeError("boom")
        fine = PublicMessageHandle(make_message(2))
        refresher.registry.register("1000", broken)
        refresher.registry.register("1000", fine)

        result = await refresher.refresh_all("1000", PanelContent(content="x"))

        assert result.failed == 1
        assert result.refreshed == 1
        fine.message.edit.assert_awaited_once()

    async def test_render_splits_public_and_private(self):
        refresher = make_refresher()
        public = PublicMessageHandle(make_message())
        webhook = AsyncMock()
        followup = FollowupHandle(webhook, 42)
        refresher.registry.register("1000", public)
        refresher.registry.register("1000", followup, owner_id="organizer-1")

        render = PanelRender(
            public=PanelContent(content="public"), private=PanelContent(content="private")
        )
        result = await refresher.refresh_all("1000", render)

        assert result.refreshed == 2
        public.message.edit.assert_awaited_once_with(content="public")
        webhook.edit_message.assert_awaited_once_with(42, content="private")


class TestSerialization:
    async def test_edits_to_one_handle_never_overlap(self):
        refresher = make_refresher()
        handle = PublicMessageHandle(make_message())
        active = 0
        peak = 0
        seen: list[str] = []

        async def slow_edit(**kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            seen.append(kwargs["content"])
            active -= 1

        handle.message.edit.side_effect = slow_edit
        refresher.registry.register("1000", handle)

        await asyncio.gather(
            refresher.refresh_all("1000", PanelContent(content="first")),
            refresher.refresh_all("1000", PanelContent(content="second")),
        )

        assert peak == 1
        assert seen == ["first", "second"]


class TestClose:
    async def test_close_drops_everything(self):
        refresher = make_refresher()
        handle = PublicMessageHandle(make_message())
        refresher.registry.register("1000", handle)
        refresher.registry.register("1000", PublicMessageHandle(make_message()))

        assert refresher.close("1000") == 2
        assert refresher.registry.list("1000") == []

        result = await refresher.refresh_all("1000", PanelContent(content="x"))
        assert result.attempted == 0
        handle.message.edit.assert_not_awaited()
