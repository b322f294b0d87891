"""Tests for the scheduled auto-end tick."""

from unittest.mock import AsyncMock, patch

from conftest import FakeClock, make_live_run, make_message

from raidcall.core.coordinator import RunCoordinator
from raidcall.core.errors import ExternalServiceError
from raidcall.core.panels import PublicMessageHandle
from raidcall.core.scheduler_runner import tick_auto_end
from raidcall.models.run import RunStatus


class TestTickAutoEnd:
    async def test_nothing_due(self, coordinator: RunCoordinator):
        await make_live_run(coordinator.runs)
        assert await tick_auto_end(coordinator) == 0

    async def test_ends_overdue_runs(self, coordinator: RunCoordinator, clock: FakeClock):
        overdue = await make_live_run(coordinator.runs, message_id="1", auto_end_minutes=10)
        fresh = await make_live_run(coordinator.runs, message_id="2", auto_end_minutes=60)
        handle = PublicMessageHandle(make_message(1))
        coordinator.register_panel("1", handle)

        clock.advance(minutes=15)
        assert await tick_auto_end(coordinator) == 1

        assert (await coordinator.runs.get_run(overdue.id)).status == RunStatus.ENDED
        assert (await coordinator.runs.get_run(fresh.id)).status == RunStatus.LIVE
        handle.message.edit.assert_awaited_once_with(content="ended raiders=0")
        assert coordinator.registry.list("1") == []

    async def test_one_failure_does_not_stall_the_rest(
        self, coordinator: RunCoordinator, clock: FakeClock
    ):
        first = await make_live_run(coordinator.runs, message_id="1", auto_end_minutes=10)
        second = await make_live_run(coordinator.runs, message_id="2", auto_end_minutes=10)
        real = coordinator.change_status

        async def flaky(run_id, target, **kwargs):
            if run_id == first.id:
                raise RuntimeError("boom")
            return await real(run_id, target, **kwargs)

        clock.advance(minutes=15)
        with patch.object(coordinator, "change_status", side_effect=flaky):
            assert await tick_auto_end(coordinator) == 1

        assert (await coordinator.runs.get_run(first.id)).status == RunStatus.LIVE
        assert (await coordinator.runs.get_run(second.id)).status == RunStatus.ENDED

    async def test_store_outage_is_logged(self, coordinator: RunCoordinator):
        with patch.object(
            coordinator.runs,
            "due_for_auto_end",
            AsyncMock(side_effect=ExternalServiceError("database unavailable")),
        ):
            assert await tick_auto_end(coordinator) == 0
