"""Run coordinator: the seam button and command handlers call.

Every participant or organizer action follows the same path:

    mutate (ledger or state machine) -> re-read aggregate -> render
        -> refresh every registered panel [-> progression ping]

The refresh always re-reads the latest aggregate instead of carrying state
forward, so a refresh that lands out of order is repaired by the next one.
State mutations raise; refreshes and pings only log.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from raidcall.core.errors import InvalidTransitionError
from raidcall.core.headcount import HeadcountService
from raidcall.core.ledger import ReactionLedger
from raidcall.core.panels import PanelHandle, PanelRegistry, PanelRender
from raidcall.core.ping import ProgressionPingDispatcher
from raidcall.core.refresh import PanelRefresher, RefreshResult
from raidcall.core.roles import RunRoleManager
from raidcall.core.runs import RunStateMachine
from raidcall.models.run import (
    JOIN,
    LEAVE,
    TERMINAL_STATUSES,
    Headcount,
    HeadcountStatus,
    ReactionOutcome,
    ReactionSource,
    Run,
    RunStatus,
    RunView,
    is_participation_type,
)

logger = logging.getLogger(__name__)

# Ping text for phase advances.
STATUS_PING_TEXT: dict[RunStatus, str] = {
    RunStatus.LIVE: "Raid Starting!",
    RunStatus.STARTED: "Raid Started!",
}
KEY_POPPED_TEXT = "Key Popped!"


class PanelRenderer(Protocol):
    def render_run(self, run: Run, view: RunView) -> PanelRender: ...

    def render_headcount(self, headcount: Headcount, view: RunView) -> PanelRender: ...


class RunCoordinator:
    """Coordinates ledger, state machine, panels, and pings for runs and headcounts."""

    def __init__(
        self,
        *,
        ledger: ReactionLedger,
        runs: RunStateMachine,
        headcounts: HeadcountService,
        refresher: PanelRefresher,
        renderer: PanelRenderer,
        pinger: ProgressionPingDispatcher | None = None,
        run_roles: RunRoleManager | None = None,
        dungeon_role_pings: Mapping[str, str] | None = None,
    ) -> None:
        self.ledger = ledger
        self.runs = runs
        self.headcounts = headcounts
        self.refresher = refresher
        self.renderer = renderer
        self.pinger = pinger
        self.run_roles = run_roles
        self.dungeon_role_pings = dict(dungeon_role_pings or {})

    @property
    def registry(self) -> PanelRegistry:
        return self.refresher.registry

    # --- Views ---

    async def build_run_view(self, run: Run) -> RunView:
        totals = await self.ledger.aggregate(run.id, ReactionSource.RUN)
        headcount_keys: dict[str, int] = {}
        if run.headcount_id:
            headcount_totals = await self.ledger.aggregate(
                run.headcount_id, ReactionSource.HEADCOUNT
            )
            headcount_keys = {
                k: v for k, v in headcount_totals.items() if not is_participation_type(k)
            }
        return RunView(
            target_id=run.id,
            source=ReactionSource.RUN,
            join_count=totals.get(JOIN, 0),
            class_counts=await self.ledger.category_counts(run.id, ReactionSource.RUN),
            key_counts={k: v for k, v in totals.items() if not is_participation_type(k)},
            headcount_key_counts=headcount_keys,
            key_holders=await self.ledger.key_holders(run.id, ReactionSource.RUN),
        )

    async def build_headcount_view(self, headcount: Headcount) -> RunView:
        totals = await self.ledger.aggregate(headcount.id, ReactionSource.HEADCOUNT)
        return RunView(
            target_id=headcount.id,
            source=ReactionSource.HEADCOUNT,
            join_count=totals.get(JOIN, 0),
            class_counts=await self.ledger.category_counts(headcount.id, ReactionSource.HEADCOUNT),
            key_counts={k: v for k, v in totals.items() if not is_participation_type(k)},
            key_holders=await self.ledger.key_holders(headcount.id, ReactionSource.HEADCOUNT),
        )

    async def build_view(self, run_id: str) -> RunView:
        """Latest aggregate view for *run_id*, read fresh from the ledger."""
        return await self.build_run_view(await self.runs.get_run(run_id))

    async def render_run(self, run_id: str) -> tuple[Run, RunView, PanelRender]:
        run = await self.runs.get_run(run_id)
        view = await self.build_run_view(run)
        return run, view, self.renderer.render_run(run, view)

    async def render_headcount(self, headcount_id: str) -> tuple[Headcount, RunView, PanelRender]:
        headcount = await self.headcounts.get_headcount(headcount_id)
        view = await self.build_headcount_view(headcount)
        return headcount, view, self.renderer.render_headcount(headcount, view)

    # --- Panels ---

    def register_panel(self, key: str, handle: PanelHandle, *, owner_id: str | None = None) -> None:
        self.registry.register(key, handle, owner_id=owner_id)

    async def refresh_run(self, run: Run) -> RefreshResult:
        """Re-render *run* from the latest aggregate onto all of its panels."""
        if not run.post_message_id:
            return RefreshResult()
        view = await self.build_run_view(run)
        return await self.refresher.refresh_all(
            run.post_message_id, self.renderer.render_run(run, view)
        )

    async def refresh_headcount(self, headcount: Headcount) -> RefreshResult:
        if not headcount.post_message_id:
            return RefreshResult()
        view = await self.build_headcount_view(headcount)
        return await self.refresher.refresh_all(
            headcount.post_message_id, self.renderer.render_headcount(headcount, view)
        )

    async def _safe_refresh_run(self, run: Run) -> None:
        try:
            await self.refresh_run(run)
        except Exception:  # Best-effort: the mutation already committed
            logger.exception("run_refresh_error run=%s", run.id)

    async def _safe_refresh_headcount(self, headcount: Headcount) -> None:
        try:
            await self.refresh_headcount(headcount)
        except Exception:  # Best-effort: the mutation already committed
            logger.exception("headcount_refresh_error headcount=%s", headcount.id)

    async def _ping(self, run_id: str, text: str, **kwargs: object) -> str | None:
        if self.pinger is None:
            return None
        try:
            return await self.pinger.send_progression_ping(
                run_id, text, **kwargs  # type: ignore[arg-type]
            )
        except Exception:  # Pings never fail the action that triggered them
            logger.exception("run_ping_error run=%s text=%s", run_id, text)
            return None

    async def _sync_run_role(self, run: Run, user_id: str, *, joined: bool) -> None:
        if self.run_roles is None or not run.role_id:
            return
        try:
            if joined:
                await self.run_roles.assign(run.guild_id, user_id, run.role_id)
            else:
                await self.run_roles.remove(run.guild_id, user_id, run.role_id)
        except Exception:  # Role upkeep never fails the join or leave
            logger.exception("run_role_sync_error run=%s user=%s", run.id, user_id)

    async def _drop_run_role(self, run: Run) -> None:
        if self.run_roles is None or not run.role_id:
            return
        try:
            await self.run_roles.delete(run.guild_id, run.role_id)
        except Exception:  # Role upkeep never fails the status change
            logger.exception("run_role_delete_error run=%s role=%s", run.id, run.role_id)

    # --- Participant actions: runs ---

    async def _open_run(self, run_id: str) -> Run:
        run = await self.runs.get_run(run_id)
        if run.is_terminal:
            raise InvalidTransitionError(
                run.status.value, run.status.value, "run is already closed"
            )
        return run

    async def join(self, run_id: str, user_id: str, category: str | None = None) -> ReactionOutcome:
        """Join a run (optionally choosing a class) and refresh its panels."""
        run = await self._open_run(run_id)
        previous = await self.ledger.get_reaction_state(run_id, user_id, JOIN, ReactionSource.RUN)
        count = await self.ledger.upsert_reaction(
            run_id, user_id, JOIN, ReactionSource.RUN, JOIN, category=category
        )
        changed = previous != JOIN or category is not None
        if previous != JOIN:
            await self._sync_run_role(run, user_id, joined=True)
        await self._safe_refresh_run(run)
        return ReactionOutcome(changed=changed, count=count, view=await self.build_run_view(run))

    async def leave(self, run_id: str, user_id: str) -> ReactionOutcome:
        """Leave a run. Leaving without having joined changes nothing."""
        run = await self._open_run(run_id)
        previous = await self.ledger.get_reaction_state(run_id, user_id, JOIN, ReactionSource.RUN)
        if previous != JOIN:
            view = await self.build_run_view(run)
            return ReactionOutcome(changed=False, count=view.join_count, view=view)
        count = await self.ledger.upsert_reaction(run_id, user_id, JOIN, ReactionSource.RUN, LEAVE)
        await self._sync_run_role(run, user_id, joined=False)
        await self._safe_refresh_run(run)
        return ReactionOutcome(changed=True, count=count, view=await self.build_run_view(run))

    async def react_key(
        self, run_id: str, user_id: str, key_type: str, delta: int = 1
    ) -> ReactionOutcome:
        """Record a key reaction on a run.

        Once a key window has been opened, new key reactions are refused after
        it expires.
        """
        run = await self._open_run(run_id)
        window_closed = (
            run.key_window_ends_at is not None and not self.runs.is_key_window_open(run)
        )
        if delta > 0 and window_closed:
            raise InvalidTransitionError(
                run.status.value, run.status.value, "key window has closed"
            )
        count = await self.ledger.upsert_reaction(
            run_id, user_id, key_type, ReactionSource.RUN, delta
        )
        await self._safe_refresh_run(run)
        return ReactionOutcome(changed=True, count=count, view=await self.build_run_view(run))

    async def toggle_key(self, run_id: str, user_id: str, key_type: str) -> ReactionOutcome:
        """Report a key if the user has none recorded, otherwise withdraw one."""
        current = await self.ledger.get_reaction_state(
            run_id, user_id, key_type, ReactionSource.RUN
        )
        delta = -1 if isinstance(current, int) and current > 0 else 1
        return await self.react_key(run_id, user_id, key_type, delta)

    # --- Participant actions: headcounts ---

    async def _open_headcount(self, headcount_id: str) -> Headcount:
        headcount = await self.headcounts.get_headcount(headcount_id)
        if headcount.status != HeadcountStatus.OPEN:
            raise InvalidTransitionError(
                headcount.status.value, headcount.status.value, "headcount is not open"
            )
        return headcount

    async def headcount_join(self, headcount_id: str, user_id: str) -> ReactionOutcome:
        headcount = await self._open_headcount(headcount_id)
        previous = await self.ledger.get_reaction_state(
            headcount_id, user_id, JOIN, ReactionSource.HEADCOUNT
        )
        count = await self.ledger.upsert_reaction(
            headcount_id, user_id, JOIN, ReactionSource.HEADCOUNT, JOIN
        )
        await self._safe_refresh_headcount(headcount)
        return ReactionOutcome(
            changed=previous != JOIN,
            count=count,
            view=await self.build_headcount_view(headcount),
        )

    async def headcount_leave(self, headcount_id: str, user_id: str) -> ReactionOutcome:
        headcount = await self._open_headcount(headcount_id)
        previous = await self.ledger.get_reaction_state(
            headcount_id, user_id, JOIN, ReactionSource.HEADCOUNT
        )
        if previous != JOIN:
            view = await self.build_headcount_view(headcount)
            return ReactionOutcome(changed=False, count=view.join_count, view=view)
        count = await self.ledger.upsert_reaction(
            headcount_id, user_id, JOIN, ReactionSource.HEADCOUNT, LEAVE
        )
        await self._safe_refresh_headcount(headcount)
        return ReactionOutcome(
            changed=True, count=count, view=await self.build_headcount_view(headcount)
        )

    async def headcount_key(
        self, headcount_id: str, user_id: str, key_type: str
    ) -> ReactionOutcome:
        """Toggle a key offer on a headcount."""
        headcount = await self._open_headcount(headcount_id)
        current = await self.ledger.get_reaction_state(
            headcount_id, user_id, key_type, ReactionSource.HEADCOUNT
        )
        delta = -1 if isinstance(current, int) and current > 0 else 1
        count = await self.ledger.upsert_reaction(
            headcount_id, user_id, key_type, ReactionSource.HEADCOUNT, delta
        )
        await self._safe_refresh_headcount(headcount)
        return ReactionOutcome(
            changed=True, count=count, view=await self.build_headcount_view(headcount)
        )

    # --- Organizer actions ---

    async def change_status(
        self,
        run_id: str,
        target: RunStatus | str,
        **kwargs: object,
    ) -> Run:
        """Transition a run, refresh its panels, and ping or close panels as needed.

        Keyword arguments are passed through to ``RunStateMachine.transition``.
        Re-applying a terminal status returns the run untouched: panels are
        closed and the run role is dropped only by the call that ended the run.
        """
        target = RunStatus(target)
        change = await self.runs.transition(run_id, target, **kwargs)  # type: ignore[arg-type]
        run = change.run
        if not change.changed:
            logger.debug("run_status_unchanged run=%s status=%s", run_id, run.status)
            return run
        await self._safe_refresh_run(run)

        if target in TERMINAL_STATUSES:
            if run.post_message_id:
                self.refresher.close(run.post_message_id)
            await self._drop_run_role(run)
        elif target in STATUS_PING_TEXT:
            await self._ping(
                run_id,
                STATUS_PING_TEXT[target],
                mention_here=target == RunStatus.LIVE,
                expires_at=run.key_window_ends_at,
                extra_role_ids=self._dungeon_roles(run) if target == RunStatus.LIVE else (),
            )
        return run

    def _dungeon_roles(self, run: Run) -> list[str]:
        role_id = self.dungeon_role_pings.get(run.dungeon_key)
        return [role_id] if role_id else []

    async def pop_key(self, run_id: str, seconds: int | None = None) -> Run:
        """Open (or reopen) the key window and announce it."""
        run = await self.runs.open_key_window(run_id, seconds)
        await self._safe_refresh_run(run)
        await self._ping(run_id, KEY_POPPED_TEXT, expires_at=run.key_window_ends_at)
        return run

    async def announce(self, run_id: str, text: str) -> str | None:
        """Send a free-form progression ping (e.g. "Realm Closed")."""
        run = await self._open_run(run_id)
        return await self._ping(run.id, text)

    async def update_details(
        self, run_id: str, *, party: str | None = None, location: str | None = None
    ) -> Run:
        run = await self.runs.update_details(run_id, party=party, location=location)
        await self._safe_refresh_run(run)
        return run

    async def close_headcount(self, headcount_id: str) -> Headcount:
        headcount = await self.headcounts.close_headcount(headcount_id)
        await self._safe_refresh_headcount(headcount)
        if headcount.post_message_id:
            self.refresher.close(headcount.post_message_id)
        return headcount

    async def convert_headcount(
        self,
        headcount_id: str,
        dungeon_key: str,
        dungeon_label: str,
        **kwargs: object,
    ) -> Run:
        """Convert a headcount into a pending run; the headcount's panels stop refreshing."""
        run = await self.headcounts.convert_to_run(
            headcount_id, dungeon_key, dungeon_label, **kwargs  # type: ignore[arg-type]
        )
        if run.role_id:
            for user_id in await self.ledger.participants(run.id, ReactionSource.RUN):
                await self._sync_run_role(run, user_id, joined=True)
        headcount = await self.headcounts.get_headcount(headcount_id)
        await self._safe_refresh_headcount(headcount)
        if headcount.post_message_id:
            self.refresher.close(headcount.post_message_id)
        return run
