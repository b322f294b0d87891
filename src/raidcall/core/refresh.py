"""Panel refresh orchestrator: best-effort broadcast of a rendered view.

Every handle registered for a key is edited concurrently. One failing
handle never stops the others: expired handles are unregistered, other
failures are logged and the handle is kept for the next refresh. Panels may
briefly disagree; the next triggering event re-reads the latest aggregate
and repairs them.

Edits to the same handle never overlap. Each handle gets its own
``asyncio.Lock`` so a slow edit cannot be overtaken by a newer one, which
is what produces Discord's stale-message and rate-limit errors on the
public panel.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import weakref

from raidcall.core.errors import ExternalServiceError, HandleExpiredError
from raidcall.core.panels import (
    PanelContent,
    PanelHandle,
    PanelRegistry,
    PanelRender,
    apply_edit,
    describe_handle,
)

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RefreshResult:
    """Outcome of one ``refresh_all`` broadcast."""

    refreshed: int = 0
    expired: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.refreshed + self.expired + self.failed


class PanelRefresher:
    """Pushes rendered views to every panel in a PanelRegistry."""

    def __init__(self, registry: PanelRegistry) -> None:
        self.registry = registry
        self._locks: weakref.WeakKeyDictionary[PanelHandle, asyncio.Lock] = (
            weakref.WeakKeyDictionary()
        )

    def _lock_for(self, handle: PanelHandle) -> asyncio.Lock:
        lock = self._locks.get(handle)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[handle] = lock
        return lock

    async def refresh_all(self, key: str, panel: PanelContent | PanelRender) -> RefreshResult:
        """Edit every handle registered for *key*. Never raises for per-handle failures.

        A PanelRender sends its public content to public messages and its
        private content to organizer panels; a bare PanelContent goes to all.
        """
        render = panel if isinstance(panel, PanelRender) else PanelRender(public=panel)
        handles = self.registry.list(key)
        result = RefreshResult()
        if not handles:
            return result

        outcomes = await asyncio.gather(
            *(self._refresh_one(key, handle, render.for_handle(handle)) for handle in handles)
        )
        for outcome in outcomes:
            setattr(result, outcome, getattr(result, outcome) + 1)

        if result.expired or result.failed:
            logger.info(
                "panel_refresh key=%s refreshed=%d expired=%d failed=%d",
                key,
                result.refreshed,
                result.expired,
                result.failed,
            )
        return result

    async def _refresh_one(self, key: str, handle: PanelHandle, panel: PanelContent) -> str:
        async with self._lock_for(handle):
            try:
                await apply_edit(handle, panel)
            except HandleExpiredError as exc:
                self.registry.unregister(key, handle)
                logger.info("panel_handle_expired key=%s reason=%s", key, exc)
                return "expired"
            except ExternalServiceError as exc:
                logger.warning("panel_refresh_failed key=%s reason=%s", key, exc)
                return "failed"
            except Exception:  # Contain everything: a broken panel must not break the action
                logger.exception(
                    "panel_refresh_error key=%s handle=%s", key, describe_handle(handle)
                )
                return "failed"
        return "refreshed"

    def close(self, key: str) -> int:
        """Drop every panel for *key* when its run/headcount terminates or converts."""
        for handle in self.registry.list(key):
            self._locks.pop(handle, None)
        removed = self.registry.clear(key)
        logger.info("panels_closed key=%s removed=%d", key, removed)
        return removed
