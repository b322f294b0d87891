"""Scheduled auto-end of runs whose deadline has elapsed.

Provides ``tick_auto_end`` which is invoked by APScheduler every
``settings.auto_end_interval_seconds``. Each tick ends every non-terminal
run past its auto-end deadline through the coordinator, so panels refresh
and close exactly as for an organizer-ended run.

Errors are logged but never propagated so the scheduler keeps running.
"""

from __future__ import annotations

import logging

from raidcall.core.coordinator import RunCoordinator
from raidcall.core.errors import RaidcallError
from raidcall.models.run import RunStatus

logger = logging.getLogger(__name__)


async def tick_auto_end(coordinator: RunCoordinator) -> int:
    """End overdue runs. Returns the number of runs ended this tick."""
    try:
        due = await coordinator.runs.due_for_auto_end()
    except RaidcallError:
        logger.exception("auto_end_query_failed")
        return 0

    ended = 0
    for run in due:
        try:
            await coordinator.change_status(run.id, RunStatus.ENDED, auto_end=True)
        except RaidcallError as exc:
            logger.warning("auto_end_skipped run=%s reason=%s", run.id, exc)
            continue
        except Exception:  # Last-resort handler — one bad run must not stall the rest
            logger.exception("auto_end_failed run=%s", run.id)
            continue
        ended += 1

    if ended:
        logger.info("auto_end_tick ended=%d due=%d", ended, len(due))
    return ended
