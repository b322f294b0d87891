"""Read-only run and headcount API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from raidcall.api.deps import CoordinatorDep
from raidcall.core.errors import NotFoundError
from raidcall.models.run import ReactionSource

router = APIRouter(prefix="/api", tags=["runs"])


@router.get("/runs/{run_id}")
async def get_run(run_id: str, coordinator: CoordinatorDep) -> dict:
    """A run with its current aggregate view."""
    try:
        run = await coordinator.runs.get_run(run_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    view = await coordinator.build_run_view(run)
    return {
        "data": {
            "run": run.model_dump(mode="json"),
            "view": view.model_dump(mode="json"),
            "panel_url": run.panel_url(),
        }
    }


@router.get("/runs/{run_id}/reactions")
async def get_run_reactions(
    run_id: str,
    coordinator: CoordinatorDep,
    source: ReactionSource = ReactionSource.RUN,
) -> dict:
    """Reaction counts for a run in one phase.

    ``source=headcount`` reads the headcount the run was converted from, and
    is empty for runs that did not start as a headcount.
    """
    try:
        run = await coordinator.runs.get_run(run_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    target_id = run.id if source == ReactionSource.RUN else run.headcount_id
    counts: dict[str, int] = {}
    classes: dict[str, int] = {}
    if target_id:
        counts = await coordinator.ledger.aggregate(target_id, source)
        classes = await coordinator.ledger.category_counts(target_id, source)
    return {
        "data": {
            "run_id": run.id,
            "target_id": target_id,
            "source": source.value,
            "counts": counts,
            "classes": classes,
        }
    }


@router.get("/headcounts/{headcount_id}")
async def get_headcount(headcount_id: str, coordinator: CoordinatorDep) -> dict:
    """A headcount with its current aggregate view."""
    try:
        headcount = await coordinator.headcounts.get_headcount(headcount_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    view = await coordinator.build_headcount_view(headcount)
    return {
        "data": {
            "headcount": headcount.model_dump(mode="json"),
            "view": view.model_dump(mode="json"),
        }
    }
