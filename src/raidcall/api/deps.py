"""FastAPI dependency injection for the run coordinator."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from raidcall.core.coordinator import RunCoordinator


async def get_coordinator(request: Request) -> RunCoordinator:
    """Get the run coordinator from app state."""
    return request.app.state.coordinator


CoordinatorDep = Annotated[RunCoordinator, Depends(get_coordinator)]
