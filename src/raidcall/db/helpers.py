"""Session helpers shared by the core services."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from raidcall.core.errors import ExternalServiceError
from raidcall.db.engine import get_session
from raidcall.db.repository import Repository

logger = logging.getLogger(__name__)


@asynccontextmanager
async def db_session(engine: AsyncEngine) -> AsyncGenerator[Repository, None]:
    """Yield a Repository bound to a fresh async session.

    The session commits on exit. An unreachable or locked database surfaces
    as ExternalServiceError; every other error propagates unchanged.
    """
    try:
        async with get_session(engine) as session:
            yield Repository(session)
    except OperationalError as exc:
        logger.error("db_unavailable error=%s", exc.orig)
        raise ExternalServiceError("The database is unavailable, try again shortly.") from exc
