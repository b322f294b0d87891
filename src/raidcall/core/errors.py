"""Error taxonomy for run coordination.

Ledger and state-machine errors propagate to callers unmodified.
Panel errors (HandleExpiredError) never leave the refresh orchestrator.
"""

from __future__ import annotations


class RaidcallError(Exception):
    """Base class for all raidcall domain errors."""


class InvalidTransitionError(RaidcallError):
    """A requested status change is not in the allowed adjacency."""

    def __init__(self, current: str, target: str, detail: str = "") -> None:
        self.current = current
        self.target = target
        self.detail = detail
        msg = f"Cannot move from {current!r} to {target!r}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ConflictError(RaidcallError):
    """A concurrent write on a reaction key did not resolve after one retry.

    Transient; safe for the caller to retry.
    """


class NotFoundError(RaidcallError):
    """A run, headcount, or reaction record does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class HandleExpiredError(RaidcallError):
    """A panel handle's message was deleted or its interaction token expired."""


class ExternalServiceError(RaidcallError):
    """Discord or the persistent store could not be reached."""
