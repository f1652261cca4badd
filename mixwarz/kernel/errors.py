"""
Error taxonomy for the competition round engine.

- InvalidTransition: programming/data error, never retried blindly
- InsufficientParticipants: business condition, competition held in place
- ConcurrencyConflict: another writer won, retried on the next cycle
- PersistenceFailure: infrastructure error, retried with backoff
- CompetitionNotFound, AssignmentNotFound, PhaseNotReached: read-side misses
- AssignmentsLocked, VoteRejected, WinnerSelectionRejected: refused actions

A tie for first place is not an error; it is carried on the tally result
and routes the competition to manual winner selection.
"""

import uuid
from typing import Optional


class CompetitionEngineError(Exception):
    """Base class for all round engine errors."""

    retryable: bool = False

    def __init__(self, message: str, competition_id: Optional[uuid.UUID] = None):
        super().__init__(message)
        self.message = message
        self.competition_id = competition_id


class InvalidTransition(CompetitionEngineError):
    """The (state, trigger) pair is not in the lifecycle graph."""

    def __init__(
        self,
        current: str,
        trigger: str,
        competition_id: Optional[uuid.UUID] = None,
    ):
        super().__init__(
            f"Invalid transition: {trigger} is not allowed from {current}",
            competition_id,
        )
        self.current = current
        self.trigger = trigger


class InsufficientParticipants(CompetitionEngineError):
    """Too few entries to run the requested phase."""

    def __init__(
        self,
        message: str,
        competition_id: Optional[uuid.UUID] = None,
        found: int = 0,
        required: int = 0,
    ):
        super().__init__(message, competition_id)
        self.found = found
        self.required = required


class ConcurrencyConflict(CompetitionEngineError):
    """The competition's status no longer matches the one the attempt started from."""

    retryable = True


class PersistenceFailure(CompetitionEngineError):
    """The store could not complete a read or write."""

    retryable = True


class CompetitionNotFound(CompetitionEngineError):
    """No competition with the given id."""


class AssignmentsLocked(CompetitionEngineError):
    """Round-1 assignments cannot be regenerated once votes exist."""


class VoteRejected(CompetitionEngineError):
    """A vote failed eligibility or immutability checks."""


class WinnerSelectionRejected(CompetitionEngineError):
    """The chosen submission cannot be declared the winner."""


class PhaseNotReached(CompetitionEngineError):
    """The requested view is not available at the competition's current status."""


class AssignmentNotFound(CompetitionEngineError):
    """The user has no round-1 assignment in this competition."""
