"""
Storage contract consumed by the engines and the orchestrator.

Every method is one unit of work: it either fully applies or raises.
Adapters translate their own failures into PersistenceFailure and lost
compare-and-set races into ConcurrencyConflict.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from mixwarz.kernel.models.competition import CompetitionStatus, SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import (
    JobExecutionRecord,
    SubmissionGroupRecord,
    VoteRecord,
    VotingAssignmentRecord,
)


class CompetitionStore(ABC):
    """Repository for competitions and everything they own."""

    # Competitions

    @abstractmethod
    async def add_competition(self, competition: CompetitionRecord) -> CompetitionRecord:
        """Insert a new competition."""

    @abstractmethod
    async def get_competition(self, competition_id: uuid.UUID) -> Optional[CompetitionRecord]:
        """Fetch one competition or None."""

    @abstractmethod
    async def list_competitions_by_status(self, status: CompetitionStatus) -> List[CompetitionRecord]:
        """All competitions currently at the given status."""

    @abstractmethod
    async def set_status_note(self, competition_id: uuid.UUID, note: Optional[str]) -> None:
        """Set or clear the organizer-facing note explaining a held competition."""

    @abstractmethod
    async def advance_status(
        self,
        competition_id: uuid.UUID,
        expected: CompetitionStatus,
        new_status: CompetitionStatus,
        job_record: JobExecutionRecord,
        changed_at: datetime,
        changes: Optional[Dict[str, Any]] = None,
        submissions: Sequence[SubmissionRecord] = (),
        actor_id: Optional[uuid.UUID] = None,
    ) -> CompetitionRecord:
        """
        Move a competition from `expected` to `new_status`.

        The status write only succeeds if the stored status still equals
        `expected` and no succeeded job record exists for
        (competition_id, expected); otherwise ConcurrencyConflict is raised
        and nothing is written. The succeeded job record, any extra column
        `changes`, the given submission updates and an audit event are
        written in the same transaction. The status note is cleared unless
        `changes` sets a new one.
        """

    # Submissions

    @abstractmethod
    async def add_submission(self, submission: SubmissionRecord) -> SubmissionRecord:
        """Insert a new submission."""

    @abstractmethod
    async def get_submission(self, submission_id: uuid.UUID) -> Optional[SubmissionRecord]:
        """Fetch one submission or None."""

    @abstractmethod
    async def list_submissions(
        self,
        competition_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
    ) -> List[SubmissionRecord]:
        """Submissions of a competition, oldest first, optionally filtered by status."""

    @abstractmethod
    async def update_submissions(self, submissions: Sequence[SubmissionRecord]) -> None:
        """Persist the mutable fields of the given submissions in one transaction."""

    # Round 1 assignment

    @abstractmethod
    async def has_assignments(self, competition_id: uuid.UUID) -> bool:
        """Whether round-1 assignments exist for the competition."""

    @abstractmethod
    async def save_assignments(
        self,
        competition_id: uuid.UUID,
        groups: Sequence[SubmissionGroupRecord],
        assignments: Sequence[VotingAssignmentRecord],
        submissions: Sequence[SubmissionRecord] = (),
        replace: bool = False,
    ) -> bool:
        """
        Persist groups, assignments and submission updates all-or-nothing.

        Returns False without writing when assignments already exist and
        `replace` is not set.
        """

    @abstractmethod
    async def list_groups(self, competition_id: uuid.UUID) -> List[SubmissionGroupRecord]:
        """Round-1 group memberships."""

    @abstractmethod
    async def list_assignments(self, competition_id: uuid.UUID) -> List[VotingAssignmentRecord]:
        """All round-1 assignments."""

    @abstractmethod
    async def get_assignment(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
    ) -> Optional[VotingAssignmentRecord]:
        """One voter's round-1 assignment or None."""

    @abstractmethod
    async def mark_assignment_completed(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
        completed_at: datetime,
    ) -> None:
        """Flag a voter as having scored every assigned submission."""

    # Votes

    @abstractmethod
    async def add_vote(self, vote: VoteRecord) -> VoteRecord:
        """Append a vote; VoteRejected if (voter, submission, round) already voted."""

    @abstractmethod
    async def list_votes(self, competition_id: uuid.UUID, voting_round: int) -> List[VoteRecord]:
        """All votes of one round."""

    @abstractmethod
    async def count_votes(self, competition_id: uuid.UUID, voting_round: int) -> int:
        """Number of votes cast in one round."""

    # Tally

    @abstractmethod
    async def save_round_tally(
        self,
        competition_id: uuid.UUID,
        voting_round: int,
        submissions: Sequence[SubmissionRecord],
        tallied_at: datetime,
        winner_submission_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Persist a round's tally and stamp the competition's tallied-at marker.

        Returns False without writing when the round was already tallied.
        """

    # Job execution records

    @abstractmethod
    async def get_job_record(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
    ) -> Optional[JobExecutionRecord]:
        """Attempt bookkeeping for one boundary, if any."""

    @abstractmethod
    async def record_job_failure(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
        job_name: str,
        error: str,
        attempted_at: datetime,
    ) -> JobExecutionRecord:
        """Count a failed attempt. A succeeded record is never downgraded."""

    # Audit

    @abstractmethod
    async def log_event(
        self,
        event_type: EventType,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Append an audit event for a competition."""
