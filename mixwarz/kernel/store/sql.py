"""
SQLAlchemy-backed CompetitionStore.

One session and one transaction per store call. Status changes use a
conditional UPDATE on the previous status, so two schedulers racing on the
same competition cannot both win: the loser sees rowcount 0 and gets a
ConcurrencyConflict.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mixwarz.logging_config import get_logger
from mixwarz.kernel.errors import ConcurrencyConflict, PersistenceFailure, VoteRejected
from mixwarz.kernel.events import EventStore
from mixwarz.kernel.models import (
    Competition,
    CompetitionStatus,
    JobExecution,
    JobOutcome,
    Submission,
    SubmissionGroup,
    SubmissionStatus,
    SubmissionVote,
    VotingAssignment,
)
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.kernel.store.memory import SUBMISSION_MUTABLE_FIELDS
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import (
    JobExecutionRecord,
    SubmissionGroupRecord,
    VoteRecord,
    VotingAssignmentRecord,
)

logger = get_logger(__name__)


def _column_value(value: Any) -> Any:
    """Enums are stored as their string values."""
    if isinstance(value, Enum):
        return value.value
    return value


def _submission_values(submission: SubmissionRecord) -> Dict[str, Any]:
    return {field: _column_value(getattr(submission, field)) for field in SUBMISSION_MUTABLE_FIELDS}


class _AlreadyAssigned(Exception):
    """Internal signal: another writer stored assignments first."""


class SqlCompetitionStore(CompetitionStore):
    """CompetitionStore over an async SQLAlchemy session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Session with an open transaction; commits on success, rolls back on error."""
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("Store operation failed: %s", exc)
            raise PersistenceFailure(f"Store operation failed: {exc.__class__.__name__}") from exc

    # Competitions

    async def add_competition(self, competition: CompetitionRecord) -> CompetitionRecord:
        values = {k: _column_value(v) for k, v in competition.model_dump().items()}
        async with self._transaction() as session:
            session.add(Competition(**values))
        return competition.model_copy(deep=True)

    async def get_competition(self, competition_id: uuid.UUID) -> Optional[CompetitionRecord]:
        async with self._transaction() as session:
            row = await session.get(Competition, competition_id)
            return CompetitionRecord.model_validate(row) if row else None

    async def list_competitions_by_status(self, status: CompetitionStatus) -> List[CompetitionRecord]:
        async with self._transaction() as session:
            result = await session.execute(
                select(Competition)
                .where(Competition.status == status.value)
                .order_by(Competition.start_date, Competition.id)
            )
            return [CompetitionRecord.model_validate(row) for row in result.scalars().all()]

    async def set_status_note(self, competition_id: uuid.UUID, note: Optional[str]) -> None:
        async with self._transaction() as session:
            await session.execute(
                update(Competition)
                .where(Competition.id == competition_id)
                .values(status_note=note)
                .execution_options(synchronize_session=False)
            )

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
        values: Dict[str, Any] = {"status_note": None}
        values.update({k: _column_value(v) for k, v in (changes or {}).items()})
        values.update(status=new_status.value, status_changed_at=changed_at)

        try:
            async with self._transaction() as session:
                existing = await session.scalar(
                    select(JobExecution).where(
                        JobExecution.competition_id == competition_id,
                        JobExecution.from_status == expected.value,
                    )
                )
                if existing is not None and existing.outcome == JobOutcome.SUCCEEDED.value:
                    raise ConcurrencyConflict(
                        f"Boundary {expected.value} already crossed for competition {competition_id}",
                        competition_id,
                    )

                result = await session.execute(
                    update(Competition)
                    .where(
                        Competition.id == competition_id,
                        Competition.status == expected.value,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConcurrencyConflict(
                        f"Competition {competition_id} is no longer {expected.value}",
                        competition_id,
                    )

                if existing is None:
                    session.add(JobExecution(
                        competition_id=competition_id,
                        from_status=expected.value,
                        to_status=new_status.value,
                        job_name=job_record.job_name,
                        outcome=JobOutcome.SUCCEEDED.value,
                        attempts=job_record.attempts,
                        last_attempted_at=job_record.last_attempted_at,
                        last_error=None,
                    ))
                else:
                    existing.to_status = new_status.value
                    existing.job_name = job_record.job_name
                    existing.outcome = JobOutcome.SUCCEEDED.value
                    existing.attempts = existing.attempts + 1
                    existing.last_attempted_at = job_record.last_attempted_at

                for submission in submissions:
                    await session.execute(
                        update(Submission)
                        .where(Submission.id == submission.id)
                        .values(**_submission_values(submission))
                        .execution_options(synchronize_session=False)
                    )

                await EventStore(session).log(
                    event_type=EventType.COMPETITION_STATUS_CHANGED,
                    entity_type="competition",
                    entity_id=competition_id,
                    user_id=actor_id,
                    payload={
                        "from_status": expected,
                        "to_status": new_status,
                        "job_name": job_record.job_name,
                    },
                )
                # Surfaces a concurrent job record insert before commit
                await session.flush()

                row = await session.get(Competition, competition_id, populate_existing=True)
                return CompetitionRecord.model_validate(row)
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise ConcurrencyConflict(
                    f"Boundary {expected.value} recorded concurrently for competition {competition_id}",
                    competition_id,
                ) from exc
            raise

    # Submissions

    async def add_submission(self, submission: SubmissionRecord) -> SubmissionRecord:
        values = {k: _column_value(v) for k, v in submission.model_dump().items()}
        async with self._transaction() as session:
            session.add(Submission(**values))
        return submission.model_copy(deep=True)

    async def get_submission(self, submission_id: uuid.UUID) -> Optional[SubmissionRecord]:
        async with self._transaction() as session:
            row = await session.get(Submission, submission_id)
            return SubmissionRecord.model_validate(row) if row else None

    async def list_submissions(
        self,
        competition_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
    ) -> List[SubmissionRecord]:
        query = select(Submission).where(Submission.competition_id == competition_id)
        if statuses is not None:
            query = query.where(Submission.status.in_([s.value for s in statuses]))
        query = query.order_by(Submission.submitted_at, Submission.id)

        async with self._transaction() as session:
            result = await session.execute(query)
            return [SubmissionRecord.model_validate(row) for row in result.scalars().all()]

    async def update_submissions(self, submissions: Sequence[SubmissionRecord]) -> None:
        async with self._transaction() as session:
            for submission in submissions:
                await session.execute(
                    update(Submission)
                    .where(Submission.id == submission.id)
                    .values(**_submission_values(submission))
                    .execution_options(synchronize_session=False)
                )

    # Round 1 assignment

    async def has_assignments(self, competition_id: uuid.UUID) -> bool:
        async with self._transaction() as session:
            return await self._count_assignments(session, competition_id) > 0

    async def _count_assignments(self, session: AsyncSession, competition_id: uuid.UUID) -> int:
        count = await session.scalar(
            select(func.count(VotingAssignment.id)).where(VotingAssignment.competition_id == competition_id)
        )
        return count or 0

    async def save_assignments(
        self,
        competition_id: uuid.UUID,
        groups: Sequence[SubmissionGroupRecord],
        assignments: Sequence[VotingAssignmentRecord],
        submissions: Sequence[SubmissionRecord] = (),
        replace: bool = False,
    ) -> bool:
        try:
            async with self._transaction() as session:
                if await self._count_assignments(session, competition_id) > 0:
                    if not replace:
                        raise _AlreadyAssigned()
                    await session.execute(
                        delete(VotingAssignment).where(VotingAssignment.competition_id == competition_id)
                    )
                    await session.execute(
                        delete(SubmissionGroup).where(SubmissionGroup.competition_id == competition_id)
                    )

                for group in groups:
                    session.add(SubmissionGroup(
                        competition_id=competition_id,
                        submission_id=group.submission_id,
                        group_number=group.group_number,
                    ))
                for assignment in assignments:
                    session.add(VotingAssignment(
                        id=assignment.id,
                        competition_id=competition_id,
                        voter_id=assignment.voter_id,
                        voter_group_number=assignment.voter_group_number,
                        submission_ids=[str(sid) for sid in assignment.submission_ids],
                        has_voted=assignment.has_voted,
                        voting_completed_at=assignment.voting_completed_at,
                        created_at=assignment.created_at,
                    ))
                for submission in submissions:
                    await session.execute(
                        update(Submission)
                        .where(Submission.id == submission.id)
                        .values(**_submission_values(submission))
                        .execution_options(synchronize_session=False)
                    )
                await session.flush()
        except _AlreadyAssigned:
            return False
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                logger.info("Assignments for competition %s were stored concurrently", competition_id)
                return False
            raise
        return True

    async def list_groups(self, competition_id: uuid.UUID) -> List[SubmissionGroupRecord]:
        async with self._transaction() as session:
            result = await session.execute(
                select(SubmissionGroup)
                .where(SubmissionGroup.competition_id == competition_id)
                .order_by(SubmissionGroup.group_number)
            )
            return [SubmissionGroupRecord.model_validate(row) for row in result.scalars().all()]

    async def list_assignments(self, competition_id: uuid.UUID) -> List[VotingAssignmentRecord]:
        async with self._transaction() as session:
            result = await session.execute(
                select(VotingAssignment)
                .where(VotingAssignment.competition_id == competition_id)
                .order_by(VotingAssignment.voter_group_number, VotingAssignment.voter_id)
            )
            return [VotingAssignmentRecord.model_validate(row) for row in result.scalars().all()]

    async def get_assignment(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
    ) -> Optional[VotingAssignmentRecord]:
        async with self._transaction() as session:
            row = await session.scalar(
                select(VotingAssignment).where(
                    VotingAssignment.competition_id == competition_id,
                    VotingAssignment.voter_id == voter_id,
                )
            )
            return VotingAssignmentRecord.model_validate(row) if row else None

    async def mark_assignment_completed(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
        completed_at: datetime,
    ) -> None:
        async with self._transaction() as session:
            await session.execute(
                update(VotingAssignment)
                .where(
                    VotingAssignment.competition_id == competition_id,
                    VotingAssignment.voter_id == voter_id,
                    VotingAssignment.has_voted.is_(False),
                )
                .values(has_voted=True, voting_completed_at=completed_at)
                .execution_options(synchronize_session=False)
            )

    # Votes

    async def add_vote(self, vote: VoteRecord) -> VoteRecord:
        try:
            async with self._transaction() as session:
                session.add(SubmissionVote(
                    id=vote.id,
                    competition_id=vote.competition_id,
                    submission_id=vote.submission_id,
                    voter_id=vote.voter_id,
                    voting_round=vote.voting_round,
                    score=vote.score,
                    comment=vote.comment,
                    cast_at=vote.cast_at,
                ))
                await session.flush()
                await EventStore(session).log(
                    event_type=EventType.VOTE_CAST,
                    entity_type="competition",
                    entity_id=vote.competition_id,
                    user_id=vote.voter_id,
                    payload={"submission_id": vote.submission_id, "voting_round": vote.voting_round},
                )
        except PersistenceFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise VoteRejected(
                    "A vote for this submission has already been cast in this round",
                    vote.competition_id,
                ) from exc
            raise
        return vote.model_copy(deep=True)

    async def list_votes(self, competition_id: uuid.UUID, voting_round: int) -> List[VoteRecord]:
        async with self._transaction() as session:
            result = await session.execute(
                select(SubmissionVote)
                .where(
                    SubmissionVote.competition_id == competition_id,
                    SubmissionVote.voting_round == voting_round,
                )
                .order_by(SubmissionVote.cast_at, SubmissionVote.id)
            )
            return [VoteRecord.model_validate(row) for row in result.scalars().all()]

    async def count_votes(self, competition_id: uuid.UUID, voting_round: int) -> int:
        async with self._transaction() as session:
            count = await session.scalar(
                select(func.count(SubmissionVote.id)).where(
                    SubmissionVote.competition_id == competition_id,
                    SubmissionVote.voting_round == voting_round,
                )
            )
            return count or 0

    # Tally

    async def save_round_tally(
        self,
        competition_id: uuid.UUID,
        voting_round: int,
        submissions: Sequence[SubmissionRecord],
        tallied_at: datetime,
        winner_submission_id: Optional[uuid.UUID] = None,
    ) -> bool:
        marker = Competition.round1_tallied_at if voting_round == 1 else Competition.round2_tallied_at
        values: Dict[str, Any] = {marker.key: tallied_at}
        if winner_submission_id is not None:
            values["winner_submission_id"] = winner_submission_id

        async with self._transaction() as session:
            result = await session.execute(
                update(Competition)
                .where(Competition.id == competition_id, marker.is_(None))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            for submission in submissions:
                await session.execute(
                    update(Submission)
                    .where(Submission.id == submission.id)
                    .values(**_submission_values(submission))
                    .execution_options(synchronize_session=False)
                )
            await EventStore(session).log(
                event_type=EventType.ROUND1_TALLIED if voting_round == 1 else EventType.ROUND2_TALLIED,
                entity_type="competition",
                entity_id=competition_id,
                payload={"voting_round": voting_round, "submissions": len(submissions)},
            )
        return True

    # Job execution records

    async def get_job_record(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
    ) -> Optional[JobExecutionRecord]:
        async with self._transaction() as session:
            row = await session.scalar(
                select(JobExecution).where(
                    JobExecution.competition_id == competition_id,
                    JobExecution.from_status == from_status.value,
                )
            )
            return JobExecutionRecord.model_validate(row) if row else None

    async def record_job_failure(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
        job_name: str,
        error: str,
        attempted_at: datetime,
    ) -> JobExecutionRecord:
        async with self._transaction() as session:
            row = await session.scalar(
                select(JobExecution).where(
                    JobExecution.competition_id == competition_id,
                    JobExecution.from_status == from_status.value,
                )
            )
            if row is None:
                row = JobExecution(
                    competition_id=competition_id,
                    from_status=from_status.value,
                    job_name=job_name,
                    outcome=JobOutcome.FAILED.value,
                    attempts=1,
                    last_attempted_at=attempted_at,
                    last_error=error,
                )
                session.add(row)
            elif row.outcome != JobOutcome.SUCCEEDED.value:
                row.job_name = job_name
                row.attempts = row.attempts + 1
                row.last_attempted_at = attempted_at
                row.last_error = error
            await session.flush()
            return JobExecutionRecord.model_validate(row)

    # Audit

    async def log_event(
        self,
        event_type: EventType,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        async with self._transaction() as session:
            await EventStore(session).log(
                event_type=event_type,
                entity_type="competition",
                entity_id=competition_id,
                user_id=actor_id,
                payload=payload,
            )
