"""
In-memory CompetitionStore.

Used by tests and local runs. Records are copied on the way in and out so
callers never share mutable state with the store, and every operation
yields to the event loop once so concurrent callers interleave the way
they would against a real database.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from mixwarz.kernel.errors import ConcurrencyConflict, VoteRejected
from mixwarz.kernel.events import serialize_payload
from mixwarz.kernel.models.competition import CompetitionStatus, SubmissionStatus
from mixwarz.kernel.models.event_log import EventType
from mixwarz.kernel.models.job_execution import JobOutcome
from mixwarz.kernel.store.base import CompetitionStore
from mixwarz.schemas.competition import CompetitionRecord, SubmissionRecord
from mixwarz.schemas.voting import (
    JobExecutionRecord,
    SubmissionGroupRecord,
    VoteRecord,
    VotingAssignmentRecord,
)

SUBMISSION_MUTABLE_FIELDS = (
    "status",
    "feedback",
    "round1_score",
    "advanced_to_round2",
    "round2_score",
    "final_rank",
    "is_winner",
)


class InMemoryCompetitionStore(CompetitionStore):
    """Dict-backed store; safe for concurrent coroutines on one event loop."""

    def __init__(self) -> None:
        self.competitions: Dict[uuid.UUID, CompetitionRecord] = {}
        self.submissions: Dict[uuid.UUID, SubmissionRecord] = {}
        self.groups: Dict[uuid.UUID, List[SubmissionGroupRecord]] = {}
        self.assignments: Dict[uuid.UUID, List[VotingAssignmentRecord]] = {}
        self.votes: List[VoteRecord] = []
        self.job_records: Dict[Tuple[uuid.UUID, str], JobExecutionRecord] = {}
        self.events: List[Dict[str, Any]] = []

    # Competitions

    async def add_competition(self, competition: CompetitionRecord) -> CompetitionRecord:
        await asyncio.sleep(0)
        self.competitions[competition.id] = competition.model_copy(deep=True)
        return competition.model_copy(deep=True)

    async def get_competition(self, competition_id: uuid.UUID) -> Optional[CompetitionRecord]:
        await asyncio.sleep(0)
        competition = self.competitions.get(competition_id)
        return competition.model_copy(deep=True) if competition else None

    async def list_competitions_by_status(self, status: CompetitionStatus) -> List[CompetitionRecord]:
        await asyncio.sleep(0)
        return [c.model_copy(deep=True) for c in self.competitions.values() if c.status == status]

    async def set_status_note(self, competition_id: uuid.UUID, note: Optional[str]) -> None:
        await asyncio.sleep(0)
        competition = self.competitions.get(competition_id)
        if competition is not None:
            competition.status_note = note

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
        await asyncio.sleep(0)
        # Everything below runs without yielding, so it is atomic on the loop.
        competition = self.competitions.get(competition_id)
        if competition is None or competition.status != expected:
            raise ConcurrencyConflict(
                f"Competition {competition_id} is no longer {expected.value}",
                competition_id,
            )
        key = (competition_id, expected.value)
        existing = self.job_records.get(key)
        if existing is not None and existing.succeeded:
            raise ConcurrencyConflict(
                f"Boundary {expected.value} already crossed for competition {competition_id}",
                competition_id,
            )

        updated = competition.model_copy(deep=True)
        updated.status = new_status
        updated.status_changed_at = changed_at
        updated.status_note = None
        for field, value in (changes or {}).items():
            setattr(updated, field, value)

        record = job_record.model_copy(deep=True)
        if existing is not None:
            record.attempts = existing.attempts + 1
        self.job_records[key] = record
        self.competitions[competition_id] = updated
        self._apply_submissions(submissions)
        self._append_event(
            EventType.COMPETITION_STATUS_CHANGED,
            competition_id,
            {"from_status": expected, "to_status": new_status, "job_name": job_record.job_name},
            actor_id,
        )
        return updated.model_copy(deep=True)

    # Submissions

    async def add_submission(self, submission: SubmissionRecord) -> SubmissionRecord:
        await asyncio.sleep(0)
        self.submissions[submission.id] = submission.model_copy(deep=True)
        return submission.model_copy(deep=True)

    async def get_submission(self, submission_id: uuid.UUID) -> Optional[SubmissionRecord]:
        await asyncio.sleep(0)
        submission = self.submissions.get(submission_id)
        return submission.model_copy(deep=True) if submission else None

    async def list_submissions(
        self,
        competition_id: uuid.UUID,
        statuses: Optional[Iterable[SubmissionStatus]] = None,
    ) -> List[SubmissionRecord]:
        await asyncio.sleep(0)
        wanted = set(statuses) if statuses is not None else None
        found = [
            s for s in self.submissions.values()
            if s.competition_id == competition_id and (wanted is None or s.status in wanted)
        ]
        found.sort(key=lambda s: (s.submitted_at, str(s.id)))
        return [s.model_copy(deep=True) for s in found]

    async def update_submissions(self, submissions: Sequence[SubmissionRecord]) -> None:
        await asyncio.sleep(0)
        self._apply_submissions(submissions)

    # Round 1 assignment

    async def has_assignments(self, competition_id: uuid.UUID) -> bool:
        await asyncio.sleep(0)
        return bool(self.assignments.get(competition_id))

    async def save_assignments(
        self,
        competition_id: uuid.UUID,
        groups: Sequence[SubmissionGroupRecord],
        assignments: Sequence[VotingAssignmentRecord],
        submissions: Sequence[SubmissionRecord] = (),
        replace: bool = False,
    ) -> bool:
        await asyncio.sleep(0)
        if self.assignments.get(competition_id) and not replace:
            return False
        self.groups[competition_id] = [g.model_copy(deep=True) for g in groups]
        self.assignments[competition_id] = [a.model_copy(deep=True) for a in assignments]
        self._apply_submissions(submissions)
        return True

    async def list_groups(self, competition_id: uuid.UUID) -> List[SubmissionGroupRecord]:
        await asyncio.sleep(0)
        return [g.model_copy(deep=True) for g in self.groups.get(competition_id, [])]

    async def list_assignments(self, competition_id: uuid.UUID) -> List[VotingAssignmentRecord]:
        await asyncio.sleep(0)
        return [a.model_copy(deep=True) for a in self.assignments.get(competition_id, [])]

    async def get_assignment(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
    ) -> Optional[VotingAssignmentRecord]:
        await asyncio.sleep(0)
        for assignment in self.assignments.get(competition_id, []):
            if assignment.voter_id == voter_id:
                return assignment.model_copy(deep=True)
        return None

    async def mark_assignment_completed(
        self,
        competition_id: uuid.UUID,
        voter_id: uuid.UUID,
        completed_at: datetime,
    ) -> None:
        await asyncio.sleep(0)
        for assignment in self.assignments.get(competition_id, []):
            if assignment.voter_id == voter_id and not assignment.has_voted:
                assignment.has_voted = True
                assignment.voting_completed_at = completed_at

    # Votes

    async def add_vote(self, vote: VoteRecord) -> VoteRecord:
        await asyncio.sleep(0)
        for existing in self.votes:
            if (
                existing.voter_id == vote.voter_id
                and existing.submission_id == vote.submission_id
                and existing.voting_round == vote.voting_round
            ):
                raise VoteRejected(
                    "A vote for this submission has already been cast in this round",
                    vote.competition_id,
                )
        self.votes.append(vote.model_copy(deep=True))
        self._append_event(
            EventType.VOTE_CAST,
            vote.competition_id,
            {"submission_id": vote.submission_id, "voting_round": vote.voting_round},
            vote.voter_id,
        )
        return vote.model_copy(deep=True)

    async def list_votes(self, competition_id: uuid.UUID, voting_round: int) -> List[VoteRecord]:
        await asyncio.sleep(0)
        return [
            v.model_copy(deep=True) for v in self.votes
            if v.competition_id == competition_id and v.voting_round == voting_round
        ]

    async def count_votes(self, competition_id: uuid.UUID, voting_round: int) -> int:
        await asyncio.sleep(0)
        return sum(
            1 for v in self.votes
            if v.competition_id == competition_id and v.voting_round == voting_round
        )

    # Tally

    async def save_round_tally(
        self,
        competition_id: uuid.UUID,
        voting_round: int,
        submissions: Sequence[SubmissionRecord],
        tallied_at: datetime,
        winner_submission_id: Optional[uuid.UUID] = None,
    ) -> bool:
        await asyncio.sleep(0)
        competition = self.competitions.get(competition_id)
        if competition is None:
            return False
        marker = "round1_tallied_at" if voting_round == 1 else "round2_tallied_at"
        if getattr(competition, marker) is not None:
            return False
        setattr(competition, marker, tallied_at)
        if winner_submission_id is not None:
            competition.winner_submission_id = winner_submission_id
        self._apply_submissions(submissions)
        self._append_event(
            EventType.ROUND1_TALLIED if voting_round == 1 else EventType.ROUND2_TALLIED,
            competition_id,
            {"voting_round": voting_round, "submissions": len(submissions)},
            None,
        )
        return True

    # Job execution records

    async def get_job_record(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
    ) -> Optional[JobExecutionRecord]:
        await asyncio.sleep(0)
        record = self.job_records.get((competition_id, from_status.value))
        return record.model_copy(deep=True) if record else None

    async def record_job_failure(
        self,
        competition_id: uuid.UUID,
        from_status: CompetitionStatus,
        job_name: str,
        error: str,
        attempted_at: datetime,
    ) -> JobExecutionRecord:
        await asyncio.sleep(0)
        key = (competition_id, from_status.value)
        record = self.job_records.get(key)
        if record is None:
            record = JobExecutionRecord(
                competition_id=competition_id,
                from_status=from_status.value,
                job_name=job_name,
                outcome=JobOutcome.FAILED,
                attempts=0,
                last_attempted_at=attempted_at,
            )
            self.job_records[key] = record
        if record.succeeded:
            return record.model_copy(deep=True)
        record.attempts += 1
        record.job_name = job_name
        record.last_error = error
        record.last_attempted_at = attempted_at
        return record.model_copy(deep=True)

    # Audit

    async def log_event(
        self,
        event_type: EventType,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        await asyncio.sleep(0)
        self._append_event(event_type, competition_id, payload, actor_id)

    def events_of(self, competition_id: uuid.UUID, event_type: Optional[EventType] = None) -> List[Dict[str, Any]]:
        """Logged events for one competition, oldest first."""
        return [
            e for e in self.events
            if e["entity_id"] == competition_id and (event_type is None or e["event_type"] == event_type)
        ]

    def _apply_submissions(self, submissions: Sequence[SubmissionRecord]) -> None:
        for submission in submissions:
            stored = self.submissions.get(submission.id)
            if stored is None:
                continue
            for field in SUBMISSION_MUTABLE_FIELDS:
                setattr(stored, field, getattr(submission, field))

    def _append_event(
        self,
        event_type: EventType,
        competition_id: uuid.UUID,
        payload: Optional[Dict[str, Any]],
        actor_id: Optional[uuid.UUID],
    ) -> None:
        self.events.append({
            "event_type": event_type,
            "entity_type": "competition",
            "entity_id": competition_id,
            "user_id": actor_id,
            "payload": serialize_payload(payload) if payload else {},
            "created_at": datetime.now(timezone.utc),
        })
