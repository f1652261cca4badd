"""Voting records: groups, assignments, votes, job executions."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from mixwarz.kernel.models.job_execution import JobOutcome
from mixwarz.schemas.competition import StoreRecord


class SubmissionGroupRecord(StoreRecord):
    """Membership of one submission in one round-1 cohort."""

    competition_id: uuid.UUID
    submission_id: uuid.UUID
    group_number: int


class VotingAssignmentRecord(StoreRecord):
    """The ordered submissions a voter scores in round 1."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    competition_id: uuid.UUID
    voter_id: uuid.UUID
    voter_group_number: int
    submission_ids: List[uuid.UUID]
    has_voted: bool = False
    voting_completed_at: Optional[datetime] = None
    created_at: datetime


class VoteRecord(StoreRecord):
    """An immutable score."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    competition_id: uuid.UUID
    submission_id: uuid.UUID
    voter_id: uuid.UUID
    voting_round: int = Field(..., ge=1, le=2)
    score: float
    comment: Optional[str] = None
    cast_at: datetime


class JobExecutionRecord(StoreRecord):
    """Attempt bookkeeping for one (competition, from-status) boundary."""

    competition_id: uuid.UUID
    from_status: str
    to_status: Optional[str] = None
    job_name: str
    outcome: JobOutcome
    attempts: int = 0
    last_attempted_at: datetime
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == JobOutcome.SUCCEEDED


class VoteCreate(BaseModel):
    """Request body for casting a vote."""

    submission_id: uuid.UUID
    score: float
    comment: Optional[str] = Field(None, max_length=2000)


class WinnerSelection(BaseModel):
    """Request body for manual winner selection."""

    submission_id: uuid.UUID
