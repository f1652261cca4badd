"""Read-side views returned by CompetitionQueries and the API."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class CompetitionStateView(BaseModel):
    """Current lifecycle position of a competition."""

    competition_id: uuid.UUID
    title: str
    status: str
    status_changed_at: Optional[datetime] = None
    status_note: Optional[str] = None
    next_deadline: Optional[datetime] = None
    is_terminal: bool = False


class FinalistView(BaseModel):
    """A submission open for round-2 voting."""

    submission_id: uuid.UUID
    mix_title: str
    audio_url: str
    round1_score: Optional[float] = None


class RankedEntry(BaseModel):
    """One entry in the final standings."""

    submission_id: uuid.UUID
    user_id: uuid.UUID
    mix_title: str
    round1_score: Optional[float] = None
    round2_score: Optional[float] = None
    final_rank: Optional[int] = None
    is_winner: bool = False
    is_disqualified: bool = False


class ResultsView(BaseModel):
    """Final standings of a competition."""

    competition_id: uuid.UUID
    status: str
    requires_manual_selection: bool
    tied_leader_ids: List[uuid.UUID] = []
    standings: List[RankedEntry]
    winners: List[RankedEntry]
    non_finalists: List[RankedEntry] = []


class AssignedSubmissionView(BaseModel):
    """An anonymized entry in a voter's round-1 list."""

    submission_id: uuid.UUID
    mix_title: str
    audio_url: str
    already_scored: bool = False


class AssignmentView(BaseModel):
    """A voter's round-1 listening list."""

    competition_id: uuid.UUID
    voter_group_number: int
    has_voted: bool
    submissions: List[AssignedSubmissionView]


class VoteResponse(BaseModel):
    """Acknowledgement of a cast vote."""

    vote_id: uuid.UUID
    submission_id: uuid.UUID
    voting_round: int
    score: float
    cast_at: datetime
