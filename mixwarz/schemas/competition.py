"""Competition and submission records exchanged with the store."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mixwarz.kernel.clock import ensure_utc
from mixwarz.kernel.models.competition import CompetitionStatus, SubmissionStatus


class StoreRecord(BaseModel):
    """Base for records loaded from ORM rows or held by the in-memory store."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value):
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class CompetitionRecord(StoreRecord):
    """A competition as seen by the engines."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    organizer_id: uuid.UUID
    start_date: datetime
    submission_deadline: datetime
    round1_voting_end: datetime
    round2_voting_end: datetime
    status: CompetitionStatus = CompetitionStatus.UPCOMING
    status_changed_at: Optional[datetime] = None
    status_note: Optional[str] = None
    round1_opened_at: Optional[datetime] = None
    round1_tallied_at: Optional[datetime] = None
    round2_opened_at: Optional[datetime] = None
    round2_tallied_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    winner_submission_id: Optional[uuid.UUID] = None


class SubmissionRecord(StoreRecord):
    """A submission as seen by the engines."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    competition_id: uuid.UUID
    user_id: uuid.UUID
    mix_title: str
    audio_file_path: str
    submitted_at: datetime
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    feedback: Optional[str] = None
    round1_score: Optional[float] = None
    advanced_to_round2: bool = False
    round2_score: Optional[float] = None
    final_rank: Optional[int] = None
    is_winner: bool = False

    @property
    def is_disqualified(self) -> bool:
        return self.status == SubmissionStatus.DISQUALIFIED

    @property
    def is_finalist(self) -> bool:
        return self.advanced_to_round2 and not self.is_disqualified
