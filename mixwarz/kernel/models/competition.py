"""
Competition and Submission models.

Competition.status is the state machine position and is only ever
written through a compare-and-set on its previous value.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mixwarz.kernel.models.base import Base, TimestampMixin, generate_uuid


class CompetitionStatus(str, Enum):
    """Lifecycle position of a competition."""

    UPCOMING = "upcoming"
    OPEN_FOR_SUBMISSIONS = "open_for_submissions"
    VOTING_ROUND1_SETUP = "voting_round1_setup"
    VOTING_ROUND1_OPEN = "voting_round1_open"
    VOTING_ROUND1_TALLYING = "voting_round1_tallying"
    VOTING_ROUND2_SETUP = "voting_round2_setup"
    VOTING_ROUND2_OPEN = "voting_round2_open"
    VOTING_ROUND2_TALLYING = "voting_round2_tallying"
    REQUIRES_MANUAL_WINNER_SELECTION = "requires_manual_winner_selection"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    # Administrative terminals
    CANCELLED = "cancelled"
    DISQUALIFIED = "disqualified"


class SubmissionStatus(str, Enum):
    """Review status of a single submission."""

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    JUDGED = "judged"
    DISQUALIFIED = "disqualified"


class Competition(Base, TimestampMixin):
    """A mixing competition and its lifecycle deadlines."""

    __tablename__ = "competitions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    organizer_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)

    # Deadlines
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submission_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    round1_voting_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    round2_voting_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # State machine position
    status: Mapped[CompetitionStatus] = mapped_column(
        String(50),
        default=CompetitionStatus.UPCOMING,
        nullable=False,
    )
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Why the competition is held, shown to organizers
    status_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # When each phase actually happened
    round1_opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    round1_tallied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    round2_opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    round2_tallied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    winner_submission_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), nullable=True)

    __table_args__ = (
        Index("ix_competitions_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Competition {self.title} {self.status}>"


class Submission(Base, TimestampMixin):
    """One user's mix entered into a competition."""

    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False, index=True)
    mix_title: Mapped[str] = mapped_column(String(300), nullable=False)
    audio_file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[SubmissionStatus] = mapped_column(
        String(50),
        default=SubmissionStatus.SUBMITTED,
        nullable=False,
    )
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    round1_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    advanced_to_round2: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    round2_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    final_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_winner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_submissions_competition_status", "competition_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Submission {self.mix_title} {self.status}>"
