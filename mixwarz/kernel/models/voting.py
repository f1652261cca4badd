"""
Voting models: round-1 groups and assignments, and score records.

Assignments are generated once per competition and never edited except
to mark completion. Votes are append-only.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, JSON, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mixwarz.kernel.models.base import Base, generate_uuid


class SubmissionGroup(Base):
    """A submission's cohort for round-1 voting."""

    __tablename__ = "submission_groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    group_number: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("competition_id", "submission_id", name="uq_submission_groups_submission"),
    )


class VotingAssignment(Base):
    """The fixed, ordered list of submissions one voter scores in round 1."""

    __tablename__ = "voting_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False)
    voter_group_number: Mapped[int] = mapped_column(Integer, nullable=False)
    # Submission IDs as strings, in listening order
    submission_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    has_voted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    voting_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("competition_id", "voter_id", name="uq_voting_assignments_voter"),
    )


class SubmissionVote(Base):
    """One voter's score for one submission in one round."""

    __tablename__ = "submission_votes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    voter_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False)
    voting_round: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("voter_id", "submission_id", "voting_round", name="uq_submission_votes_once"),
        Index("ix_submission_votes_competition_round", "competition_id", "voting_round"),
    )
