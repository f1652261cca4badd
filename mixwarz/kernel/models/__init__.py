"""
Kernel Data Models

SQLAlchemy models backing the SQL store adapter.
"""

from mixwarz.kernel.models.base import Base, TimestampMixin, generate_uuid
from mixwarz.kernel.models.competition import (
    Competition,
    CompetitionStatus,
    Submission,
    SubmissionStatus,
)
from mixwarz.kernel.models.voting import SubmissionGroup, SubmissionVote, VotingAssignment
from mixwarz.kernel.models.job_execution import JobExecution, JobOutcome
from mixwarz.kernel.models.event_log import EventLog, EventType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    # Competition
    "Competition",
    "CompetitionStatus",
    "Submission",
    "SubmissionStatus",
    # Voting
    "SubmissionGroup",
    "SubmissionVote",
    "VotingAssignment",
    # Scheduler
    "JobExecution",
    "JobOutcome",
    # Event Log
    "EventLog",
    "EventType",
]
