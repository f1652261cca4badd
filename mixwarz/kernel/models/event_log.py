"""
Immutable event log for audit trail.

Status changes, assignment generation, tallies and manual decisions are
logged here in the same transaction as the change they describe.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, func, Index, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mixwarz.kernel.models.base import Base, generate_uuid


class EventType(str, Enum):
    """All event types for the audit log."""

    # Lifecycle events
    COMPETITION_STATUS_CHANGED = "competition.status_changed"
    COMPETITION_HELD = "competition.held"
    COMPETITION_CANCELLED = "competition.cancelled"

    # Round 1
    ASSIGNMENTS_GENERATED = "round1.assignments_generated"
    ROUND1_TALLIED = "round1.tallied"
    SUBMISSIONS_DISQUALIFIED = "round1.submissions_disqualified"

    # Round 2
    ROUND2_OPENED = "round2.opened"
    ROUND2_TALLIED = "round2.tallied"
    WINNER_SELECTED = "round2.winner_selected"
    MANUAL_SELECTION_REQUIRED = "round2.manual_selection_required"

    # Voting
    VOTE_CAST = "vote.cast"

    # Scheduler
    JOB_FAILED = "scheduler.job_failed"
    JOB_ALERT = "scheduler.job_alert"


class EventLog(Base):
    """
    Immutable audit event log.

    This table is append-only - no updates or deletes allowed.
    """

    __tablename__ = "event_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )

    event_type: Mapped[EventType] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    # Entity reference
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
        index=True,
    )

    # Actor
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,  # Scheduler events have no user
        index=True,
    )

    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_event_logs_entity", "entity_type", "entity_id"),
        Index("ix_event_logs_type_time", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EventLog {self.event_type} {self.entity_type}:{self.entity_id}>"
