"""
Scheduler job execution records.

One row per (competition, from-status). A succeeded row is written in
the same transaction as the status update, so a second scheduler
instance that finds it knows the boundary was already crossed.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mixwarz.kernel.models.base import Base, generate_uuid


class JobOutcome(str, Enum):
    """Result of the latest attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobExecution(Base):
    """Attempt bookkeeping for one lifecycle boundary of one competition."""

    __tablename__ = "job_executions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    competition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[JobOutcome] = mapped_column(String(20), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("competition_id", "from_status", name="uq_job_executions_boundary"),
    )
