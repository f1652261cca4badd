"""Competition round engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "competitions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("organizer_id", sa.Uuid(), nullable=False, index=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("submission_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("round1_voting_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("round2_voting_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="upcoming"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_note", sa.Text(), nullable=True),
        sa.Column("round1_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("round1_tallied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("round2_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("round2_tallied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("winner_submission_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_competitions_status", "competitions", ["status"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("competition_id", sa.Uuid(), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.Uuid(), nullable=False, index=True),
        sa.Column("mix_title", sa.String(300), nullable=False),
        sa.Column("audio_file_path", sa.String(1000), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="submitted"),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("round1_score", sa.Float(), nullable=True),
        sa.Column("advanced_to_round2", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("round2_score", sa.Float(), nullable=True),
        sa.Column("final_rank", sa.Integer(), nullable=True),
        sa.Column("is_winner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_submissions_competition_status", "submissions", ["competition_id", "status"])

    op.create_table(
        "submission_groups",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("competition_id", sa.Uuid(), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("submission_id", sa.Uuid(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_number", sa.Integer(), nullable=False),
        sa.UniqueConstraint("competition_id", "submission_id", name="uq_submission_groups_submission"),
    )

    op.create_table(
        "voting_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("competition_id", sa.Uuid(), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("voter_id", sa.Uuid(), nullable=False),
        sa.Column("voter_group_number", sa.Integer(), nullable=False),
        sa.Column("submission_ids", sa.JSON(), nullable=False),
        sa.Column("has_voted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("voting_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("competition_id", "voter_id", name="uq_voting_assignments_voter"),
    )

    op.create_table(
        "submission_votes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("competition_id", sa.Uuid(), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("submission_id", sa.Uuid(), sa.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("voter_id", sa.Uuid(), nullable=False),
        sa.Column("voting_round", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("cast_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("voter_id", "submission_id", "voting_round", name="uq_submission_votes_once"),
    )
    op.create_index(
        "ix_submission_votes_competition_round",
        "submission_votes",
        ["competition_id", "voting_round"],
    )

    # One row per lifecycle boundary; a succeeded row marks the boundary crossed
    op.create_table(
        "job_executions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("competition_id", sa.Uuid(), sa.ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("from_status", sa.String(50), nullable=False),
        sa.Column("to_status", sa.String(50), nullable=True),
        sa.Column("job_name", sa.String(100), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.UniqueConstraint("competition_id", "from_status", name="uq_job_executions_boundary"),
    )

    # Append-only audit log
    op.create_table(
        "event_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False, index=True),
        sa.Column("user_id", sa.Uuid(), nullable=True, index=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index("ix_event_logs_entity", "event_logs", ["entity_type", "entity_id"])
    op.create_index("ix_event_logs_type_time", "event_logs", ["event_type", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_event_logs_type_time", table_name="event_logs")
    op.drop_index("ix_event_logs_entity", table_name="event_logs")
    op.drop_table("event_logs")
    op.drop_table("job_executions")
    op.drop_index("ix_submission_votes_competition_round", table_name="submission_votes")
    op.drop_table("submission_votes")
    op.drop_table("voting_assignments")
    op.drop_table("submission_groups")
    op.drop_index("ix_submissions_competition_status", table_name="submissions")
    op.drop_table("submissions")
    op.drop_index("ix_competitions_status", table_name="competitions")
    op.drop_table("competitions")
