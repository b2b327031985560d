"""Initial schema: applications, status history, review queue, audit events, run bookkeeping.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "applications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("application_key", sa.String(), nullable=False),
        sa.Column("company", sa.String(), nullable=False),
        sa.Column("position", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("applied_date", sa.Date(), nullable=True),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("job_url", sa.Text(), nullable=True),
        sa.Column("salary", sa.String(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("recruiter_name", sa.String(), nullable=True),
        sa.Column("interviewer_name", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("provenance", sa.JSON(), nullable=True),
        sa.Column("source_email_ids", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_applications_application_key"), "applications", ["application_key"], unique=True)
    op.create_index(op.f("ix_applications_company"), "applications", ["company"], unique=False)

    op.create_table(
        "status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("source_email_id", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_status_history_id"), "status_history", ["id"], unique=False)
    op.create_index(op.f("ix_status_history_application_id"), "status_history", ["application_id"], unique=False)
    op.create_index("ix_status_history_app_seq", "status_history", ["application_id", "sequence"], unique=True)

    op.create_table(
        "review_queue",
        sa.Column("email_id", sa.String(), nullable=False),
        sa.Column("queued_at", sa.DateTime(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("email_id"),
    )
    op.create_index(op.f("ix_review_queue_queued_at"), "review_queue", ["queued_at"], unique=False)

    op.create_table(
        "transition_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.String(), nullable=False),
        sa.Column("source_email_id", sa.String(), nullable=False),
        sa.Column("current_status", sa.String(), nullable=True),
        sa.Column("proposed_status", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transition_events_id"), "transition_events", ["id"], unique=False)
    op.create_index(op.f("ix_transition_events_application_id"), "transition_events", ["application_id"], unique=False)

    op.create_table(
        "email_logs",
        sa.Column("email_id", sa.String(), nullable=False),
        sa.Column("lane", sa.String(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("record_id", sa.String(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("email_id"),
    )

    op.create_table(
        "run_summaries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("total_seen", sa.Integer(), nullable=True),
        sa.Column("processed", sa.Integer(), nullable=True),
        sa.Column("auto_accepted", sa.Integer(), nullable=True),
        sa.Column("queued", sa.Integer(), nullable=True),
        sa.Column("discarded", sa.Integer(), nullable=True),
        sa.Column("errors", sa.Integer(), nullable=True),
        sa.Column("outcomes", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_run_summaries_id"), "run_summaries", ["id"], unique=False)
    op.create_index(op.f("ix_run_summaries_finished_at"), "run_summaries", ["finished_at"], unique=False)


def downgrade() -> None:
    op.drop_table("run_summaries")
    op.drop_table("email_logs")
    op.drop_table("transition_events")
    op.drop_table("review_queue")
    op.drop_table("status_history")
    op.drop_table("applications")
