"""Initial migration - create scheduling tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # Users (owned by the identity service, read by scheduling)
    op.create_table(
        "users",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), server_default=sa.text("'patient'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("is_approved", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("role IN ('patient', 'therapist', 'admin')", name="users_role_check"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # Therapy sessions
    op.create_table(
        "therapy_sessions",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("therapist_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("session_type", sa.VARCHAR(length=32), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="scheduled", nullable=False),
        sa.Column("session_notes", sa.Text(), nullable=True),
        sa.Column("treatment_plan", sa.Text(), nullable=True),
        sa.Column("session_rating", sa.Integer(), nullable=True),
        sa.Column("mood_rating", sa.Integer(), nullable=True),
        sa.Column("problem_areas", postgresql.JSON(), nullable=True),
        sa.Column("follow_up_needed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("follow_up_type", sa.VARCHAR(length=32), nullable=True),
        sa.Column("note_status", sa.VARCHAR(length=10), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(), nullable=True),
        sa.Column("completed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("duration_minutes > 0", name="therapy_sessions_duration_check"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled', 'no_show')",
            name="therapy_sessions_status_check",
        ),
        sa.CheckConstraint(
            "session_type IN ('individual', 'initial_assessment', 'follow_up', 'crisis_intervention')",
            name="therapy_sessions_type_check",
        ),
        sa.CheckConstraint(
            "session_rating IS NULL OR session_rating BETWEEN 1 AND 10",
            name="therapy_sessions_session_rating_check",
        ),
        sa.CheckConstraint(
            "mood_rating IS NULL OR mood_rating BETWEEN 1 AND 10",
            name="therapy_sessions_mood_rating_check",
        ),
        sa.CheckConstraint(
            "note_status IS NULL OR note_status IN ('draft', 'final')",
            name="therapy_sessions_note_status_check",
        ),
        sa.ForeignKeyConstraint(["therapist_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_therapy_sessions_therapist_slot",
        "therapy_sessions",
        ["therapist_id", "scheduled_at"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index("idx_therapy_sessions_patient_id", "therapy_sessions", ["patient_id"])
    op.create_index(
        "idx_therapy_sessions_therapist_scheduled",
        "therapy_sessions",
        ["therapist_id", "scheduled_at"],
    )
    op.create_index("idx_therapy_sessions_status", "therapy_sessions", ["status"])

    # Session change history
    op.create_table(
        "session_changes",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("session_id", postgresql.UUID(), nullable=False),
        sa.Column("change_type", sa.VARCHAR(length=20), nullable=False),
        sa.Column("changed_by", postgresql.UUID(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("previous_scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("new_scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("previous_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("new_duration_minutes", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "change_type IN ('reschedule', 'cancellation')",
            name="session_changes_type_check",
        ),
        sa.ForeignKeyConstraint(["session_id"], ["therapy_sessions.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_session_changes_session_created",
        "session_changes",
        ["session_id", "created_at"],
    )

    # Push tokens
    op.create_table(
        "push_tokens",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("user_id", postgresql.UUID(), nullable=False),
        sa.Column("fcm_token", sa.Text(), nullable=False),
        sa.Column("platform", sa.VARCHAR(length=10), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("last_used_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "platform IN ('android', 'ios', 'web')",
            name="push_tokens_platform_check",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_push_tokens_user_id", "push_tokens", ["user_id"])
    op.create_index("ix_push_tokens_is_active", "push_tokens", ["is_active"])

    # Notifications
    op.create_table(
        "notifications",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("user_id", postgresql.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("notification_type", sa.VARCHAR(length=50), nullable=False),
        sa.Column("priority", sa.VARCHAR(length=20), server_default="normal", nullable=False),
        sa.Column("related_session_id", postgresql.UUID(), nullable=True),
        sa.Column("data", postgresql.JSON(), nullable=True),
        sa.Column("status", sa.VARCHAR(length=20), server_default="pending", nullable=False),
        sa.Column("sent_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("delivered_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "notification_type IN ('appointment_cancelled', 'appointment_rescheduled', "
            "'follow_up_scheduled', 'other')",
            name="notifications_type_check",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="notifications_priority_check",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'delivered', 'failed')",
            name="notifications_status_check",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_notifications_user_id", "notifications", ["user_id"])
    op.create_index("idx_notifications_related_session", "notifications", ["related_session_id"])
    op.create_index("idx_notifications_status", "notifications", ["status"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("notifications")
    op.drop_table("push_tokens")
    op.drop_table("session_changes")
    op.drop_table("therapy_sessions")
    op.drop_table("users")
