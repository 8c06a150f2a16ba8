"""Therapy sessions table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from therapy_scheduler.models.base import UTCDateTime, metadata

therapy_sessions = Table(
    "therapy_sessions",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Participants
    Column("therapist_id", Uuid, ForeignKey("users.id"), nullable=False),
    Column("patient_id", Uuid, ForeignKey("users.id"), nullable=False),
    # Appointment details
    Column("scheduled_at", UTCDateTime, nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    Column("session_type", String(32), nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="scheduled"),
    # Clinical notes
    Column("session_notes", Text, nullable=True),
    Column("treatment_plan", Text, nullable=True),
    Column("session_rating", Integer, nullable=True),
    Column("mood_rating", Integer, nullable=True),
    Column("problem_areas", JSON, nullable=True),
    Column("follow_up_needed", Boolean, nullable=False, server_default=text("false")),
    Column("follow_up_type", String(32), nullable=True),
    Column("note_status", String(10), nullable=True),
    # Cancellation
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_at", UTCDateTime, nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("completed_at", UTCDateTime, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint("duration_minutes > 0", name="therapy_sessions_duration_check"),
    CheckConstraint(
        "status IN ('scheduled', 'completed', 'cancelled', 'no_show')",
        name="therapy_sessions_status_check",
    ),
    CheckConstraint(
        "session_type IN ('individual', 'initial_assessment', 'follow_up', 'crisis_intervention')",
        name="therapy_sessions_type_check",
    ),
    CheckConstraint(
        "session_rating IS NULL OR session_rating BETWEEN 1 AND 10",
        name="therapy_sessions_session_rating_check",
    ),
    CheckConstraint(
        "mood_rating IS NULL OR mood_rating BETWEEN 1 AND 10",
        name="therapy_sessions_mood_rating_check",
    ),
    CheckConstraint(
        "note_status IS NULL OR note_status IN ('draft', 'final')",
        name="therapy_sessions_note_status_check",
    ),
)

# One live session per therapist and start time; cancelled rows free the slot
Index(
    "uq_therapy_sessions_therapist_slot",
    therapy_sessions.c.therapist_id,
    therapy_sessions.c.scheduled_at,
    unique=True,
    postgresql_where=text("status <> 'cancelled'"),
    sqlite_where=text("status <> 'cancelled'"),
)
Index("idx_therapy_sessions_patient_id", therapy_sessions.c.patient_id)
Index(
    "idx_therapy_sessions_therapist_scheduled",
    therapy_sessions.c.therapist_id,
    therapy_sessions.c.scheduled_at,
)
Index("idx_therapy_sessions_status", therapy_sessions.c.status)
