"""Session change history (append-only audit log) using SQLAlchemy Core."""

from sqlalchemy import (
    BigInteger,
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
)

from therapy_scheduler.models.base import UTCDateTime, metadata

session_changes = Table(
    "session_changes",
    metadata,
    # Identity doubles as the tie-breaker for records sharing a timestamp
    Column(
        "id",
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column(
        "session_id",
        Uuid,
        ForeignKey("therapy_sessions.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("change_type", String(20), nullable=False),
    Column("changed_by", Uuid, nullable=False),
    Column("notes", Text, nullable=True),
    Column("previous_scheduled_at", UTCDateTime, nullable=True),
    Column("new_scheduled_at", UTCDateTime, nullable=True),
    Column("previous_duration_minutes", Integer, nullable=True),
    Column("new_duration_minutes", Integer, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "change_type IN ('reschedule', 'cancellation')",
        name="session_changes_type_check",
    ),
)

Index("idx_session_changes_session_created", session_changes.c.session_id, session_changes.c.created_at)
