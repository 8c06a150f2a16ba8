"""User model definition using SQLAlchemy Core.

Users are owned by the identity service. The scheduling core only reads
them to resolve actors and to check that a therapist is bookable.
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from therapy_scheduler.models.base import UTCDateTime, metadata

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", Text, nullable=False, unique=True, index=True),
    Column("full_name", Text),
    Column("role", Text, nullable=False, server_default=text("'patient'")),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Therapists become bookable once their professional application is approved
    Column("is_approved", Boolean, nullable=False, server_default=text("false")),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "role IN ('patient', 'therapist', 'admin')",
        name="users_role_check",
    ),
)
