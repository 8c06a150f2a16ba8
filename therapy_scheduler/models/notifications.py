"""Notification model for tracking session notification history and delivery status."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from therapy_scheduler.models.base import UTCDateTime, metadata

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("notification_type", String(50), nullable=False),
    Column("priority", String(20), nullable=False, server_default="normal"),
    Column("related_session_id", Uuid, nullable=True),
    Column("data", JSON, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("sent_at", UTCDateTime, nullable=True),
    Column("delivered_at", UTCDateTime, nullable=True),
    Column("failure_reason", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "notification_type IN ('appointment_cancelled', 'appointment_rescheduled', "
        "'follow_up_scheduled', 'other')",
        name="notifications_type_check",
    ),
    CheckConstraint(
        "priority IN ('low', 'normal', 'high', 'urgent')",
        name="notifications_priority_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'sent', 'delivered', 'failed')",
        name="notifications_status_check",
    ),
)

Index("idx_notifications_user_id", notifications.c.user_id)
Index("idx_notifications_related_session", notifications.c.related_session_id)
Index("idx_notifications_status", notifications.c.status)
