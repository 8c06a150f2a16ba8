"""Notification schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Session notification types."""

    CANCELLATION = "appointment_cancelled"
    RESCHEDULE = "appointment_rescheduled"
    FOLLOW_UP = "follow_up_scheduled"


class NotificationRequest(BaseModel):
    """
    A notification the scheduling core wants delivered.

    The core only decides whether and what to send. Delivery belongs to a
    NotificationDispatcher and happens after the scheduling transaction commits.
    """

    recipient_id: UUID
    notification_type: NotificationType
    title: str
    content: str
    related_session_id: UUID
    priority: str = Field(default="normal", pattern="^(low|normal|high|urgent)$")
    data: dict[str, str] = Field(default_factory=dict)


class NotificationAck(BaseModel):
    """Delivery acknowledgement returned by a dispatcher."""

    notification_id: UUID | None = None
    success_count: int
    failure_count: int


class PushTokenRegister(BaseModel):
    """Schema for registering FCM token."""

    fcm_token: str = Field(..., min_length=1, description="Firebase Cloud Messaging token")
    platform: str = Field(
        ...,
        description="Platform type",
        pattern="^(android|ios|web)$",
    )


class PushTokenResponse(BaseModel):
    """Schema for push token response."""

    id: UUID
    user_id: UUID
    fcm_token: str
    platform: str
    is_active: bool
    last_used_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
