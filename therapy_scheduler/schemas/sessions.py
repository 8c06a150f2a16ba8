"""Therapy session schemas for request/response validation."""

from datetime import UTC, date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from therapy_scheduler.schemas.notifications import NotificationRequest


class SessionStatus(str, Enum):
    """Session status enumeration."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses accept no further transitions."""
        return self is not SessionStatus.SCHEDULED


class SessionType(str, Enum):
    """Session type enumeration."""

    INDIVIDUAL = "individual"
    INITIAL_ASSESSMENT = "initial_assessment"
    FOLLOW_UP = "follow_up"
    CRISIS_INTERVENTION = "crisis_intervention"


class NoteStatus(str, Enum):
    """Clinical note status enumeration."""

    DRAFT = "draft"
    FINAL = "final"


class ChangeType(str, Enum):
    """Change history record type."""

    RESCHEDULE = "reschedule"
    CANCELLATION = "cancellation"


class RescheduleIntent(str, Enum):
    """What the patient is told to expect after a cancellation."""

    NONE = "none"
    REQUEST = "request"
    AUTO = "auto"


class SessionView(str, Enum):
    """Session list views."""

    UPCOMING = "upcoming"
    PAST = "past"
    TODAY = "today"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ALL = "all"


def _normalize_start(value: datetime) -> datetime:
    """Convert a start time to UTC at minute precision. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(second=0, microsecond=0)


class SessionCreate(BaseModel):
    """Schema for booking a new session."""

    therapist_id: UUID
    patient_id: UUID | None = Field(
        None, description="Defaults to the acting patient when omitted"
    )
    scheduled_at: datetime
    duration_minutes: int = Field(default=60, gt=0, le=480)
    session_type: SessionType = SessionType.INDIVIDUAL
    notes: str | None = Field(None, max_length=2000)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store start times in UTC."""
        return _normalize_start(v)


class SessionCancel(BaseModel):
    """Schema for cancelling a session."""

    reason: str = Field(..., min_length=1, max_length=1000)
    notify_patient: bool = True
    reschedule_intent: RescheduleIntent = RescheduleIntent.NONE

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Reject whitespace-only reasons."""
        v = v.strip()
        if not v:
            raise ValueError("Cancellation reason is required")
        return v


class SessionReschedule(BaseModel):
    """Schema for moving a session to a new start time."""

    scheduled_at: datetime
    duration_minutes: int = Field(default=60, gt=0, le=480)
    notes: str | None = Field(None, max_length=1000)
    notify_patient: bool = True

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store start times in UTC."""
        return _normalize_start(v)


class FollowUpRequest(BaseModel):
    """Slot for a follow-up session booked on completion."""

    scheduled_at: datetime
    duration_minutes: int = Field(default=60, gt=0, le=480)
    session_type: SessionType = SessionType.FOLLOW_UP

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store start times in UTC."""
        return _normalize_start(v)


class SessionNotesUpdate(BaseModel):
    """Clinical notes written for a session."""

    session_notes: str = Field(..., min_length=1, max_length=10000)
    treatment_plan: str | None = Field(None, max_length=5000)
    session_rating: int | None = Field(None, ge=1, le=10)
    mood_rating: int | None = Field(None, ge=1, le=10)
    problem_areas: list[str] | None = None
    follow_up_needed: bool = False
    follow_up_type: SessionType | None = None
    mark_final: bool = False


class SessionCompletion(SessionNotesUpdate):
    """Schema for completing a session with its notes."""

    follow_up: FollowUpRequest | None = Field(
        None, description="Book this follow-up slot when a follow-up is needed"
    )


class SessionResponse(BaseModel):
    """Schema for session response."""

    id: UUID
    therapist_id: UUID
    patient_id: UUID
    scheduled_at: datetime
    duration_minutes: int
    session_type: SessionType
    status: SessionStatus
    session_notes: str | None = None
    treatment_plan: str | None = None
    session_rating: int | None = None
    mood_rating: int | None = None
    problem_areas: list[str] | None = None
    follow_up_needed: bool = False
    follow_up_type: SessionType | None = None
    note_status: NoteStatus | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    """Schema for paginated session list response."""

    total: int
    page: int
    page_size: int
    items: list[SessionResponse]


class SessionFilters(BaseModel):
    """Schema for session filtering."""

    view: SessionView = SessionView.UPCOMING
    patient_id: UUID | None = None
    therapist_id: UUID | None = None
    session_type: SessionType | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)


class ChangeRecordResponse(BaseModel):
    """Schema for one change history entry."""

    id: int
    session_id: UUID
    change_type: ChangeType
    changed_by: UUID
    notes: str | None = None
    previous_scheduled_at: datetime | None = None
    new_scheduled_at: datetime | None = None
    previous_duration_minutes: int | None = None
    new_duration_minutes: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ChangeHistoryResponse(BaseModel):
    """Schema for a session's change history, oldest first."""

    session_id: UUID
    items: list[ChangeRecordResponse]


class PreviousSessionNote(BaseModel):
    """Notes from an earlier completed session with the same patient."""

    id: UUID
    scheduled_at: datetime
    session_type: SessionType
    session_notes: str | None = None
    note_status: NoteStatus | None = None

    model_config = {"from_attributes": True}


class AvailabilityWindow(BaseModel):
    """One bookable slot. Derived on demand, never stored."""

    therapist_id: UUID
    on_date: date
    start_time: time
    starts_at: datetime
    duration_minutes: int


class AvailabilityResponse(BaseModel):
    """Schema for a therapist's open slots on one date."""

    therapist_id: UUID
    on_date: date
    slots: list[AvailabilityWindow]
    fully_booked: bool


class CancellationResult(BaseModel):
    """Outcome of a cancellation."""

    session: SessionResponse
    change_record: ChangeRecordResponse
    late_cancellation: bool
    message: str
    notification: NotificationRequest | None = None


class RescheduleResult(BaseModel):
    """Outcome of a reschedule."""

    session: SessionResponse
    change_record: ChangeRecordResponse
    notification: NotificationRequest | None = None


class CompletionResult(BaseModel):
    """Outcome of completing a session."""

    session: SessionResponse
    follow_up_required: bool = False
    follow_up_session: SessionResponse | None = None
    notification: NotificationRequest | None = None
