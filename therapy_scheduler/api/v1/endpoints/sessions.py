"""Therapy session endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from therapy_scheduler.dependencies import Availability, CurrentActor, DatabaseSession, Dispatcher
from therapy_scheduler.schemas.sessions import (
    CancellationResult,
    ChangeHistoryResponse,
    CompletionResult,
    PreviousSessionNote,
    RescheduleResult,
    SessionCancel,
    SessionCompletion,
    SessionCreate,
    SessionFilters,
    SessionListResponse,
    SessionNotesUpdate,
    SessionReschedule,
    SessionResponse,
    SessionType,
    SessionView,
)
from therapy_scheduler.services.booking_service import BookingService
from therapy_scheduler.services.session_lifecycle_service import SessionLifecycleService
from therapy_scheduler.services.session_service import SessionService

router = APIRouter()


@router.post(
    "/",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book a session",
)
async def book_session(
    data: SessionCreate,
    current_actor: CurrentActor,
    availability: Availability,
) -> SessionResponse:
    """
    Book a session in an open slot.

    A lost race for the slot returns 409 with ``details.next_available``.

    Args:
        data: Therapist, patient, start time, duration and type
        current_actor: Authenticated actor
        availability: Availability service

    Returns:
        Created session
    """
    service = BookingService(availability.db, availability)
    return await service.book(current_actor, data)


@router.get(
    "/",
    response_model=SessionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List sessions",
)
async def list_sessions(
    current_actor: CurrentActor,
    db: DatabaseSession,
    view: SessionView = Query(SessionView.UPCOMING),
    patient_id: UUID | None = Query(None),
    therapist_id: UUID | None = Query(None),
    session_type: SessionType | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
) -> SessionListResponse:
    """
    List the actor's sessions.

    Args:
        current_actor: Authenticated actor
        db: Database session
        view: upcoming, past, today, completed, cancelled or all
        patient_id: Filter by patient
        therapist_id: Filter by therapist
        session_type: Filter by session type
        from_date: First clinic-local date to include
        to_date: Last clinic-local date to include
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of sessions
    """
    filters = SessionFilters(
        view=view,
        patient_id=patient_id,
        therapist_id=therapist_id,
        session_type=session_type,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await SessionService(db).list_sessions(current_actor, filters)


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get session by ID",
)
async def get_session(
    session_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> SessionResponse:
    """Get a session the actor is a party to."""
    return await SessionService(db).get_session(session_id, current_actor)


@router.post(
    "/{session_id}/cancel",
    response_model=CancellationResult,
    status_code=status.HTTP_200_OK,
    summary="Cancel a session",
)
async def cancel_session(
    session_id: UUID,
    data: SessionCancel,
    current_actor: CurrentActor,
    availability: Availability,
    dispatcher: Dispatcher,
) -> CancellationResult:
    """
    Cancel a scheduled session.

    Args:
        session_id: Session ID
        data: Reason, notification flag and reschedule intent
        current_actor: Authenticated actor
        availability: Availability service
        dispatcher: Notification dispatcher

    Returns:
        Cancelled session with its change record and late-cancellation flag
    """
    service = SessionLifecycleService(availability.db, dispatcher, availability)
    return await service.cancel(session_id, current_actor, data)


@router.post(
    "/{session_id}/reschedule",
    response_model=RescheduleResult,
    status_code=status.HTTP_200_OK,
    summary="Reschedule a session",
)
async def reschedule_session(
    session_id: UUID,
    data: SessionReschedule,
    current_actor: CurrentActor,
    availability: Availability,
    dispatcher: Dispatcher,
) -> RescheduleResult:
    """
    Move a scheduled session to a new slot.

    Args:
        session_id: Session ID
        data: New start time, duration, notes and notification flag
        current_actor: Authenticated actor
        availability: Availability service
        dispatcher: Notification dispatcher

    Returns:
        Rescheduled session with its change record
    """
    service = SessionLifecycleService(availability.db, dispatcher, availability)
    return await service.reschedule(session_id, current_actor, data)


@router.post(
    "/{session_id}/complete",
    response_model=CompletionResult,
    status_code=status.HTTP_200_OK,
    summary="Complete a session",
)
async def complete_session(
    session_id: UUID,
    data: SessionCompletion,
    current_actor: CurrentActor,
    availability: Availability,
    dispatcher: Dispatcher,
) -> CompletionResult:
    """
    Complete a session with its clinical notes and an optional follow-up.

    Args:
        session_id: Session ID
        data: Notes payload and optional follow-up slot
        current_actor: Authenticated actor
        availability: Availability service
        dispatcher: Notification dispatcher

    Returns:
        Completed session and follow-up outcome
    """
    service = SessionLifecycleService(availability.db, dispatcher, availability)
    return await service.complete(session_id, current_actor, data)


@router.post(
    "/{session_id}/no-show",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark a session as no-show",
)
async def mark_no_show(
    session_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> SessionResponse:
    """Mark a session whose start time has passed as a no-show."""
    return await SessionLifecycleService(db).mark_no_show(session_id, current_actor)


@router.patch(
    "/{session_id}/notes",
    response_model=SessionResponse,
    status_code=status.HTTP_200_OK,
    summary="Revise draft session notes",
)
async def update_session_notes(
    session_id: UUID,
    data: SessionNotesUpdate,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> SessionResponse:
    """Revise the notes of a completed session while they are still a draft."""
    return await SessionLifecycleService(db).update_notes(session_id, current_actor, data)


@router.get(
    "/{session_id}/history",
    response_model=ChangeHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Get session change history",
)
async def get_change_history(
    session_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
    limit: int | None = Query(None, ge=1, le=100),
) -> ChangeHistoryResponse:
    """
    Get reschedules and cancellations of a session, oldest first.

    Args:
        session_id: Session ID
        current_actor: Authenticated actor
        db: Database session
        limit: Only the most recent N records

    Returns:
        Ordered change history
    """
    return await SessionService(db).get_change_history(session_id, current_actor, limit)


@router.get(
    "/{session_id}/previous-notes",
    response_model=list[PreviousSessionNote],
    status_code=status.HTTP_200_OK,
    summary="Get notes from earlier sessions",
)
async def get_previous_notes(
    session_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
    limit: int | None = Query(None, ge=1, le=20),
) -> list[PreviousSessionNote]:
    """Get notes of the most recent completed sessions with the same patient."""
    return await SessionService(db).get_previous_notes(session_id, current_actor, limit)
