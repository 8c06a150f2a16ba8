"""Session lifecycle service: cancel, reschedule, complete and no-show."""

from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.config import settings
from therapy_scheduler.core.authorization import Actor, ActorRole, SessionAction
from therapy_scheduler.core.clock import Clock, utc_now
from therapy_scheduler.core.exceptions import (
    InvalidTransitionException,
    SlotConflictException,
    ValidationException,
)
from therapy_scheduler.core.state_machine import ensure_scheduled, ensure_transition
from therapy_scheduler.database import atomic
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.schemas.notifications import NotificationRequest
from therapy_scheduler.schemas.sessions import (
    CancellationResult,
    ChangeType,
    CompletionResult,
    NoteStatus,
    RescheduleResult,
    SessionCancel,
    SessionCompletion,
    SessionNotesUpdate,
    SessionReschedule,
    SessionResponse,
    SessionStatus,
)
from therapy_scheduler.services.availability_service import AvailabilityService
from therapy_scheduler.services.booking_service import BookingService
from therapy_scheduler.services.change_history_service import ChangeHistoryService
from therapy_scheduler.services.notification_service import (
    NotificationDispatcher,
    build_cancellation_notification,
    build_follow_up_notification,
    build_reschedule_notification,
    dispatch_notifications,
)
from therapy_scheduler.services.session_service import SessionService, fetch_session, fetch_user_name

logger = structlog.get_logger(__name__)


def _notes_values(data: SessionNotesUpdate) -> dict[str, Any]:
    return {
        "session_notes": data.session_notes,
        "treatment_plan": data.treatment_plan,
        "session_rating": data.session_rating,
        "mood_rating": data.mood_rating,
        "problem_areas": data.problem_areas,
        "follow_up_needed": data.follow_up_needed,
        "follow_up_type": data.follow_up_type.value if data.follow_up_type else None,
        "note_status": (NoteStatus.FINAL if data.mark_final else NoteStatus.DRAFT).value,
    }


class SessionLifecycleService:
    """
    Service moving sessions through their status lifecycle.

    Every operation is one unit of work: the authorization check, the
    status-guarded update and its change record commit together or not at
    all. Notifications are dispatched only after the commit, and a delivery
    failure never undoes the change.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        availability: AvailabilityService | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize service with database session, collaborators and clock."""
        self.db = db
        self.dispatcher = dispatcher
        self.availability = availability or AvailabilityService(db)
        self.clock = clock
        self.sessions = SessionService(db, clock)
        self.history = ChangeHistoryService(db)
        self.booking = BookingService(db, self.availability, clock)

    async def _guarded_update(
        self,
        session: dict[str, Any],
        values: dict[str, Any],
        expected_status: SessionStatus = SessionStatus.SCHEDULED,
        *extra_conditions: Any,
    ) -> dict[str, Any]:
        """
        Update a session only while it still matches the row it was decided on.

        The status and the start time must both be unchanged since the
        session was read.

        Raises:
            InvalidTransitionException: If a concurrent change moved the session first
        """
        session_id = session["id"]
        stmt = (
            update(therapy_sessions)
            .where(
                and_(
                    therapy_sessions.c.id == session_id,
                    therapy_sessions.c.status == expected_status.value,
                    therapy_sessions.c.scheduled_at == session["scheduled_at"],
                    *extra_conditions,
                )
            )
            .values(updated_at=self.clock(), **values)
            .returning(therapy_sessions)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if row is None:
            current = await fetch_session(self.db, session_id)
            if current["status"] != expected_status.value:
                raise InvalidTransitionException(
                    f"Session is {current['status']} and cannot be changed",
                    current_status=current["status"],
                )
            raise InvalidTransitionException(
                "Session was changed by another request, reload and retry",
                current_status=current["status"],
            )
        return dict(row._mapping)

    async def _has_later_session(self, session: dict[str, Any]) -> bool:
        """Check for a scheduled session of the same pair after this one."""
        stmt = select(therapy_sessions.c.id).where(
            and_(
                therapy_sessions.c.therapist_id == session["therapist_id"],
                therapy_sessions.c.patient_id == session["patient_id"],
                therapy_sessions.c.status == SessionStatus.SCHEDULED.value,
                therapy_sessions.c.scheduled_at > session["scheduled_at"],
            )
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def cancel(
        self,
        session_id: UUID,
        actor: Actor,
        data: SessionCancel,
    ) -> CancellationResult:
        """
        Cancel a scheduled session.

        Cancelling inside the late-cancellation window is allowed; the result
        and the notification are flagged as late.

        Args:
            session_id: Session ID
            actor: Acting user
            data: Reason, notification flag and reschedule intent

        Returns:
            Cancelled session, its change record and the notification sent, if any

        Raises:
            NotFoundException: If the session does not exist or the actor is not a party to it
            InvalidTransitionException: If the session is not scheduled
        """
        now = self.clock()
        async with atomic(self.db):
            session = await self.sessions.get_authorized(
                session_id, actor, SessionAction.CANCEL, for_update=True
            )
            ensure_transition(session["status"], SessionStatus.CANCELLED)

            updated = await self._guarded_update(
                session,
                {
                    "status": SessionStatus.CANCELLED.value,
                    "cancellation_reason": data.reason,
                    "cancelled_at": now,
                    "cancelled_by": actor.id,
                },
            )
            record = await self.history.record(
                session_id=session_id,
                change_type=ChangeType.CANCELLATION,
                actor_id=actor.id,
                notes=data.reason,
                created_at=now,
            )
            therapist_name = await fetch_user_name(self.db, updated["therapist_id"])
            patient_name = await fetch_user_name(self.db, updated["patient_id"])

        self.availability.invalidate(updated["therapist_id"], updated["scheduled_at"])

        late = updated["scheduled_at"] - now < timedelta(
            hours=settings.late_cancellation_window_hours
        )
        logger.info(
            "session_cancelled",
            session_id=str(session_id),
            actor_id=str(actor.id),
            late_cancellation=late,
            reschedule_intent=data.reschedule_intent.value,
        )

        notification = None
        if data.notify_patient:
            if actor.role is ActorRole.PATIENT:
                notification = build_cancellation_notification(
                    updated,
                    recipient_id=updated["therapist_id"],
                    therapist_name=therapist_name,
                    late=late,
                    cancelled_by_patient=True,
                    patient_name=patient_name,
                )
            else:
                notification = build_cancellation_notification(
                    updated,
                    recipient_id=updated["patient_id"],
                    therapist_name=therapist_name,
                    late=late,
                    intent=data.reschedule_intent,
                )
            await dispatch_notifications(self.dispatcher, [notification])

        message = "Session cancelled successfully."
        if late:
            message += (
                f" Note: this cancellation was within "
                f"{settings.late_cancellation_window_hours} hours of the scheduled time."
            )

        return CancellationResult(
            session=SessionResponse.model_validate(updated),
            change_record=record,
            late_cancellation=late,
            message=message,
            notification=notification,
        )

    async def reschedule(
        self,
        session_id: UUID,
        actor: Actor,
        data: SessionReschedule,
    ) -> RescheduleResult:
        """
        Move a scheduled session to a new start time and duration.

        The new slot goes through the same conflict check as a booking.

        Args:
            session_id: Session ID
            actor: Acting user
            data: New start, duration, notes and notification flag

        Returns:
            Rescheduled session, its change record and the notification sent, if any

        Raises:
            ValidationException: If the new start time is not in the future
            NotFoundException: If the session does not exist or the actor is not a party to it
            ForbiddenException: If the actor's role may not reschedule
            InvalidTransitionException: If the session is not scheduled
            SlotConflictException: If the new slot is already held
        """
        now = self.clock()
        if data.scheduled_at <= now:
            raise ValidationException("Session start time must be in the future")

        session: dict[str, Any] = {}
        try:
            async with atomic(self.db):
                session = await self.sessions.get_authorized(
                    session_id, actor, SessionAction.RESCHEDULE, for_update=True
                )
                ensure_scheduled(session["status"], "reschedule")

                if await self.booking.slot_taken(
                    session["therapist_id"], data.scheduled_at, exclude_session_id=session_id
                ):
                    raise SlotConflictException()

                updated = await self._guarded_update(
                    session,
                    {
                        "scheduled_at": data.scheduled_at,
                        "duration_minutes": data.duration_minutes,
                    },
                )
                record = await self.history.record(
                    session_id=session_id,
                    change_type=ChangeType.RESCHEDULE,
                    actor_id=actor.id,
                    notes=data.notes,
                    created_at=now,
                    previous_start=session["scheduled_at"],
                    new_start=data.scheduled_at,
                    previous_duration=session["duration_minutes"],
                    new_duration=data.duration_minutes,
                )
                therapist_name = await fetch_user_name(self.db, session["therapist_id"])
        except (IntegrityError, SlotConflictException) as exc:
            raise await self.booking.write_error(
                exc, session["therapist_id"], data.scheduled_at
            ) from exc

        self.availability.invalidate(
            updated["therapist_id"], session["scheduled_at"], updated["scheduled_at"]
        )
        logger.info(
            "session_rescheduled",
            session_id=str(session_id),
            actor_id=str(actor.id),
            previous_scheduled_at=session["scheduled_at"].isoformat(),
            new_scheduled_at=updated["scheduled_at"].isoformat(),
        )

        notification = None
        if data.notify_patient:
            notification = build_reschedule_notification(updated, therapist_name)
            await dispatch_notifications(self.dispatcher, [notification])

        return RescheduleResult(
            session=SessionResponse.model_validate(updated),
            change_record=record,
            notification=notification,
        )

    async def complete(
        self,
        session_id: UUID,
        actor: Actor,
        data: SessionCompletion,
    ) -> CompletionResult:
        """
        Complete a session that has started, storing its clinical notes.

        When a follow-up is needed and the pair has no later scheduled
        session, the result reports it. A follow-up slot supplied by the
        caller is booked in the same unit of work.

        Args:
            session_id: Session ID
            actor: Acting user
            data: Notes payload and optional follow-up slot

        Returns:
            Completed session and the follow-up session, if one was booked

        Raises:
            ValidationException: If the follow-up request is inconsistent
            NotFoundException: If the session does not exist or the actor is not a party to it
            ForbiddenException: If the actor's role may not complete sessions
            InvalidTransitionException: If the session is not scheduled or has not started
            SlotConflictException: If the follow-up slot is already held
        """
        now = self.clock()
        if data.follow_up is not None:
            if not data.follow_up_needed:
                raise ValidationException("A follow-up slot requires follow_up_needed")
            if data.follow_up.scheduled_at <= now:
                raise ValidationException("Follow-up start time must be in the future")

        session: dict[str, Any] = {}
        follow_up: dict[str, Any] | None = None
        try:
            async with atomic(self.db):
                session = await self.sessions.get_authorized(
                    session_id, actor, SessionAction.COMPLETE, for_update=True
                )
                ensure_transition(session["status"], SessionStatus.COMPLETED)
                if session["scheduled_at"] > now:
                    raise InvalidTransitionException(
                        "Cannot complete a session before its start time",
                        current_status=session["status"],
                    )

                updated = await self._guarded_update(
                    session,
                    {
                        **_notes_values(data),
                        "status": SessionStatus.COMPLETED.value,
                        "completed_at": now,
                    },
                )

                follow_up_required = data.follow_up_needed and not await self._has_later_session(
                    updated
                )
                if follow_up_required and data.follow_up is not None:
                    await self.booking.ensure_therapist_bookable(updated["therapist_id"])
                    follow_up = await self.booking.insert_session(
                        {
                            "therapist_id": updated["therapist_id"],
                            "patient_id": updated["patient_id"],
                            "scheduled_at": data.follow_up.scheduled_at,
                            "duration_minutes": data.follow_up.duration_minutes,
                            "session_type": data.follow_up.session_type.value,
                        }
                    )
                therapist_name = await fetch_user_name(self.db, updated["therapist_id"])
        except (IntegrityError, SlotConflictException) as exc:
            if data.follow_up is None:
                raise
            raise await self.booking.write_error(
                exc, session["therapist_id"], data.follow_up.scheduled_at
            ) from exc

        logger.info(
            "session_completed",
            session_id=str(session_id),
            actor_id=str(actor.id),
            note_status=updated["note_status"],
            follow_up_required=follow_up_required,
            follow_up_session_id=str(follow_up["id"]) if follow_up else None,
        )

        notification: NotificationRequest | None = None
        if follow_up is not None:
            self.availability.invalidate(follow_up["therapist_id"], follow_up["scheduled_at"])
            notification = build_follow_up_notification(follow_up, therapist_name)
            await dispatch_notifications(self.dispatcher, [notification])

        return CompletionResult(
            session=SessionResponse.model_validate(updated),
            follow_up_required=follow_up_required,
            follow_up_session=SessionResponse.model_validate(follow_up) if follow_up else None,
            notification=notification,
        )

    async def mark_no_show(self, session_id: UUID, actor: Actor) -> SessionResponse:
        """
        Mark a session whose start time has passed as a no-show.

        Raises:
            NotFoundException: If the session does not exist or the actor is not a party to it
            ForbiddenException: If the actor's role may not mark no-shows
            InvalidTransitionException: If the session is not scheduled or has not started
        """
        now = self.clock()
        async with atomic(self.db):
            session = await self.sessions.get_authorized(
                session_id, actor, SessionAction.MARK_NO_SHOW, for_update=True
            )
            ensure_transition(session["status"], SessionStatus.NO_SHOW)
            if session["scheduled_at"] > now:
                raise InvalidTransitionException(
                    "Cannot mark a session as no-show before its start time",
                    current_status=session["status"],
                )
            updated = await self._guarded_update(
                session, {"status": SessionStatus.NO_SHOW.value}
            )

        logger.info("session_marked_no_show", session_id=str(session_id), actor_id=str(actor.id))
        return SessionResponse.model_validate(updated)

    async def update_notes(
        self,
        session_id: UUID,
        actor: Actor,
        data: SessionNotesUpdate,
    ) -> SessionResponse:
        """
        Revise the draft notes of a completed session.

        Raises:
            NotFoundException: If the session does not exist or the actor is not a party to it
            ForbiddenException: If the actor's role may not write notes
            InvalidTransitionException: If the session is not completed or its notes are final
        """
        async with atomic(self.db):
            session = await self.sessions.get_authorized(
                session_id, actor, SessionAction.UPDATE_NOTES, for_update=True
            )
            if session["status"] != SessionStatus.COMPLETED.value:
                raise InvalidTransitionException(
                    "Notes can only be revised on completed sessions",
                    current_status=session["status"],
                )
            if session["note_status"] == NoteStatus.FINAL.value:
                raise InvalidTransitionException(
                    "Final session notes cannot be changed",
                    current_status=session["status"],
                )
            updated = await self._guarded_update(
                session,
                _notes_values(data),
                SessionStatus.COMPLETED,
                therapy_sessions.c.note_status == NoteStatus.DRAFT.value,
            )

        logger.info(
            "session_notes_updated",
            session_id=str(session_id),
            actor_id=str(actor.id),
            note_status=updated["note_status"],
        )
        return SessionResponse.model_validate(updated)
