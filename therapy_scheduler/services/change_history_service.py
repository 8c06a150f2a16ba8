"""Change history service: append-only audit trail for session changes."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.models.session_changes import session_changes
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.schemas.sessions import (
    ChangeRecordResponse,
    ChangeType,
    PreviousSessionNote,
    SessionStatus,
)


class ChangeHistoryService:
    """
    Service for session change records.

    Records are only ever inserted. ``record`` never commits: it runs inside
    the unit of work of the status change it documents, so both land or
    neither does.
    """

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def record(
        self,
        session_id: UUID,
        change_type: ChangeType,
        actor_id: UUID,
        notes: str | None,
        created_at: datetime,
        previous_start: datetime | None = None,
        new_start: datetime | None = None,
        previous_duration: int | None = None,
        new_duration: int | None = None,
    ) -> ChangeRecordResponse:
        """
        Append a change record.

        Args:
            session_id: Session the change applies to
            change_type: Reschedule or cancellation
            actor_id: User who made the change
            notes: Free-text reason or notes
            created_at: Time of the change
            previous_start: Start time before a reschedule
            new_start: Start time after a reschedule
            previous_duration: Duration before a reschedule
            new_duration: Duration after a reschedule

        Returns:
            The stored record

        Raises:
            ValueError: If the start times do not match the change type
        """
        if change_type is ChangeType.RESCHEDULE:
            if previous_start is None or new_start is None:
                raise ValueError("Reschedule records need previous and new start times")
        elif previous_start is not None or new_start is not None:
            raise ValueError("Only reschedule records carry start times")

        stmt = (
            insert(session_changes)
            .values(
                session_id=session_id,
                change_type=change_type.value,
                changed_by=actor_id,
                notes=notes,
                previous_scheduled_at=previous_start,
                new_scheduled_at=new_start,
                previous_duration_minutes=previous_duration,
                new_duration_minutes=new_duration,
                created_at=created_at,
            )
            .returning(session_changes)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return ChangeRecordResponse.model_validate(dict(row._mapping))

    async def history(
        self,
        session_id: UUID,
        limit: int | None = None,
    ) -> list[ChangeRecordResponse]:
        """
        Get a session's change records, oldest first.

        Args:
            session_id: Session ID
            limit: Return only the most recent N records (still oldest first)

        Returns:
            Ordered change records
        """
        if limit is None:
            stmt = (
                select(session_changes)
                .where(session_changes.c.session_id == session_id)
                .order_by(session_changes.c.created_at.asc(), session_changes.c.id.asc())
            )
            result = await self.db.execute(stmt)
            rows = result.fetchall()
        else:
            stmt = (
                select(session_changes)
                .where(session_changes.c.session_id == session_id)
                .order_by(session_changes.c.created_at.desc(), session_changes.c.id.desc())
                .limit(limit)
            )
            result = await self.db.execute(stmt)
            rows = list(reversed(result.fetchall()))

        return [ChangeRecordResponse.model_validate(dict(row._mapping)) for row in rows]

    async def recent_session_notes(
        self,
        therapist_id: UUID,
        patient_id: UUID,
        exclude_session_id: UUID | None,
        limit: int,
    ) -> list[PreviousSessionNote]:
        """
        Get notes of the most recent completed sessions for a therapist/patient pair.

        Args:
            therapist_id: Therapist ID
            patient_id: Patient ID
            exclude_session_id: Session to leave out, usually the one being viewed
            limit: Maximum number of sessions

        Returns:
            Notes, most recent session first
        """
        conditions = [
            therapy_sessions.c.therapist_id == therapist_id,
            therapy_sessions.c.patient_id == patient_id,
            therapy_sessions.c.status == SessionStatus.COMPLETED.value,
        ]
        if exclude_session_id is not None:
            conditions.append(therapy_sessions.c.id != exclude_session_id)

        stmt = (
            select(
                therapy_sessions.c.id,
                therapy_sessions.c.scheduled_at,
                therapy_sessions.c.session_type,
                therapy_sessions.c.session_notes,
                therapy_sessions.c.note_status,
            )
            .where(and_(*conditions))
            .order_by(therapy_sessions.c.scheduled_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [PreviousSessionNote.model_validate(dict(row._mapping)) for row in result.fetchall()]
