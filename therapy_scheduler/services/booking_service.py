"""Booking service: conflict-checked session creation."""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_scheduler.core.authorization import Actor, ActorRole, authorize_booking
from therapy_scheduler.core.clock import Clock, utc_now
from therapy_scheduler.core.exceptions import (
    NotFoundException,
    PersistenceException,
    SlotConflictException,
    ValidationException,
)
from therapy_scheduler.database import atomic, is_slot_conflict
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.models.users import users
from therapy_scheduler.schemas.sessions import (
    SessionCreate,
    SessionResponse,
    SessionStatus,
)
from therapy_scheduler.services.availability_service import AvailabilityService

logger = structlog.get_logger(__name__)


class BookingService:
    """
    Service that claims therapist slots.

    At most one non-cancelled session may hold a (therapist, start time)
    pair. The check below runs inside the write transaction and the partial
    unique index on therapy_sessions backs it up, so the loser of a race
    always gets a SlotConflictException and leaves nothing behind.
    """

    def __init__(
        self,
        db: AsyncSession,
        availability: AvailabilityService | None = None,
        clock: Clock = utc_now,
    ):
        """Initialize service with database session, availability service and clock."""
        self.db = db
        self.availability = availability or AvailabilityService(db)
        self.clock = clock

    async def ensure_therapist_bookable(self, therapist_id: UUID) -> dict[str, Any]:
        """
        Get an active, approved therapist.

        Raises:
            NotFoundException: If no such therapist exists
        """
        stmt = select(users).where(
            and_(
                users.c.id == therapist_id,
                users.c.role == ActorRole.THERAPIST.value,
                users.c.is_active == True,  # noqa: E712
                users.c.is_approved == True,  # noqa: E712
            )
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            raise NotFoundException("Therapist not found")
        return dict(row._mapping)

    async def _ensure_patient_exists(self, patient_id: UUID) -> None:
        stmt = select(users.c.id).where(
            and_(
                users.c.id == patient_id,
                users.c.role == ActorRole.PATIENT.value,
                users.c.is_active == True,  # noqa: E712
            )
        )
        result = await self.db.execute(stmt)
        if result.first() is None:
            raise NotFoundException("Patient not found")

    async def slot_taken(
        self,
        therapist_id: UUID,
        start: datetime,
        exclude_session_id: UUID | None = None,
    ) -> bool:
        """Check whether a non-cancelled session already starts at this time."""
        conditions = [
            therapy_sessions.c.therapist_id == therapist_id,
            therapy_sessions.c.scheduled_at == start,
            therapy_sessions.c.status != SessionStatus.CANCELLED.value,
        ]
        if exclude_session_id is not None:
            conditions.append(therapy_sessions.c.id != exclude_session_id)

        result = await self.db.execute(select(therapy_sessions.c.id).where(and_(*conditions)))
        return result.first() is not None

    async def insert_session(self, values: dict[str, Any]) -> dict[str, Any]:
        """
        Check the slot and insert a scheduled session.

        Must run inside the caller's unit of work.

        Raises:
            SlotConflictException: If the slot is already held
        """
        if await self.slot_taken(values["therapist_id"], values["scheduled_at"]):
            raise SlotConflictException()

        now = self.clock()
        stmt = (
            insert(therapy_sessions)
            .values(
                status=SessionStatus.SCHEDULED.value,
                created_at=now,
                updated_at=now,
                **values,
            )
            .returning(therapy_sessions)
        )
        result = await self.db.execute(stmt)
        return dict(result.fetchone()._mapping)

    async def conflict_error(
        self,
        therapist_id: UUID,
        start: datetime,
    ) -> SlotConflictException:
        """Build a slot conflict error carrying the next open slots."""
        async with atomic(self.db):
            suggestions = await self.availability.next_available_slots(therapist_id, start)
        logger.info(
            "slot_conflict",
            therapist_id=str(therapist_id),
            scheduled_at=start.isoformat(),
            next_available=[s.isoformat() for s in suggestions],
        )
        return SlotConflictException(next_available=[s.isoformat() for s in suggestions])

    async def write_error(
        self,
        exc: Exception,
        therapist_id: UUID,
        start: datetime,
    ) -> Exception:
        """Map a failed slot write to a slot conflict, or to a storage error."""
        if isinstance(exc, IntegrityError) and not is_slot_conflict(exc):
            logger.error(
                "session_write_failed",
                therapist_id=str(therapist_id),
                error=str(exc.orig),
            )
            return PersistenceException()
        return await self.conflict_error(therapist_id, start)

    async def book(self, actor: Actor, data: SessionCreate) -> SessionResponse:
        """
        Book a new session.

        Args:
            actor: Acting user
            data: Booking request

        Returns:
            Created session in status scheduled

        Raises:
            ValidationException: If the start time is not in the future
            ForbiddenException: If the actor may not book this session
            NotFoundException: If the therapist or patient does not exist
            SlotConflictException: If the slot is already held
        """
        patient_id = authorize_booking(actor, data.therapist_id, data.patient_id)

        if data.scheduled_at <= self.clock():
            raise ValidationException("Session start time must be in the future")

        values = {
            "therapist_id": data.therapist_id,
            "patient_id": patient_id,
            "scheduled_at": data.scheduled_at,
            "duration_minutes": data.duration_minutes,
            "session_type": data.session_type.value,
            "session_notes": data.notes,
        }

        try:
            async with atomic(self.db):
                await self.ensure_therapist_bookable(data.therapist_id)
                await self._ensure_patient_exists(patient_id)
                row = await self.insert_session(values)
        except (IntegrityError, SlotConflictException) as exc:
            raise await self.write_error(exc, data.therapist_id, data.scheduled_at) from exc

        self.availability.invalidate(data.therapist_id, data.scheduled_at)

        logger.info(
            "session_booked",
            session_id=str(row["id"]),
            therapist_id=str(data.therapist_id),
            patient_id=str(patient_id),
            scheduled_at=data.scheduled_at.isoformat(),
            actor_id=str(actor.id),
        )
        return SessionResponse.model_validate(row)
