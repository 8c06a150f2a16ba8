"""Tests for conflict-checked session booking."""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from therapy_scheduler.core.authorization import Actor, ActorRole
from therapy_scheduler.core.exceptions import (
    ForbiddenException,
    NotFoundException,
    PersistenceException,
    SlotConflictException,
    ValidationException,
)
from therapy_scheduler.models.therapy_sessions import therapy_sessions
from therapy_scheduler.schemas.sessions import (
    SessionCancel,
    SessionCreate,
    SessionStatus,
    SessionType,
)
from therapy_scheduler.services.availability_service import AvailabilityService
from therapy_scheduler.services.booking_service import BookingService
from therapy_scheduler.services.session_lifecycle_service import SessionLifecycleService

BOOKED_ON = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
SLOT = datetime(2025, 3, 10, 10, 0, tzinfo=UTC)


def _request(therapist, patient, scheduled_at=SLOT, **overrides) -> SessionCreate:
    return SessionCreate(
        therapist_id=therapist["id"],
        patient_id=patient["id"] if patient else None,
        scheduled_at=scheduled_at,
        **overrides,
    )


async def _live_sessions(db_session, therapist_id) -> int:
    result = await db_session.execute(
        select(func.count())
        .select_from(therapy_sessions)
        .where(
            therapy_sessions.c.therapist_id == therapist_id,
            therapy_sessions.c.scheduled_at == SLOT,
            therapy_sessions.c.status != SessionStatus.CANCELLED.value,
        )
    )
    count = result.scalar()
    await db_session.commit()
    return count


async def test_book_session_success(db_session, therapist, therapist_actor, patient):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    session = await service.book(
        therapist_actor,
        _request(therapist, patient, session_type=SessionType.INITIAL_ASSESSMENT),
    )

    assert session.status is SessionStatus.SCHEDULED
    assert session.therapist_id == therapist["id"]
    assert session.patient_id == patient["id"]
    assert session.scheduled_at == SLOT
    assert session.duration_minutes == 60
    assert session.session_type is SessionType.INITIAL_ASSESSMENT
    assert session.created_at == BOOKED_ON


async def test_patient_books_for_self(db_session, therapist, patient, patient_actor):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    session = await service.book(patient_actor, _request(therapist, None))

    assert session.patient_id == patient["id"]


async def test_start_time_is_truncated_to_the_minute(
    db_session, therapist, therapist_actor, patient
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    session = await service.book(
        therapist_actor,
        _request(therapist, patient, scheduled_at=datetime(2025, 3, 10, 10, 0, 42, 5, tzinfo=UTC)),
    )

    assert session.scheduled_at == SLOT


async def test_book_in_the_past_is_rejected(db_session, therapist, therapist_actor, patient):
    service = BookingService(db_session, clock=lambda: datetime(2025, 3, 10, 10, 30, tzinfo=UTC))

    with pytest.raises(ValidationException):
        await service.book(therapist_actor, _request(therapist, patient))


async def test_book_unapproved_therapist(db_session, make_user, patient, admin_actor):
    pending = await make_user("therapist", "Pending Therapist", is_approved=False)
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    with pytest.raises(NotFoundException) as exc_info:
        await service.book(admin_actor, _request(pending, patient))

    assert exc_info.value.message == "Therapist not found"


async def test_book_unknown_patient(db_session, therapist, therapist_actor):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    # A therapist is not a patient
    with pytest.raises(NotFoundException):
        await service.book(therapist_actor, _request(therapist, therapist))


async def test_patient_cannot_book_for_another_patient(
    db_session, therapist, patient_actor, other_patient
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    with pytest.raises(ForbiddenException):
        await service.book(patient_actor, _request(therapist, other_patient))


async def test_therapist_cannot_book_on_another_calendar(
    db_session, other_therapist, therapist_actor, patient
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    with pytest.raises(ForbiddenException):
        await service.book(therapist_actor, _request(other_therapist, patient))


async def test_booking_taken_slot_conflicts(
    db_session, therapist, therapist_actor, other_patient, booked_session
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    with pytest.raises(SlotConflictException) as exc_info:
        await service.book(therapist_actor, _request(therapist, other_patient))

    assert exc_info.value.status_code == 409
    assert exc_info.value.next_available == [
        "2025-03-10T11:00:00+00:00",
        "2025-03-10T12:00:00+00:00",
        "2025-03-10T13:00:00+00:00",
    ]
    assert await _live_sessions(db_session, therapist["id"]) == 1


async def test_other_therapist_can_use_same_time(
    db_session, other_therapist, other_therapist_actor, patient, booked_session
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    session = await service.book(other_therapist_actor, _request(other_therapist, patient))

    assert session.scheduled_at == booked_session.scheduled_at


async def test_cancelled_slot_can_be_rebooked(
    db_session, therapist, therapist_actor, other_patient, booked_session
):
    lifecycle = SessionLifecycleService(db_session, clock=lambda: BOOKED_ON)
    await lifecycle.cancel(
        booked_session.id,
        therapist_actor,
        SessionCancel(reason="Patient moved away", notify_patient=False),
    )

    service = BookingService(db_session, clock=lambda: BOOKED_ON)
    session = await service.book(therapist_actor, _request(therapist, other_patient))

    assert session.id != booked_session.id
    assert session.status is SessionStatus.SCHEDULED


async def test_concurrent_bookings_have_one_winner(
    db_session, session_factory, therapist, patient, other_patient
):
    actor = Actor(id=therapist["id"], role=ActorRole.THERAPIST)

    async def attempt(patient_row):
        async with session_factory() as session:
            service = BookingService(session, clock=lambda: BOOKED_ON)
            try:
                return await service.book(actor, _request(therapist, patient_row))
            except SlotConflictException as exc:
                return exc

    outcomes = await asyncio.gather(attempt(patient), attempt(other_patient))

    winners = [o for o in outcomes if not isinstance(o, SlotConflictException)]
    losers = [o for o in outcomes if isinstance(o, SlotConflictException)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].next_available
    assert await _live_sessions(db_session, therapist["id"]) == 1


async def test_unique_index_backs_up_the_check(
    db_session, therapist, therapist_actor, other_patient, booked_session
):
    """A race the pre-check misses still ends in a conflict, not a second session."""
    service = BookingService(db_session, clock=lambda: BOOKED_ON)

    with patch.object(BookingService, "slot_taken", AsyncMock(return_value=False)):
        with pytest.raises(SlotConflictException):
            await service.book(therapist_actor, _request(therapist, other_patient))

    assert await _live_sessions(db_session, therapist["id"]) == 1


async def test_other_integrity_errors_are_not_slot_conflicts(
    db_session, therapist, therapist_actor, patient
):
    service = BookingService(db_session, clock=lambda: BOOKED_ON)
    missing_user = IntegrityError(
        "INSERT INTO therapy_sessions ...", {}, Exception("FOREIGN KEY constraint failed")
    )

    with patch.object(BookingService, "insert_session", AsyncMock(side_effect=missing_user)):
        with pytest.raises(PersistenceException) as exc_info:
            await service.book(therapist_actor, _request(therapist, patient))

    assert exc_info.value.status_code == 500
    assert await _live_sessions(db_session, therapist["id"]) == 0


async def test_conflict_does_not_invalidate_cache(
    db_session, therapist, therapist_actor, other_patient, booked_session
):
    cache = MagicMock()
    cache.get_json.return_value = None
    service = BookingService(
        db_session, AvailabilityService(db_session, cache), clock=lambda: BOOKED_ON
    )

    with pytest.raises(SlotConflictException):
        await service.book(therapist_actor, _request(therapist, other_patient))

    cache.delete.assert_not_called()
