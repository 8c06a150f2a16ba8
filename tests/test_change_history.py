"""Tests for the session change history."""

from datetime import UTC, datetime, timedelta

import pytest

from therapy_scheduler.core.exceptions import NotFoundException
from therapy_scheduler.schemas.sessions import (
    ChangeType,
    SessionCompletion,
    SessionCreate,
)
from therapy_scheduler.services.booking_service import BookingService
from therapy_scheduler.services.change_history_service import ChangeHistoryService
from therapy_scheduler.services.session_lifecycle_service import SessionLifecycleService
from therapy_scheduler.services.session_service import SessionService

MOMENT = datetime(2025, 3, 2, 9, 0, tzinfo=UTC)


async def test_record_requires_start_times_for_reschedules(db_session, booked_session):
    history = ChangeHistoryService(db_session)

    with pytest.raises(ValueError):
        await history.record(
            session_id=booked_session.id,
            change_type=ChangeType.RESCHEDULE,
            actor_id=booked_session.therapist_id,
            notes=None,
            created_at=MOMENT,
        )


async def test_record_rejects_start_times_on_cancellations(db_session, booked_session):
    history = ChangeHistoryService(db_session)

    with pytest.raises(ValueError):
        await history.record(
            session_id=booked_session.id,
            change_type=ChangeType.CANCELLATION,
            actor_id=booked_session.therapist_id,
            notes="Reason",
            created_at=MOMENT,
            new_start=MOMENT,
        )


async def test_history_is_chronological_and_limit_keeps_latest(db_session, booked_session):
    history = ChangeHistoryService(db_session)
    starts = [booked_session.scheduled_at + timedelta(days=i) for i in range(4)]
    for i in range(3):
        await history.record(
            session_id=booked_session.id,
            change_type=ChangeType.RESCHEDULE,
            actor_id=booked_session.therapist_id,
            notes=f"Move {i + 1}",
            created_at=MOMENT + timedelta(minutes=i),
            previous_start=starts[i],
            new_start=starts[i + 1],
            previous_duration=60,
            new_duration=60,
        )
    await db_session.commit()

    records = await history.history(booked_session.id)
    latest = await history.history(booked_session.id, limit=2)
    await db_session.commit()

    assert [r.notes for r in records] == ["Move 1", "Move 2", "Move 3"]
    assert [r.notes for r in latest] == ["Move 2", "Move 3"]


async def test_session_without_changes_has_empty_history(
    db_session, therapist_actor, booked_session
):
    response = await SessionService(db_session).get_change_history(
        booked_session.id, therapist_actor
    )

    assert response.session_id == booked_session.id
    assert response.items == []


async def test_patient_reads_own_history(db_session, patient_actor, booked_session):
    response = await SessionService(db_session).get_change_history(
        booked_session.id, patient_actor
    )

    assert response.items == []


async def test_stranger_cannot_read_history(db_session, other_therapist_actor, booked_session):
    with pytest.raises(NotFoundException):
        await SessionService(db_session).get_change_history(
            booked_session.id, other_therapist_actor
        )


async def test_previous_notes_come_from_completed_sessions(
    db_session, therapist, therapist_actor, patient
):
    booked_on = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
    booking = BookingService(db_session, clock=lambda: booked_on)
    sessions = []
    for day in (3, 4, 5):
        sessions.append(
            await booking.book(
                therapist_actor,
                SessionCreate(
                    therapist_id=therapist["id"],
                    patient_id=patient["id"],
                    scheduled_at=datetime(2025, 3, day, 10, 0, tzinfo=UTC),
                ),
            )
        )

    lifecycle = SessionLifecycleService(
        db_session, clock=lambda: datetime(2025, 3, 4, 12, 0, tzinfo=UTC)
    )
    for index, session in enumerate(sessions[:2]):
        await lifecycle.complete(
            session.id,
            therapist_actor,
            SessionCompletion(session_notes=f"Session {index + 1} notes"),
        )

    notes = await SessionService(db_session).get_previous_notes(sessions[2].id, therapist_actor)

    assert [n.session_notes for n in notes] == ["Session 2 notes", "Session 1 notes"]
