"""Tests for the unit-of-work helper and driver error translation."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from therapy_scheduler.core.exceptions import (
    NotFoundException,
    PersistenceException,
    ServiceUnavailableException,
)
from therapy_scheduler.database import (
    atomic,
    is_retryable_error,
    is_slot_conflict,
    translate_database_error,
)


def _driver_error(message: str) -> OperationalError:
    return OperationalError("INSERT INTO therapy_sessions ...", {}, Exception(message))


@pytest.mark.parametrize(
    "message",
    [
        "database is locked",
        "canceling statement due to statement timeout",
        "could not obtain lock on row in relation",
        "deadlock detected",
    ],
)
def test_lock_errors_are_retryable(message):
    error = _driver_error(message)

    assert is_retryable_error(error)
    assert isinstance(translate_database_error(error), ServiceUnavailableException)


def test_other_driver_errors_are_fatal():
    translated = translate_database_error(_driver_error("disk I/O error"))

    assert isinstance(translated, PersistenceException)
    assert translated.status_code == 500


def test_retryable_error_is_flagged_in_details():
    assert ServiceUnavailableException().details == {"retryable": True}


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        (
            "UNIQUE constraint failed: therapy_sessions.therapist_id, "
            "therapy_sessions.scheduled_at",
            True,
        ),
        (
            'duplicate key value violates unique constraint "uq_therapy_sessions_therapist_slot"',
            True,
        ),
        ("FOREIGN KEY constraint failed", False),
        (
            'insert or update on table "therapy_sessions" violates foreign key constraint',
            False,
        ),
    ],
)
def test_slot_conflicts_are_told_apart_from_other_integrity_errors(message, expected):
    error = IntegrityError("INSERT INTO therapy_sessions ...", {}, Exception(message))

    assert is_slot_conflict(error) is expected


async def test_atomic_commits_on_success():
    db = AsyncMock()

    async with atomic(db):
        pass

    db.commit.assert_awaited_once()
    db.rollback.assert_not_awaited()


async def test_atomic_rolls_back_business_errors():
    db = AsyncMock()

    with pytest.raises(NotFoundException):
        async with atomic(db):
            raise NotFoundException("Session not found")

    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()


async def test_atomic_passes_integrity_errors_through():
    db = AsyncMock()

    with pytest.raises(IntegrityError):
        async with atomic(db):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    db.rollback.assert_awaited_once()


async def test_atomic_translates_lock_timeouts():
    db = AsyncMock()

    with pytest.raises(ServiceUnavailableException):
        async with atomic(db):
            raise _driver_error("database is locked")

    db.rollback.assert_awaited_once()
