"""Tests for the session status lifecycle."""

import pytest

from therapy_scheduler.core.exceptions import InvalidTransitionException
from therapy_scheduler.core.state_machine import (
    can_transition,
    ensure_scheduled,
    ensure_transition,
)
from therapy_scheduler.schemas.sessions import SessionStatus


@pytest.mark.parametrize(
    "target",
    [SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW],
)
def test_scheduled_moves_to_any_terminal_status(target):
    assert can_transition(SessionStatus.SCHEDULED, target)
    ensure_transition(SessionStatus.SCHEDULED, target)


def test_scheduled_to_scheduled_is_not_a_transition():
    assert not can_transition(SessionStatus.SCHEDULED, SessionStatus.SCHEDULED)


@pytest.mark.parametrize(
    "current",
    [SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW],
)
@pytest.mark.parametrize("target", list(SessionStatus))
def test_terminal_statuses_are_final(current, target):
    assert current.is_terminal
    assert not can_transition(current, target)

    with pytest.raises(InvalidTransitionException) as exc_info:
        ensure_transition(current, target)

    assert exc_info.value.status_code == 409
    assert exc_info.value.current_status == current.value
    assert exc_info.value.details == {"current_status": current.value}


def test_transitions_accept_raw_status_strings():
    """Rows carry plain strings; they are accepted alongside the enum."""
    assert can_transition("scheduled", "cancelled")
    assert not can_transition("cancelled", "completed")


def test_ensure_scheduled_allows_open_sessions():
    ensure_scheduled("scheduled", "reschedule")


def test_ensure_scheduled_rejects_closed_sessions():
    with pytest.raises(InvalidTransitionException) as exc_info:
        ensure_scheduled("completed", "reschedule")

    assert exc_info.value.message == "Cannot reschedule a completed session"
    assert exc_info.value.current_status == "completed"
