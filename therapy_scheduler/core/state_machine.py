"""Session status lifecycle."""

from therapy_scheduler.core.exceptions import InvalidTransitionException
from therapy_scheduler.schemas.sessions import SessionStatus

# scheduled is the only non-terminal status
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset(
        {SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW}
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
    SessionStatus.NO_SHOW: frozenset(),
}


def can_transition(current: SessionStatus | str, target: SessionStatus | str) -> bool:
    """Check whether a status change is legal."""
    return SessionStatus(target) in ALLOWED_TRANSITIONS[SessionStatus(current)]


def ensure_transition(current: SessionStatus | str, target: SessionStatus | str) -> None:
    """
    Validate a status change.

    Raises:
        InvalidTransitionException: If the change is not allowed
    """
    current = SessionStatus(current)
    target = SessionStatus(target)
    if not can_transition(current, target):
        raise InvalidTransitionException(
            f"Cannot move a {current.value} session to {target.value}",
            current_status=current.value,
        )


def ensure_scheduled(current: SessionStatus | str, action: str) -> None:
    """
    Validate that a session is still open for in-place changes such as reschedule.

    Raises:
        InvalidTransitionException: If the session is in a terminal status
    """
    current = SessionStatus(current)
    if current is not SessionStatus.SCHEDULED:
        raise InvalidTransitionException(
            f"Cannot {action} a {current.value} session",
            current_status=current.value,
        )
