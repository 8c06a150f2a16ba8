"""Actor identity and the single authorization predicate for session operations."""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from therapy_scheduler.core.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)


class ActorRole(str, Enum):
    """Roles that can act on the scheduling core."""

    PATIENT = "patient"
    THERAPIST = "therapist"
    ADMIN = "admin"


class SessionAction(str, Enum):
    """Operations guarded by the authorization predicate."""

    VIEW = "view"
    VIEW_HISTORY = "view_history"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"
    UPDATE_NOTES = "update_notes"


class Actor(BaseModel):
    """Authenticated caller, passed explicitly into every core operation."""

    id: UUID
    role: ActorRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        """Check if actor is an administrator."""
        return self.role is ActorRole.ADMIN


# Patients may read their own sessions and cancel them, nothing else
PATIENT_ACTIONS = frozenset(
    {SessionAction.VIEW, SessionAction.VIEW_HISTORY, SessionAction.CANCEL}
)


def authorize_session_action(
    actor: Actor,
    session: dict[str, Any],
    action: SessionAction,
) -> None:
    """
    Check that an actor may perform an action on a session.

    Sessions the actor is not a party to are reported as missing rather than
    forbidden, so their existence is not revealed.

    Args:
        actor: Acting user
        session: Session row as a mapping
        action: Requested operation

    Raises:
        NotFoundException: If the actor is not a party to the session
        ForbiddenException: If the actor's role may not perform the action
    """
    if actor.is_admin:
        return

    if actor.role is ActorRole.THERAPIST:
        if session["therapist_id"] != actor.id:
            raise NotFoundException("Session not found")
        return

    if session["patient_id"] != actor.id:
        raise NotFoundException("Session not found")
    if action not in PATIENT_ACTIONS:
        raise ForbiddenException(f"Patients may not {action.value.replace('_', ' ')} sessions")


def authorize_booking(
    actor: Actor,
    therapist_id: UUID,
    patient_id: UUID | None,
) -> UUID:
    """
    Check that an actor may book a session and resolve the patient.

    Args:
        actor: Acting user
        therapist_id: Therapist whose calendar is booked
        patient_id: Requested patient, optional for patients booking for themselves

    Returns:
        Patient ID the session will be booked for

    Raises:
        ForbiddenException: If the actor may not book on this calendar or for this patient
        ValidationException: If no patient could be resolved
    """
    if actor.role is ActorRole.PATIENT:
        if patient_id is not None and patient_id != actor.id:
            raise ForbiddenException("Patients may only book sessions for themselves")
        return actor.id

    if actor.role is ActorRole.THERAPIST and therapist_id != actor.id:
        raise ForbiddenException("Therapists may only book sessions on their own calendar")

    if patient_id is None:
        raise ValidationException("patient_id is required")
    return patient_id
