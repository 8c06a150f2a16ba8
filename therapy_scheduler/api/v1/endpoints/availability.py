"""Therapist availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from therapy_scheduler.core.clock import to_clinic_time, utc_now
from therapy_scheduler.core.exceptions import ValidationException
from therapy_scheduler.database import atomic
from therapy_scheduler.dependencies import Availability, CurrentActor
from therapy_scheduler.schemas.sessions import AvailabilityResponse
from therapy_scheduler.services.booking_service import BookingService

router = APIRouter()


@router.get(
    "/therapists/{therapist_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="List open slots for a therapist",
)
async def get_available_slots(
    therapist_id: UUID,
    current_actor: CurrentActor,
    availability: Availability,
    on_date: date = Query(..., alias="date", description="Clinic-local date (YYYY-MM-DD)"),
) -> AvailabilityResponse:
    """
    Get the open slots of a therapist's working day.

    Args:
        therapist_id: Therapist ID
        current_actor: Authenticated actor
        availability: Availability service
        on_date: Date to check; must not be in the past

    Returns:
        Open slots ordered by start time

    Raises:
        ValidationException: If the date is in the past
        NotFoundException: If the therapist is not bookable
    """
    if on_date < to_clinic_time(utc_now()).date():
        raise ValidationException("Availability can only be requested for today or later")

    async with atomic(availability.db):
        await BookingService(availability.db, availability).ensure_therapist_bookable(therapist_id)
        slots = await availability.available_slots(therapist_id, on_date)
    return AvailabilityResponse(
        therapist_id=therapist_id,
        on_date=on_date,
        slots=slots,
        fully_booked=not slots,
    )
